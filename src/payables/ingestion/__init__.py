"""Mailbox ingestion module."""

from .base import MailboxSource
from .imap import ImapMailbox

__all__ = ["MailboxSource", "ImapMailbox"]
