"""Abstract base class for mailbox access."""

from abc import ABC, abstractmethod
from typing import Iterable

from ..models import Email


class MailboxSource(ABC):
    """Abstract interface for fetching unread emails and flagging them read."""

    @abstractmethod
    def fetch_unread(self) -> list[Email]:
        """Fetch and parse all unread messages.

        Messages that fail to parse are logged and skipped.

        Returns:
            list[Email]: Parsed emails in mailbox order

        Raises:
            MailboxConnectionError: If the mailbox cannot be reached or authenticated
            MailboxError: If searching or fetching the batch fails
        """
        pass

    @abstractmethod
    def mark_read_many(self, email_ids: Iterable[str]) -> int:
        """Flag messages as seen in a single session.

        Failures are logged, never raised.

        Args:
            email_ids: Mailbox identifiers of the messages

        Returns:
            int: Number of messages flagged
        """
        pass

    def mark_read(self, email_id: str) -> bool:
        """Flag one message as seen. Safe to call repeatedly.

        Returns:
            bool: True if the flag was applied
        """
        return self.mark_read_many([email_id]) == 1

    def close(self):
        """Release any held connection."""
        pass
