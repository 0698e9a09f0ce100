"""Email parsing utilities for RFC822 format emails."""

import email
import html
import logging
import re
from datetime import datetime
from email.header import decode_header
from email.message import Message
from email.utils import parseaddr, parsedate_to_datetime
from typing import Optional

from ..models import Email, EmailAttachment

logger = logging.getLogger(__name__)


def decode_email_header(header: Optional[str]) -> str:
    """Decode an RFC 2047 header handling various encodings.

    Args:
        header: Raw email header

    Returns:
        Decoded string
    """
    if not header:
        return ""

    result = []
    for part, encoding in decode_header(str(header)):
        if isinstance(part, bytes):
            try:
                result.append(part.decode(encoding or "utf-8", errors="ignore"))
            except LookupError:
                result.append(part.decode("utf-8", errors="ignore"))
        else:
            result.append(part)

    return "".join(result).strip()


def _html_to_text(markup: str) -> str:
    markup = re.sub(r"(?is)<(script|style).*?</\1>", " ", markup)
    markup = re.sub(r"(?i)<br\s*/?>|</p>|</div>|</tr>", "\n", markup)
    text = html.unescape(re.sub(r"<[^>]+>", " ", markup))
    return re.sub(r"[ \t]+", " ", text).strip()


class EmailParser:
    """Parse RFC822 email messages into Email models."""

    @staticmethod
    def parse(email_bytes: bytes, email_id: str) -> Email:
        """Parse email bytes and extract key components.

        Args:
            email_bytes: Email in RFC822 format (bytes)
            email_id: Mailbox identifier (IMAP UID) of the message

        Returns:
            Email: Parsed email with headers, body and attachments
        """
        msg = email.message_from_bytes(email_bytes)

        return Email(
            id=email_id,
            message_id=(msg.get("Message-ID") or "").strip() or None,
            subject=decode_email_header(msg.get("Subject")),
            from_address=EmailParser._sender(msg),
            to_address=decode_email_header(msg.get("To")) or None,
            timestamp=EmailParser._timestamp(msg),
            body_text=EmailParser._extract_body(msg),
            attachments=EmailParser._extract_attachments(msg),
        )

    @staticmethod
    def _sender(msg: Message) -> str:
        decoded = decode_email_header(msg.get("From"))
        _, address = parseaddr(decoded)
        return address or decoded

    @staticmethod
    def _timestamp(msg: Message) -> Optional[datetime]:
        raw = msg.get("Date")
        if not raw:
            return None
        try:
            return parsedate_to_datetime(raw)
        except (TypeError, ValueError):
            logger.debug(f"Unparseable Date header: {raw!r}")
            return None

    @staticmethod
    def _extract_attachments(msg: Message) -> list[EmailAttachment]:
        """Extract attachments from email message.

        Args:
            msg: Email message object

        Returns:
            list[EmailAttachment]: Attachments in message order
        """
        attachments = []

        for part in msg.walk():
            if part.is_multipart():
                continue

            filename = part.get_filename()

            # Skip if no filename (not an attachment)
            if not filename:
                continue

            payload = part.get_payload(decode=True)
            if payload is None:
                continue

            attachments.append(EmailAttachment(
                filename=decode_email_header(filename),
                content_type=part.get_content_type(),
                data=payload,
                size_bytes=len(payload),
            ))

        return attachments

    @staticmethod
    def _extract_body(msg: Message) -> str:
        """Extract the text body, falling back to HTML converted to text.

        Args:
            msg: Email message object

        Returns:
            str: Body text (may be empty)
        """
        body_text = None
        body_html = None

        for part in msg.walk():
            if part.is_multipart():
                continue

            content_disposition = str(part.get("Content-Disposition", ""))
            if "attachment" in content_disposition or part.get_filename():
                continue

            content_type = part.get_content_type()
            if content_type not in ("text/plain", "text/html"):
                continue

            payload = part.get_payload(decode=True)
            if payload is None:
                continue

            charset = part.get_content_charset() or "utf-8"
            try:
                decoded = payload.decode(charset, errors="ignore")
            except LookupError:
                decoded = payload.decode("utf-8", errors="ignore")

            if content_type == "text/plain" and body_text is None:
                body_text = decoded
            elif content_type == "text/html" and body_html is None:
                body_html = decoded

        if body_text and body_text.strip():
            return body_text.strip()
        if body_html:
            return _html_to_text(body_html)
        return ""
