"""IMAP mailbox access over TLS with password or OAuth2 authentication."""

import imaplib
import logging
import ssl
from contextlib import contextmanager
from typing import Iterable, Iterator, Optional

from ..errors import MailboxConnectionError, MailboxError
from ..models import Email
from ..processing.email_parser import EmailParser
from .base import MailboxSource

logger = logging.getLogger(__name__)


def generate_oauth2_string(username: str, access_token: str) -> str:
    """Generate the SASL XOAUTH2 argument for IMAP authentication.

    Args:
        username: the username (email address) of the account to authenticate
        access_token: An OAuth2 access token

    Returns:
        The SASL argument for the OAuth2 mechanism.
    """
    return f"user={username}\x01auth=Bearer {access_token}\x01\x01"


class ImapMailbox(MailboxSource):
    """Mailbox over IMAP4_SSL.

    Each public call opens its own session and releases it before returning;
    read flags for a whole run go through one session via mark_read_many.
    """

    def __init__(
        self,
        host: str,
        username: str,
        password: Optional[str] = None,
        access_token: Optional[str] = None,
        port: int = 993,
        folder: str = "INBOX",
        timeout: float = 30.0,
        parser: Optional[EmailParser] = None,
    ):
        """Initialize IMAP mailbox.

        Args:
            host: IMAP server hostname
            username: Account name (usually the email address)
            password: Password for LOGIN authentication
            access_token: OAuth2 access token; takes precedence over password
            port: IMAP over TLS port
            folder: Folder to read from
            timeout: Socket timeout in seconds
            parser: Email parser (defaults to EmailParser)
        """
        if not password and not access_token:
            raise ValueError("Either password or access_token is required")

        self.host = host
        self.username = username
        self.password = password
        self.access_token = access_token
        self.port = port
        self.folder = folder
        self.timeout = timeout
        self.parser = parser or EmailParser()

    def _connect(self) -> imaplib.IMAP4_SSL:
        """Open an authenticated TLS connection."""
        try:
            imap = imaplib.IMAP4_SSL(
                self.host,
                self.port,
                ssl_context=ssl.create_default_context(),
                timeout=self.timeout,
            )
        except (OSError, imaplib.IMAP4.error) as e:
            raise MailboxConnectionError(
                f"Could not connect to {self.host}:{self.port}: {e}",
                {"host": self.host},
            ) from e

        try:
            if self.access_token:
                auth_string = generate_oauth2_string(self.username, self.access_token)
                imap.authenticate("XOAUTH2", lambda x: auth_string)
            else:
                imap.login(self.username, self.password)
        except (OSError, imaplib.IMAP4.error) as e:
            self._logout(imap)
            raise MailboxConnectionError(
                f"Authentication failed for {self.username}: {e}",
                {"host": self.host},
            ) from e

        return imap

    @staticmethod
    def _logout(imap: imaplib.IMAP4_SSL) -> None:
        try:
            if imap.state == "SELECTED":
                imap.close()
            imap.logout()
        except (OSError, imaplib.IMAP4.error) as e:
            logger.debug(f"Ignoring error while closing IMAP session: {e}")

    @contextmanager
    def _session(self, readonly: bool) -> Iterator[imaplib.IMAP4_SSL]:
        """Connect, select the folder, and always log out afterwards."""
        imap = self._connect()
        try:
            try:
                status, data = imap.select(self.folder, readonly=readonly)
            except (OSError, imaplib.IMAP4.error) as e:
                raise MailboxError(f"Failed to select folder {self.folder}: {e}") from e
            if status != "OK":
                raise MailboxError(f"Failed to select folder {self.folder}: {status} {data}")
            yield imap
        finally:
            self._logout(imap)

    def fetch_unread(self) -> list[Email]:
        """Fetch all unread messages without changing their flags.

        Returns:
            list[Email]: Parsed emails; unparseable messages are skipped
        """
        emails = []

        with self._session(readonly=True) as imap:
            try:
                status, data = imap.uid("SEARCH", None, "UNSEEN")
                if status != "OK":
                    raise MailboxError(f"Failed to search: {status}")

                uids = data[0].split() if data and data[0] else []
                logger.info(f"Found {len(uids)} unread message(s) in {self.folder}")

                for uid_bytes in uids:
                    uid = uid_bytes.decode()

                    # BODY.PEEK leaves \Seen untouched
                    status, msg_data = imap.uid("FETCH", uid_bytes, "(BODY.PEEK[])")
                    if status != "OK":
                        raise MailboxError(f"Failed to fetch UID {uid}: {status}")

                    raw = self._raw_message(msg_data)
                    if raw is None:
                        logger.warning(f"No message body returned for UID {uid}, skipping")
                        continue

                    try:
                        emails.append(self.parser.parse(raw, uid))
                    except Exception as e:
                        logger.error(f"Failed to parse message UID {uid}: {e}")
                        continue

            except imaplib.IMAP4.error as e:
                raise MailboxError(f"IMAP error while fetching from {self.folder}: {e}") from e

        return emails

    @staticmethod
    def _raw_message(msg_data) -> Optional[bytes]:
        for item in msg_data or []:
            if isinstance(item, tuple) and len(item) >= 2 and isinstance(item[1], bytes):
                return item[1]
        return None

    def mark_read_many(self, email_ids: Iterable[str]) -> int:
        """Flag messages as \\Seen in one session; errors are logged only."""
        uids = list(dict.fromkeys(str(email_id) for email_id in email_ids))
        if not uids:
            return 0

        flagged = 0
        try:
            with self._session(readonly=False) as imap:
                for uid in uids:
                    status, _ = imap.uid("STORE", uid, "+FLAGS", "(\\Seen)")
                    if status == "OK":
                        flagged += 1
                    else:
                        logger.error(f"Failed to mark UID {uid} as read: {status}")
        except (MailboxError, OSError, imaplib.IMAP4.error) as e:
            logger.error(f"Failed to mark {len(uids)} message(s) as read: {e}")

        logger.info(f"Marked {flagged}/{len(uids)} message(s) as read")
        return flagged
