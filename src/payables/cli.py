"""Command-line interface for the payables ingestion pipeline."""

import argparse
import logging
import sys
from typing import Optional

import dotenv

from .config import Config
from .errors import MailboxError
from .ingestion import ImapMailbox
from .models import IngestionSummary
from .pipeline import process_invoices
from .processing import AttachmentClassifier
from .storage import DatabaseClient

logger = logging.getLogger(__name__)


def parse_arguments(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="payables",
        description="Ingest supplier invoices from an IMAP mailbox into PostgreSQL",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("process", help="Run one ingestion pass over unread email")
    subparsers.add_parser("init-db", help="Create database tables if missing")
    subparsers.add_parser(
        "inspect-mailbox",
        help="List unread emails and which attachments would be ingested (read-only)",
    )
    return parser.parse_args(argv)


def print_summary(summary: IngestionSummary) -> None:
    print("\n" + "=" * 80)
    print("SUMMARY")
    print("=" * 80)
    print(f"Emails fetched:   {summary.emails_fetched}")
    print(f"Invoices created: {summary.invoices_created}")
    print(f"Skipped:          {summary.skipped} ({summary.duplicates} duplicates)")
    print(f"Errors:           {len(summary.errors)}")
    print(f"Marked read:      {summary.marked_read}")

    print("\nPerformance:")
    print(f"  Total: {summary.duration_sec:.2f}s "
          f"(extract: {summary.extraction_time_sec:.2f}s, "
          f"convert: {summary.conversion_time_sec:.2f}s, "
          f"db: {summary.db_commit_time_sec:.2f}s)")

    for error in summary.errors:
        print(f"  ! Email {error['email_id']}: {error['error']}")


def inspect_mailbox(config: Config) -> None:
    """Print unread emails with per-attachment eligibility. Does not change flags."""
    mailbox = ImapMailbox(
        host=config.imap_host,
        username=config.imap_user,
        password=config.imap_password,
        access_token=config.imap_access_token,
        port=config.imap_port,
        folder=config.imap_folder,
    )
    classifier = AttachmentClassifier(strict=config.strict_attachment_filter)

    emails = mailbox.fetch_unread()
    print(f"Unread emails in {config.imap_folder}: {len(emails)}")

    for email in emails:
        eligible = classifier.eligible_attachments(email)
        marker = "📎" if eligible else "  "
        print(f"\n{marker} UID: {email.id}")
        print(f"   From: {email.from_address[:70]}")
        print(f"   Subject: {email.subject[:70]}")
        print(f"   Date: {email.timestamp}")
        for att in email.attachments:
            verdict = "eligible" if att in eligible else "ignored"
            print(f"   - {att.filename} ({att.content_type}, {att.size_bytes} bytes): {verdict}")
        if eligible:
            print(f"   Primary: {classifier.select_primary(eligible).filename}")


def main(argv: Optional[list[str]] = None) -> int:
    """Main CLI entry point."""
    dotenv.load_dotenv()
    args = parse_arguments(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = Config.from_env()
    except ValueError as e:
        print(f"Error: {e}")
        return 2

    try:
        if args.command == "init-db":
            db = DatabaseClient(config.database_url)
            try:
                db.create_schema()
            finally:
                db.close()
            print("Database schema is up to date")
        elif args.command == "inspect-mailbox":
            inspect_mailbox(config)
        else:
            print_summary(process_invoices(config))
    except MailboxError as e:
        logger.error(f"Mailbox unavailable: {e}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
