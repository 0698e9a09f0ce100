"""Ingestion orchestrator - unread mailbox in, one invoice row per qualifying email out."""

import logging
import time
from decimal import Decimal
from typing import Optional

from pydantic import ValidationError

from .config import Config
from .currency import CurrencyConverter, identity_conversion, scale_amounts
from .errors import DuplicateInvoiceError, MailboxError, RecordValidationError, UnsupportedDocumentError
from .ingestion import ImapMailbox, MailboxSource
from .metrics import MetricsCollector
from .models import (
    COLUMN_WIDTHS,
    AttachmentKind,
    ConvertedAmounts,
    Email,
    EmailAttachment,
    EmailOutcome,
    ExtractedInvoice,
    IncomingInvoiceRecord,
    IngestionSummary,
    InvoiceAttachmentRecord,
    PaymentStatus,
    PendingInvoice,
    ProcessingState,
    ReviewStatus,
    clip,
    to_money,
)
from .processing import AttachmentClassifier, DocumentTextExtractor
from .semantic import (
    ExtractionClient,
    InvoiceDataExtractor,
    LangfuseTraceSink,
    LoggingTraceSink,
    NullTraceSink,
    TraceSink,
    safe_flush,
)
from .storage import DatabaseClient
from .suppliers import SupplierResolver

logger = logging.getLogger(__name__)

SKIP_NO_ATTACHMENTS = "no eligible attachments"
SKIP_DUPLICATE = "duplicate"


def build_notes(email: Email, invoice: ExtractedInvoice, fx_degraded: bool = False) -> str:
    lines = [f"Auto-imported from email: {email.subject}", f"Vendor: {invoice.vendor_name}"]
    if invoice.invoice_number:
        lines.append(f"Invoice number: {invoice.invoice_number}")
    if fx_degraded:
        lines.append(f"Exchange rate unavailable; amounts kept as {invoice.currency} at rate 1")
    return "\n".join(lines)


def build_pending_invoice(
    email: Email,
    invoice: ExtractedInvoice,
    amounts: ConvertedAmounts,
    attachments: list[EmailAttachment],
    base_currency: str = "EUR",
    mark_receipts_paid: bool = False,
    fx_degraded: bool = False,
) -> PendingInvoice:
    """Compute the header and attachment rows for one email, without touching storage.

    Args:
        email: Source email
        invoice: Merged extraction result
        amounts: Base-currency amounts derived from the invoice total
        attachments: All eligible attachments of the email, in original order
        base_currency: Currency the base amounts are expressed in
        mark_receipts_paid: Mark as paid when every attachment is a receipt
        fx_degraded: Conversion fell back to 1:1

    Returns:
        PendingInvoice: Rows to write; supplier_id is filled in at persist time

    Raises:
        RecordValidationError: If the rows violate their shape or amount identity
    """
    kinds = [AttachmentClassifier.kind_of(att) for att in attachments]
    payment_status = PaymentStatus.UNPAID
    if mark_receipts_paid and kinds and all(kind == AttachmentKind.RECEIPT for kind in kinds):
        payment_status = PaymentStatus.PAID

    original_total = to_money(invoice.total_amount)
    original_tax = to_money(invoice.vat_amount or Decimal("0"))

    try:
        record = IncomingInvoiceRecord(
            invoice_number=clip(invoice.invoice_number, COLUMN_WIDTHS["invoice_number"]),
            invoice_date=invoice.invoice_date,
            description=invoice.description,
            language=invoice.language,
            subtotal=amounts.subtotal,
            tax_amount=amounts.tax_amount,
            total_amount=amounts.total_amount,
            currency=base_currency.upper(),
            original_currency=invoice.currency or base_currency.upper(),
            original_subtotal=original_total - original_tax,
            original_tax_amount=original_tax,
            original_amount=original_total,
            exchange_rate=amounts.rate,
            exchange_rate_date=amounts.rate_date,
            notes=build_notes(email, invoice, fx_degraded),
            supplier_name=clip(invoice.vendor_name, COLUMN_WIDTHS["supplier_name"]),
            review_status=ReviewStatus.PENDING,
            payment_status=payment_status,
            source="email",
            source_email_id=email.source_id,
            source_email_subject=clip(email.subject, COLUMN_WIDTHS["source_email_subject"]),
            source_email_from=clip(email.from_address, COLUMN_WIDTHS["source_email_from"]),
            source_email_date=email.timestamp,
            extracted_data=invoice.model_dump(mode="json", by_alias=True),
        )
        rows = [
            InvoiceAttachmentRecord(
                file_name=clip(att.filename, COLUMN_WIDTHS["file_name"]),
                file_type=clip(att.content_type, COLUMN_WIDTHS["file_type"]),
                file_size=att.size_bytes,
                file_data=att.data,
                kind=kind,
            )
            for att, kind in zip(attachments, kinds)
        ]
    except ValidationError as e:
        raise RecordValidationError(
            f"Invoice for email {email.id} failed validation",
            {"errors": e.errors(include_input=False)},
        ) from e

    return PendingInvoice(vendor_name=invoice.vendor_name, record=record, attachments=rows)


class IngestionPipeline:
    """Processes unread emails one at a time into incoming invoice rows.

    Each email ends in exactly one terminal state: persisted, skipped (no
    eligible attachment, or already ingested) or errored. Errors are scoped to
    the email; only a failure to fetch the mailbox aborts the run.
    """

    def __init__(
        self,
        mailbox: MailboxSource,
        extractor: InvoiceDataExtractor,
        converter: CurrencyConverter,
        resolver: SupplierResolver,
        db,
        classifier: Optional[AttachmentClassifier] = None,
        documents: Optional[DocumentTextExtractor] = None,
        base_currency: str = "EUR",
        mark_receipts_paid: bool = False,
        metrics: Optional[MetricsCollector] = None,
        trace_sink: Optional[TraceSink] = None,
    ):
        """Initialize the pipeline.

        Args:
            mailbox: Source of unread emails
            extractor: Two-phase invoice extraction
            converter: FX conversion into the base currency
            resolver: Supplier lookup/creation
            db: Storage exposing transaction(), invoice_exists_for_email(),
                insert_incoming_invoice() and insert_invoice_attachments()
            classifier: Attachment eligibility policy
            documents: Attachment text extraction
            base_currency: Currency persisted totals are expressed in
            mark_receipts_paid: Mark receipt-only emails as paid
            metrics: Stage timer
            trace_sink: Oracle trace sink, flushed on close()
        """
        self.mailbox = mailbox
        self.extractor = extractor
        self.converter = converter
        self.resolver = resolver
        self.db = db
        self.classifier = classifier or AttachmentClassifier()
        self.documents = documents or DocumentTextExtractor()
        self.base_currency = base_currency.upper()
        self.mark_receipts_paid = mark_receipts_paid
        self.metrics = metrics or MetricsCollector()
        self.trace_sink = trace_sink or NullTraceSink()
        self._stage = ProcessingState.FETCHED

    @classmethod
    def from_config(cls, config: Config) -> "IngestionPipeline":
        """Wire the production collaborators from configuration."""
        db = DatabaseClient(config.database_url)
        mailbox = ImapMailbox(
            host=config.imap_host,
            username=config.imap_user,
            password=config.imap_password,
            access_token=config.imap_access_token,
            port=config.imap_port,
            folder=config.imap_folder,
        )
        if config.langfuse_enabled:
            trace_sink = LangfuseTraceSink(
                public_key=config.langfuse_public_key,
                secret_key=config.langfuse_secret_key,
                host=config.langfuse_base_url,
            )
        else:
            trace_sink = LoggingTraceSink()
        oracle = ExtractionClient(
            api_url=config.oracle_api_url,
            model_name=config.oracle_model,
            api_key=config.oracle_api_key,
            trace_sink=trace_sink,
            max_attempts=config.extraction_max_attempts,
            retry_delay_sec=config.extraction_retry_delay_sec,
        )
        return cls(
            mailbox=mailbox,
            extractor=InvoiceDataExtractor(oracle, base_currency=config.base_currency),
            converter=CurrencyConverter(config.fx_api_url, timeout=config.fx_timeout_sec),
            resolver=SupplierResolver(db),
            db=db,
            classifier=AttachmentClassifier(strict=config.strict_attachment_filter),
            base_currency=config.base_currency,
            mark_receipts_paid=config.mark_receipts_paid,
            trace_sink=trace_sink,
        )

    def close(self):
        safe_flush(self.trace_sink)
        self.mailbox.close()
        self.db.close()

    # ========================================================================
    # Run
    # ========================================================================

    def process_invoices(self) -> IngestionSummary:
        """Run one ingestion pass over the unread mailbox.

        Returns:
            IngestionSummary: Counts, per-email outcomes and stage timings

        Raises:
            MailboxError: If the mailbox cannot be reached or searched
        """
        self.metrics.reset()
        start_time = time.perf_counter()
        summary = IngestionSummary()

        emails = self.mailbox.fetch_unread()
        summary.emails_fetched = len(emails)
        logger.info(f"Fetched {len(emails)} unread email(s)")

        to_mark: list[str] = []
        for email in emails:
            outcome = self.process_email(email)
            summary.outcomes.append(outcome)

            if outcome.state == ProcessingState.PERSISTED:
                summary.invoices_created += 1
                to_mark.append(email.id)
            elif outcome.state == ProcessingState.SKIPPED:
                summary.skipped += 1
                if outcome.reason == SKIP_DUPLICATE:
                    summary.duplicates += 1
                    to_mark.append(email.id)
            else:
                summary.errors.append({"email_id": email.id, "error": outcome.reason})

        summary.marked_read = self._mark_read(to_mark, summary.outcomes)

        summary.duration_sec = time.perf_counter() - start_time
        summary.extraction_time_sec = self.metrics.total("extraction")
        summary.conversion_time_sec = self.metrics.total("conversion")
        summary.db_commit_time_sec = self.metrics.total("db_commit")

        logger.info(
            f"Run complete: {summary.invoices_created} created, {summary.skipped} skipped "
            f"({summary.duplicates} duplicates), {len(summary.errors)} errors, "
            f"{summary.marked_read} marked read in {summary.duration_sec:.2f}s"
        )
        return summary

    def process_email(self, email: Email) -> EmailOutcome:
        """Drive one email to a terminal state. Never raises."""
        self._stage = ProcessingState.FETCHED
        eligible = self.classifier.eligible_attachments(email)
        if not eligible:
            logger.info(f"Email {email.id}: no eligible attachments, skipping")
            return self._outcome(email, ProcessingState.SKIPPED, SKIP_NO_ATTACHMENTS)
        self._stage = ProcessingState.FILTERED

        try:
            with self.db.transaction():
                exists = self.db.invoice_exists_for_email(email.source_id)
            if exists:
                logger.info(f"Email {email.id}: invoice already exists for {email.source_id}, skipping")
                return self._outcome(email, ProcessingState.SKIPPED, SKIP_DUPLICATE)
            self._stage = ProcessingState.DEDUP_CHECKED

            pending = self.prepare(email, eligible)
            invoice_id = self._persist(pending)
        except DuplicateInvoiceError:
            logger.info(f"Email {email.id}: invoice for {email.source_id} was created concurrently, skipping")
            return self._outcome(email, ProcessingState.SKIPPED, SKIP_DUPLICATE)
        except Exception as e:
            logger.error(f"Failed to process email {email.id} after {self._stage.value}: {e}", exc_info=True)
            return self._outcome(email, ProcessingState.ERRORED, str(e))

        self._stage = ProcessingState.PERSISTED
        logger.info(f"Email {email.id}: created incoming invoice id={invoice_id}")
        return self._outcome(email, ProcessingState.PERSISTED, invoice_id=invoice_id)

    # ========================================================================
    # Stages
    # ========================================================================

    def prepare(self, email: Email, eligible: list[EmailAttachment]) -> PendingInvoice:
        """Extract, convert and build the rows for one email (no writes).

        Raises:
            UnsupportedDocumentError: If the primary attachment yields no text
            ExtractionFailedError: If the oracle exhausts its retries
            RecordValidationError: If the resulting rows are invalid
        """
        primary = self.classifier.select_primary(eligible)
        logger.debug(f"Email {email.id}: primary attachment {primary.filename}")

        with self.metrics.timed("extraction"):
            document = self.documents.extract_text(primary.data, primary.content_type)
            if not document.text.strip():
                raise UnsupportedDocumentError(
                    primary.content_type,
                    f"No text could be extracted from {primary.filename}",
                )
            invoice = self.extractor.extract(email, document.text)
        self._stage = ProcessingState.EXTRACTED

        with self.metrics.timed("conversion"):
            amounts, degraded = self.convert_amounts(invoice)
        self._stage = ProcessingState.CONVERTED

        return build_pending_invoice(
            email,
            invoice,
            amounts,
            eligible,
            base_currency=self.base_currency,
            mark_receipts_paid=self.mark_receipts_paid,
            fx_degraded=degraded,
        )

    def convert_amounts(self, invoice: ExtractedInvoice) -> tuple[ConvertedAmounts, bool]:
        """Express the invoice amounts in the base currency.

        The converter is only consulted when the invoice currency differs
        from the base currency.

        Returns:
            tuple[ConvertedAmounts, bool]: Amounts and whether the 1:1 fallback was used
        """
        currency = (invoice.currency or self.base_currency).upper()
        total = to_money(invoice.total_amount)
        tax = to_money(invoice.vat_amount or Decimal("0"))

        if currency == self.base_currency:
            conversion = identity_conversion(total, currency, invoice.invoice_date)
        else:
            conversion = self.converter.convert(
                total, currency, self.base_currency, on_date=invoice.invoice_date
            )

        return scale_amounts(tax, total, conversion), conversion.degraded

    def _persist(self, pending: PendingInvoice) -> int:
        """Resolve the supplier and write header + attachments in one transaction.

        Raises:
            DuplicateInvoiceError: If the source email was ingested concurrently
        """
        with self.metrics.timed("db_commit"):
            with self.db.transaction():
                supplier_id = self.resolver.find_or_create(pending.vendor_name)
                self._stage = ProcessingState.SUPPLIER_RESOLVED
                record = pending.record.model_copy(update={"supplier_id": supplier_id})
                invoice_id = self.db.insert_incoming_invoice(record)
                self.db.insert_invoice_attachments(invoice_id, pending.attachments)
        return invoice_id

    def _mark_read(self, email_ids: list[str], outcomes: list[EmailOutcome]) -> int:
        """Flag handled emails as read in one batch; failures are logged only."""
        if not email_ids:
            return 0

        try:
            marked = self.mailbox.mark_read_many(email_ids)
        except (MailboxError, OSError) as e:
            logger.error(f"Failed to mark {len(email_ids)} email(s) as read: {e}")
            return 0

        if marked < len(email_ids):
            logger.warning(f"Marked {marked}/{len(email_ids)} email(s) as read")
        else:
            for outcome in outcomes:
                if outcome.state == ProcessingState.PERSISTED:
                    outcome.state = ProcessingState.MARKED_READ
                    outcome.stage = ProcessingState.MARKED_READ
        return marked

    def _outcome(
        self,
        email: Email,
        state: ProcessingState,
        reason: Optional[str] = None,
        invoice_id: Optional[int] = None,
    ) -> EmailOutcome:
        return EmailOutcome(
            email_id=email.id,
            source_id=email.source_id,
            state=state,
            stage=self._stage,
            reason=reason,
            invoice_id=invoice_id,
        )


def process_invoices(config: Optional[Config] = None) -> IngestionSummary:
    """Parameterless trigger shared by the scheduler and on-demand paths.

    Args:
        config: Configuration (loaded from the environment if None)

    Returns:
        IngestionSummary: Result of the run
    """
    config = config or Config.from_env()
    pipeline = IngestionPipeline.from_config(config)
    try:
        return pipeline.process_invoices()
    finally:
        pipeline.close()
