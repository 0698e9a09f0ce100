"""Attachment eligibility and primary-document selection."""

import logging
from typing import Iterable, Optional

from ..models import AttachmentKind, Email, EmailAttachment

logger = logging.getLogger(__name__)

INVOICE_KEYWORDS = (
    "invoice",
    "receipt",
    "bill",
    "payment",
    # Dutch
    "factuur",
    "rekening",
    "bon",
    "betaling",
    "betalingsverzoek",
    # French
    "facture",
    "reçu",
    # German
    "rechnung",
    "quittung",
    # Italian
    "fattura",
    "ricevuta",
    # Spanish
    "factura",
    "recibo",
)

DOCUMENT_TYPES = {"application/pdf"}

# Generic types some mailers use for PDFs; accepted when the filename says .pdf
GENERIC_PDF_TYPES = {"application/octet-stream", "application/x-pdf", "binary/octet-stream"}


class AttachmentClassifier:
    """Decide which attachments of an email are invoice documents.

    The default policy is permissive: any PDF qualifies. With strict=True an
    attachment also needs an invoice keyword in its filename or in the
    email's subject/body.
    """

    def __init__(
        self,
        strict: bool = False,
        keywords: Iterable[str] = INVOICE_KEYWORDS,
        document_types: Iterable[str] = DOCUMENT_TYPES,
    ):
        self.strict = strict
        self.keywords = tuple(kw.lower() for kw in keywords)
        self.document_types = set(document_types)

    def is_document(self, attachment: EmailAttachment) -> bool:
        content_type = attachment.content_type.lower()
        if content_type in self.document_types:
            return True
        return (
            content_type in GENERIC_PDF_TYPES
            and attachment.filename.lower().endswith(".pdf")
        )

    def has_keyword(self, text: str) -> bool:
        lowered = text.lower()
        return any(kw in lowered for kw in self.keywords)

    def is_eligible(self, attachment: EmailAttachment, email: Optional[Email] = None) -> bool:
        """Check whether an attachment should be treated as an invoice document.

        Args:
            attachment: Attachment to check
            email: Owning email, consulted for keywords in strict mode

        Returns:
            bool: True if the attachment qualifies
        """
        if not self.is_document(attachment):
            return False
        if not self.strict:
            return True

        if self.has_keyword(attachment.filename):
            return True
        if email is not None:
            return self.has_keyword(email.subject) or self.has_keyword(email.body_text)
        return False

    def eligible_attachments(self, email: Email) -> list[EmailAttachment]:
        """Return the eligible attachments of an email, in original order."""
        eligible = [att for att in email.attachments if self.is_eligible(att, email)]
        skipped = len(email.attachments) - len(eligible)
        if skipped:
            logger.debug(f"Email {email.id}: {skipped} attachment(s) not eligible")
        return eligible

    @staticmethod
    def select_primary(attachments: list[EmailAttachment]) -> EmailAttachment:
        """Pick the attachment that represents the invoice.

        Prefers a filename containing "invoice", otherwise the first attachment.

        Raises:
            ValueError: If no attachments are given
        """
        if not attachments:
            raise ValueError("No attachments to choose from")

        for attachment in attachments:
            if "invoice" in attachment.filename.lower():
                return attachment
        return attachments[0]

    @staticmethod
    def kind_of(attachment: EmailAttachment) -> AttachmentKind:
        """Tag an attachment as receipt or invoice by filename."""
        if "receipt" in attachment.filename.lower():
            return AttachmentKind.RECEIPT
        return AttachmentKind.INVOICE
