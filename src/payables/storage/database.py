"""Database operations using psycopg (PostgreSQL)."""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Optional

import psycopg
from psycopg.types.json import Jsonb
from psycopg.rows import dict_row

from ..errors import DuplicateInvoiceError
from ..models import COLUMN_WIDTHS, IncomingInvoiceRecord, InvoiceAttachmentRecord, Supplier, clip

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS companies (
    id SERIAL PRIMARY KEY,
    name VARCHAR(255) NOT NULL,
    type VARCHAR(20) NOT NULL DEFAULT 'supplier'
        CHECK (type IN ('client', 'supplier', 'both')),
    is_active BOOLEAN NOT NULL DEFAULT TRUE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS incoming_invoices (
    id SERIAL PRIMARY KEY,
    supplier_id INTEGER REFERENCES companies(id),
    project_id INTEGER,
    invoice_number VARCHAR(100),
    invoice_date DATE NOT NULL,
    description TEXT,
    language VARCHAR(10),
    subtotal NUMERIC(14, 2) NOT NULL DEFAULT 0,
    tax_amount NUMERIC(14, 2) NOT NULL DEFAULT 0,
    total_amount NUMERIC(14, 2) NOT NULL DEFAULT 0,
    currency CHAR(3) NOT NULL DEFAULT 'EUR',
    original_currency CHAR(3) NOT NULL,
    original_subtotal NUMERIC(14, 2) NOT NULL,
    original_tax_amount NUMERIC(14, 2) NOT NULL,
    original_amount NUMERIC(14, 2) NOT NULL,
    exchange_rate NUMERIC(18, 6) NOT NULL DEFAULT 1,
    exchange_rate_date DATE,
    notes TEXT,
    supplier_name VARCHAR(255),
    review_status VARCHAR(20) NOT NULL DEFAULT 'pending'
        CHECK (review_status IN ('pending', 'approved', 'rejected')),
    payment_status VARCHAR(20) NOT NULL DEFAULT 'unpaid'
        CHECK (payment_status IN ('unpaid', 'paid')),
    source VARCHAR(50) NOT NULL DEFAULT 'manual',
    source_email_id VARCHAR(255),
    source_email_subject VARCHAR(500),
    source_email_from VARCHAR(255),
    source_email_date TIMESTAMPTZ,
    extracted_data JSONB,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    CONSTRAINT incoming_invoices_source_email_id_key UNIQUE (source_email_id)
);

ALTER TABLE incoming_invoices ADD COLUMN IF NOT EXISTS extracted_data JSONB;

CREATE TABLE IF NOT EXISTS incoming_invoice_attachments (
    id SERIAL PRIMARY KEY,
    invoice_id INTEGER NOT NULL REFERENCES incoming_invoices(id) ON DELETE CASCADE,
    file_name VARCHAR(255) NOT NULL,
    file_type VARCHAR(100) NOT NULL,
    file_size INTEGER NOT NULL,
    file_data BYTEA NOT NULL,
    kind VARCHAR(20) NOT NULL DEFAULT 'invoice'
        CHECK (kind IN ('invoice', 'receipt')),
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
"""


class DatabaseClient:
    """PostgreSQL database client using psycopg."""

    def __init__(self, database_url: str):
        """Initialize database client.

        Args:
            database_url: PostgreSQL connection string
        """
        self.database_url = database_url
        self._conn: Optional[psycopg.Connection] = None

    def connect(self):
        """Establish database connection."""
        if self._conn is None or self._conn.closed:
            self._conn = psycopg.connect(
                self.database_url,
                row_factory=dict_row,
                autocommit=False,  # We'll manage transactions explicitly
            )
            logger.info("Database connection established")
        return self._conn

    def close(self):
        """Close database connection."""
        if self._conn and not self._conn.closed:
            self._conn.close()
            logger.info("Database connection closed")

    @contextmanager
    def transaction(self):
        """Context manager for database transactions.

        Usage:
            with db.transaction() as conn:
                db.insert_incoming_invoice(record)
                # Automatically commits on success, rolls back on exception

        Yields:
            psycopg.Connection: Database connection object
        """
        conn = self.connect()
        try:
            yield conn
            conn.commit()
            logger.debug("Transaction committed")
        except Exception as e:
            conn.rollback()
            logger.debug(f"Transaction rolled back: {e}")
            raise

    def create_schema(self):
        """Create tables and constraints if they do not exist."""
        with self.transaction() as conn:
            conn.execute(SCHEMA_SQL)
        logger.info("Database schema ensured")

    # ========================================================================
    # Supplier Operations
    # ========================================================================

    def get_suppliers(self) -> list[Supplier]:
        """Fetch active supplier-capable companies.

        Returns:
            list[Supplier]: Companies of type supplier or both
        """
        conn = self.connect()
        with conn.cursor() as cur:
            cur.execute("""
                SELECT id, name, type, is_active
                FROM companies
                WHERE type IN ('supplier', 'both') AND is_active = TRUE
                ORDER BY id
            """)
            rows = cur.fetchall()
            return [Supplier(**row) for row in rows]

    def create_supplier(self, name: str) -> Supplier:
        """Create a supplier company, truncating the name to its column width.

        Note:
            This should be called within a transaction context.
        """
        name = clip(name, COLUMN_WIDTHS["supplier_name"])
        conn = self.connect()
        with conn.cursor() as cur:
            cur.execute("""
                INSERT INTO companies (name, type, is_active, created_at, updated_at)
                VALUES (%s, 'supplier', TRUE, %s, %s)
                RETURNING id, name, type, is_active
            """, (name, datetime.now(), datetime.now()))
            supplier = Supplier(**cur.fetchone())
            logger.info(f"Created supplier id={supplier.id} name={name!r}")
            return supplier

    # ========================================================================
    # Incoming Invoice Operations
    # ========================================================================

    def invoice_exists_for_email(self, source_email_id: str) -> bool:
        """Check whether an invoice was already ingested from this email."""
        conn = self.connect()
        with conn.cursor() as cur:
            cur.execute(
                "SELECT 1 FROM incoming_invoices WHERE source_email_id = %s LIMIT 1",
                (source_email_id,),
            )
            return cur.fetchone() is not None

    def insert_incoming_invoice(self, record: IncomingInvoiceRecord) -> int:
        """Insert an invoice header row.

        The unique constraint on source_email_id is the final guard against
        concurrent runs ingesting the same email.

        Returns:
            int: ID of the new row

        Raises:
            DuplicateInvoiceError: If a row for this source email already exists

        Note:
            This should be called within a transaction context.
        """
        conn = self.connect()
        with conn.cursor() as cur:
            cur.execute("""
                INSERT INTO incoming_invoices (
                    supplier_id, project_id, invoice_number, invoice_date,
                    description, language,
                    subtotal, tax_amount, total_amount, currency,
                    original_currency, original_subtotal, original_tax_amount, original_amount,
                    exchange_rate, exchange_rate_date,
                    notes, supplier_name, review_status, payment_status,
                    source, source_email_id, source_email_subject,
                    source_email_from, source_email_date, extracted_data,
                    created_at, updated_at
                ) VALUES (
                    %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s,
                    %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s
                )
                ON CONFLICT (source_email_id) DO NOTHING
                RETURNING id
            """, (
                record.supplier_id,
                record.project_id,
                record.invoice_number,
                record.invoice_date,
                record.description,
                record.language,
                record.subtotal,
                record.tax_amount,
                record.total_amount,
                record.currency,
                record.original_currency,
                record.original_subtotal,
                record.original_tax_amount,
                record.original_amount,
                record.exchange_rate,
                record.exchange_rate_date,
                record.notes,
                record.supplier_name,
                record.review_status.value,
                record.payment_status.value,
                record.source,
                record.source_email_id,
                record.source_email_subject,
                record.source_email_from,
                record.source_email_date,
                Jsonb(record.extracted_data) if record.extracted_data is not None else None,
                datetime.now(),  # created_at
                datetime.now(),  # updated_at
            ))
            row = cur.fetchone()

        if row is None:
            raise DuplicateInvoiceError(record.source_email_id)

        logger.info(f"Inserted incoming invoice id={row['id']} for email {record.source_email_id}")
        return row["id"]

    def insert_invoice_attachments(self, invoice_id: int, attachments: list[InvoiceAttachmentRecord]):
        """Insert attachment rows for an invoice.

        Note:
            This should be called within a transaction context.
        """
        if not attachments:
            return

        conn = self.connect()
        with conn.cursor() as cur:
            values = [
                (
                    invoice_id,
                    att.file_name,
                    att.file_type,
                    att.file_size,
                    att.file_data,
                    att.kind.value,
                    datetime.now(),
                )
                for att in attachments
            ]
            cur.executemany("""
                INSERT INTO incoming_invoice_attachments (
                    invoice_id, file_name, file_type, file_size, file_data, kind, created_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s)
            """, values)

        logger.debug(f"Inserted {len(attachments)} attachment(s) for invoice id={invoice_id}")
