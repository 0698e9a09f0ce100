"""Map extracted vendor names onto the supplier registry."""

import logging
import re
from typing import Optional, Protocol, Sequence

from .models import Supplier

logger = logging.getLogger(__name__)

LEGAL_SUFFIXES = {
    "bv", "nv", "vof", "ltd", "limited", "llc", "llp", "inc", "incorporated",
    "corp", "corporation", "co", "company", "gmbh", "ag", "kg", "sa", "sas",
    "sarl", "srl", "spa", "plc", "pte", "pty", "ab", "oy", "as",
}


class SupplierMatcher(Protocol):
    """Fuzzy fallback used when no supplier name matches exactly."""

    def match(self, vendor_name: str, suppliers: Sequence[Supplier]) -> Optional[Supplier]:
        ...


class SubstringMatcher:
    """Bidirectional case-insensitive containment, shortest matching name wins.

    Known to produce false positives for very short names ("A" matches "AB Corp").
    """

    def match(self, vendor_name: str, suppliers: Sequence[Supplier]) -> Optional[Supplier]:
        needle = vendor_name.strip().lower()
        if not needle:
            return None

        candidates = [
            s for s in suppliers
            if s.name.strip() and (needle in s.name.lower() or s.name.strip().lower() in needle)
        ]
        if not candidates:
            return None
        return min(candidates, key=lambda s: len(s.name))


def name_tokens(name: str) -> set[str]:
    """Lower-case word tokens with legal-form suffixes dropped ("Acme B.V." -> {"acme"})."""
    words = re.findall(r"[\w.]+", name.lower())
    tokens = set()
    for word in words:
        word = word.replace(".", "")
        if word and word not in LEGAL_SUFFIXES:
            tokens.add(word)
    return tokens


class TokenOverlapMatcher:
    """Jaccard similarity over name tokens, ignoring legal-form suffixes."""

    def __init__(self, threshold: float = 0.5):
        self.threshold = threshold

    def match(self, vendor_name: str, suppliers: Sequence[Supplier]) -> Optional[Supplier]:
        wanted = name_tokens(vendor_name)
        if not wanted:
            return None

        best: Optional[Supplier] = None
        best_score = 0.0
        for supplier in suppliers:
            tokens = name_tokens(supplier.name)
            if not tokens:
                continue
            score = len(wanted & tokens) / len(wanted | tokens)
            if score > best_score or (
                score == best_score and best is not None and len(supplier.name) < len(best.name)
            ):
                best, best_score = supplier, score

        if best is None or best_score < self.threshold:
            return None
        return best


class SupplierResolver:
    """Find an existing supplier for a vendor name, or create one.

    Args:
        db: Object exposing get_suppliers() and create_supplier(name)
        matcher: Fuzzy strategy applied after the exact match fails
    """

    def __init__(self, db, matcher: Optional[SupplierMatcher] = None):
        self.db = db
        self.matcher = matcher or SubstringMatcher()

    def find_or_create(self, vendor_name: str) -> int:
        """Resolve a vendor name to a supplier id.

        Storage errors propagate to the caller.

        Args:
            vendor_name: Vendor name as extracted from the document

        Returns:
            int: ID of the matched or newly created supplier
        """
        name = vendor_name.strip()
        if not name:
            raise ValueError("Vendor name is empty")

        suppliers = [s for s in self.db.get_suppliers() if s.is_supplier and s.is_active]

        lowered = name.lower()
        for supplier in suppliers:
            if supplier.name.strip().lower() == lowered:
                logger.debug(f"Exact supplier match for {name!r}: id={supplier.id}")
                return supplier.id

        match = self.matcher.match(name, suppliers)
        if match is not None:
            logger.info(f"Fuzzy supplier match for {name!r}: {match.name!r} (id={match.id})")
            return match.id

        created = self.db.create_supplier(name)
        logger.info(f"No supplier matched {name!r}; created id={created.id}")
        return created.id
