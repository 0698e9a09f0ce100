"""Tests for supplier resolution against the in-memory registry."""

import pytest

from payables.models import Supplier
from payables.suppliers import SubstringMatcher, SupplierResolver, TokenOverlapMatcher, name_tokens


class TestFindOrCreate:

    def test_fuzzy_match_reuses_existing_supplier(self, db):
        acme = db.add_supplier("Acme B.V.")

        assert SupplierResolver(db).find_or_create("ACME") == acme.id
        assert len(db.suppliers) == 1

    def test_exact_match_is_case_insensitive(self, db):
        db.add_supplier("Globex Corporation")
        globex = db.add_supplier("Globex")

        assert SupplierResolver(db).find_or_create("  globex ") == globex.id

    def test_exact_match_beats_shorter_substring(self, db):
        db.add_supplier("Ab")
        target = db.add_supplier("Abc Holdings")

        assert SupplierResolver(db).find_or_create("abc holdings") == target.id

    def test_creates_supplier_when_nothing_matches(self, db):
        db.add_supplier("Acme B.V.")

        supplier_id = SupplierResolver(db).find_or_create("Initech")

        assert supplier_id == 2
        assert db.suppliers[-1].name == "Initech"
        assert db.suppliers[-1].type == "supplier"
        assert db.suppliers[-1].is_active

    def test_ignores_clients_and_inactive_companies(self, db):
        db.add_supplier("Acme", type="client")
        db.add_supplier("Acme Old", is_active=False)

        supplier_id = SupplierResolver(db).find_or_create("Acme")

        assert supplier_id == 3

    def test_both_role_counts_as_supplier(self, db):
        both = db.add_supplier("Acme", type="both")
        assert SupplierResolver(db).find_or_create("Acme") == both.id

    def test_empty_name_raises(self, db):
        with pytest.raises(ValueError):
            SupplierResolver(db).find_or_create("   ")

    def test_custom_matcher_is_used(self, db):
        db.add_supplier("Acme B.V.")

        resolver = SupplierResolver(db, matcher=TokenOverlapMatcher())

        assert resolver.find_or_create("Acme Ltd") == 1


class TestSubstringMatcher:

    def test_vendor_contains_supplier_name(self):
        suppliers = [Supplier(id=1, name="Globex")]
        assert SubstringMatcher().match("Globex Corp International", suppliers).id == 1

    def test_shortest_match_wins(self):
        suppliers = [Supplier(id=1, name="Acme Holdings B.V."), Supplier(id=2, name="Acme B.V.")]
        assert SubstringMatcher().match("acme", suppliers).id == 2

    def test_no_match(self):
        assert SubstringMatcher().match("Initech", [Supplier(id=1, name="Globex")]) is None


class TestTokenOverlapMatcher:

    def test_ignores_legal_suffixes(self):
        assert name_tokens("Acme B.V.") == {"acme"}
        assert name_tokens("Globex Corp, Inc.") == {"globex"}

    def test_avoids_single_letter_false_positive(self):
        suppliers = [Supplier(id=1, name="Abacus Corp")]
        assert TokenOverlapMatcher().match("A", suppliers) is None
        assert SubstringMatcher().match("A", suppliers).id == 1

    def test_threshold(self):
        suppliers = [Supplier(id=1, name="Acme Industrial Supplies")]
        assert TokenOverlapMatcher(threshold=0.5).match("Acme", suppliers) is None
        assert TokenOverlapMatcher(threshold=0.3).match("Acme", suppliers).id == 1
