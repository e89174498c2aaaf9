import pytest

from ledgerwise.models.patterns import CategoryPattern, PaymentPattern, VendorPattern
from ledgerwise.services.pattern_repository import InMemoryPatternRepository, SQLitePatternRepository, parse_record
from ledgerwise.services.pattern_store import PatternStore, normalize_vendor, tokenize


def test_normalize_vendor_strips_suffixes_and_punctuation():
    assert normalize_vendor("HOME DEPOT, Inc.") == "home depot"
    assert normalize_vendor("  Acme   Widgets LLC ") == "acme widgets"
    assert normalize_vendor("") == ""
    assert normalize_vendor(None) == ""


def test_tokenize_drops_short_and_numeric_tokens():
    assert tokenize("Fuel Purchase Pump #4 at 7am") == {"fuel", "pump", "7am"}


class TestPatternStoreLookups:
    def setup_method(self):
        self.store = PatternStore()
        self.store.upsert_vendor_pattern(
            VendorPattern(key="home depot", vendor="Home Depot", category="supplies",
                          transaction_type="expense", confidence=0.8, correction_count=2)
        )
        self.store.upsert_category_pattern(
            CategoryPattern(id=CategoryPattern.make_id("other", "supplies"), from_category="other",
                            to_category="supplies", keywords=["lumber"], vendors=["home depot"])
        )
        self.store.upsert_payment_pattern(
            PaymentPattern(key="home depot", vendor="Home Depot", payment_method="Debit")
        )

    def test_vendor_lookup_is_case_insensitive_exact(self):
        assert self.store.find_vendor_pattern("HOME DEPOT").category == "supplies"
        assert self.store.find_vendor_pattern("Home Depot Pro") is None

    def test_category_patterns_match_keyword_or_vendor(self):
        by_keyword = self.store.find_category_patterns("2 lumber boards", "Some Yard")
        by_vendor = self.store.find_category_patterns("misc", "Home Depot")
        assert [p.id for p in by_keyword] == ["cat:other->supplies"]
        assert [p.id for p in by_vendor] == ["cat:other->supplies"]
        assert self.store.find_category_patterns("misc", "Elsewhere") == []

    def test_payment_lookup(self):
        assert self.store.find_payment_pattern("home depot").payment_method == "Debit"
        assert self.store.find_payment_pattern("") is None

    def test_lookups_return_copies(self):
        pattern = self.store.find_vendor_pattern("Home Depot")
        pattern.category = "meals"
        assert self.store.find_vendor_pattern("Home Depot").category == "supplies"

    def test_upsert_replaces_whole_record(self):
        self.store.upsert_payment_pattern(
            PaymentPattern(key="home depot", vendor="Home Depot", payment_method="Credit")
        )
        assert len(self.store.payment_patterns()) == 1
        assert self.store.find_payment_pattern("Home Depot").payment_method == "Credit"

    def test_statistics(self):
        stats = self.store.statistics()
        assert stats["vendor_patterns"] == 1
        assert stats["category_patterns"] == 1
        assert stats["payment_patterns"] == 1
        assert stats["average_vendor_confidence"] == 0.8


def test_persist_and_reload_in_memory():
    repository = InMemoryPatternRepository()
    store = PatternStore()
    store.upsert_vendor_pattern(VendorPattern(key="shell", vendor="Shell", category="car_and_truck"))
    store.persist(repository)

    reloaded = PatternStore.from_repository(repository)
    assert reloaded.find_vendor_pattern("Shell").category == "car_and_truck"


def test_sqlite_repository_round_trip(tmp_path):
    repository = SQLitePatternRepository(str(tmp_path / "state" / "patterns.sqlite3"))
    store = PatternStore()
    store.upsert_vendor_pattern(
        VendorPattern(key="shell", vendor="Shell", category="car_and_truck", transaction_type="expense")
    )
    store.upsert_category_pattern(
        CategoryPattern(id="cat:other->meals", from_category="other", to_category="meals",
                        keywords=["lunch"], reasons=["client lunch"])
    )
    store.persist(repository)

    reopened = SQLitePatternRepository(str(tmp_path / "state" / "patterns.sqlite3"))
    reloaded = PatternStore.from_repository(reopened)
    assert reloaded.find_vendor_pattern("shell").transaction_type == "expense"
    assert reloaded.find_category_patterns("lunch", "")[0].reasons == ["client lunch"]


def test_save_all_replaces_previous_records(tmp_path):
    repository = SQLitePatternRepository(str(tmp_path / "patterns.sqlite3"))
    repository.save_all("payment", [PaymentPattern(key="a", vendor="A", payment_method="Cash")])
    repository.save_all("payment", [PaymentPattern(key="b", vendor="B", payment_method="Check")])
    assert [p.key for p in repository.load_all("payment")] == ["b"]


def test_parse_record_dispatches_on_kind():
    payload = PaymentPattern(key="shell", vendor="Shell", payment_method="Debit").model_dump_json()
    assert isinstance(parse_record("payment", payload), PaymentPattern)
    with pytest.raises(ValueError):
        parse_record("vendor", payload)
