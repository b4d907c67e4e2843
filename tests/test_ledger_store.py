"""
Ledger Store Tests

Runs the document store contract against the in-memory and SQL backends, and
tests the mapping tables on top of them.
"""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "python"))

from ingestion.name_normalizer import normalize_merchant_name
from ledger_store import (
    TRANSACTIONS,
    InMemoryDocumentStore,
    SqlDocumentStore,
    keyword_mappings,
    merchant_mappings,
    personal_mappings,
)
from ledger_store.database import create_ledger_engine


@pytest.fixture(params=["memory", "sql"])
def any_store(request, tmp_path):
    if request.param == "memory":
        yield InMemoryDocumentStore()
        return
    engine = create_ledger_engine(f"sqlite:///{tmp_path}/ledger.db")
    yield SqlDocumentStore(engine=engine)
    engine.dispose()


def record(doc_id: str, **fields) -> dict:
    return {"id": doc_id, "name": "스타벅스", "amount": 4500, **fields}


class TestDocumentStore:
    """Tests shared by every backend."""

    def test_upsert_and_read(self, any_store):
        any_store.batch_upsert("p1", TRANSACTIONS, [record("a"), record("b")])

        records = sorted(any_store.get_all("p1", TRANSACTIONS), key=lambda r: r["id"])

        assert [r["id"] for r in records] == ["a", "b"]
        assert records[0]["name"] == "스타벅스"

    def test_upsert_overwrites(self, any_store):
        any_store.batch_upsert("p1", TRANSACTIONS, [record("a")])
        any_store.batch_upsert("p1", TRANSACTIONS, [record("a", amount=5000)])

        [stored] = any_store.get_all("p1", TRANSACTIONS)

        assert stored["amount"] == 5000

    def test_profiles_are_isolated(self, any_store):
        any_store.batch_upsert("p1", TRANSACTIONS, [record("a")])

        assert any_store.get_all("p2", TRANSACTIONS) == []

    def test_replace_all(self, any_store):
        any_store.batch_upsert("p1", TRANSACTIONS, [record("a"), record("b")])

        any_store.replace_all("p1", TRANSACTIONS, [record("c")])

        assert [r["id"] for r in any_store.get_all("p1", TRANSACTIONS)] == ["c"]

    def test_batch_delete_counts(self, any_store):
        any_store.batch_upsert("p1", TRANSACTIONS, [record("a"), record("b")])

        assert any_store.batch_delete("p1", TRANSACTIONS, ["a", "missing"]) == 1
        assert [r["id"] for r in any_store.get_all("p1", TRANSACTIONS)] == ["b"]

    def test_delete_all(self, any_store):
        any_store.batch_upsert("p1", TRANSACTIONS, [record("a"), record("b")])

        assert any_store.delete_all("p1", TRANSACTIONS) == 2
        assert any_store.get_all("p1", TRANSACTIONS) == []

    def test_settings(self, any_store):
        any_store.set_setting("keyword_mappings", "헬스", "운동")
        any_store.set_setting("keyword_mappings", "헬스", "건강")
        any_store.set_setting("keyword_mappings", "넷플릭스", "구독")

        assert any_store.get_settings("keyword_mappings") == {"헬스": "건강", "넷플릭스": "구독"}
        assert any_store.delete_setting("keyword_mappings", "헬스")
        assert not any_store.delete_setting("keyword_mappings", "헬스")
        assert any_store.clear_settings("keyword_mappings") == 1
        assert any_store.get_settings("keyword_mappings") == {}


class TestMappings:
    """Tests for the mapping tables."""

    def test_personal_mapping_is_per_profile(self, store):
        personal_mappings(store, "p1").set("Bakery ABC", "식비")

        assert personal_mappings(store, "p1").get("  bakery abc ") == "식비"
        assert personal_mappings(store, "p2").get("bakery abc") is None

    def test_keyword_mapping(self, store):
        mapping = keyword_mappings(store)

        assert mapping.set(" 헬스장 ", "운동") == "헬스장"
        assert mapping.all() == {"헬스장": "운동"}
        assert mapping.delete("헬스장")

    def test_merchant_mapping_uses_normalized_key(self, store):
        mapping = merchant_mappings(store, normalize_merchant_name)

        assert mapping.set("KB국민카드 블루보틀 성수점", "식비") == "블루보틀"
        assert mapping.get("블루보틀 삼청점") == "식비"

    def test_empty_key_rejected(self, store):
        with pytest.raises(ValueError):
            keyword_mappings(store).set("   ", "기타")
