"""
Transaction Categorizer Tests

Tests for the classification cascade and the rate-limited category oracle.
"""

import sys
from pathlib import Path
from unittest.mock import MagicMock, Mock

import anthropic
import httpx
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "python"))

from ingestion.categorizer import TransactionCategorizer
from ingestion.category_oracle import CategoryOracle, OracleRateLimiter
from ingestion.name_normalizer import normalize_merchant_name
from ledger_store import InMemoryDocumentStore, merchant_mappings


def rate_limit_error(retry_after: str | None = "30") -> anthropic.RateLimitError:
    headers = {"retry-after": retry_after} if retry_after else {}
    request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
    response = httpx.Response(429, headers=headers, request=request)
    return anthropic.RateLimitError("rate limited", response=response, body=None)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestCascade:
    """Tests for provider ordering and confidence."""

    def test_builtin_keyword(self, categorizer):
        result = categorizer.classify("스타벅스 강남점", 4500)

        assert result.category == "식비"
        assert result.confidence == 0.8
        assert result.tier == "builtin"
        assert result.name == "카페/음료"
        assert not result.needs_review

    def test_personal_mapping_wins(self, categorizer):
        result = categorizer.classify("스타벅스 강남점", 4500, personal_mapping={"스타벅스 강남점": "회식"})

        assert result.category == "회식"
        assert result.confidence == 0.95
        assert result.tier == "personal"

    def test_personal_mapping_key_is_case_insensitive(self, categorizer):
        result = categorizer.classify("  Bakery ABC ", 8000, personal_mapping={"bakery abc": "식비"})

        assert result.category == "식비"
        assert result.tier == "personal"

    def test_longest_keyword_mapping_wins(self, categorizer):
        result = categorizer.classify(
            "동네헬스장 3개월", 150000, keyword_mapping={"헬스": "운동", "헬스장": "건강"}
        )

        assert result.category == "건강"
        assert result.confidence == 0.9
        assert result.tier == "keyword"

    def test_keyword_mapping_beats_builtin(self, categorizer):
        result = categorizer.classify("스타벅스 강남점", 4500, keyword_mapping={"스타벅스": "커피"})

        assert result.category == "커피"

    def test_short_builtin_keyword_needs_whole_token(self, categorizer):
        assert categorizer.classify("CU 역삼점", 3000).category == "식비"
        assert categorizer.classify("circus", 3000).category == "기타"

    def test_merchant_mapping(self, categorizer):
        categorizer.merchant_mapping.set("블루보틀 성수점", "식비")

        result = categorizer.classify("블루보틀 삼청점", 6800)

        assert result.category == "식비"
        assert result.confidence == 0.85
        assert result.tier == "merchant"

    def test_default(self, categorizer):
        result = categorizer.classify("알수없는상점", 15000)

        assert result.category == "기타"
        assert result.confidence == 0.3
        assert result.needs_review
        assert result.tier == "default"

    def test_failing_provider_is_skipped(self, categorizer):
        broken = Mock(TIER="broken")
        broken.lookup.side_effect = RuntimeError("boom")
        categorizer.providers.insert(0, broken)

        result = categorizer.classify("스타벅스 강남점", 4500)

        assert result.category == "식비"


class TestLargeAmountOverride:
    """Large uncategorized amounts always go to review."""

    def test_large_default(self, categorizer):
        result = categorizer.classify("알수없는상점", 2_000_000)

        assert result.needs_review
        assert result.confidence == 0.3

    def test_large_keyword_mapped_to_default_category(self, categorizer):
        result = categorizer.classify("수상한입금처", 5_000_000, keyword_mapping={"수상한": "기타"})

        assert result.tier == "keyword"
        assert result.needs_review
        assert result.confidence == 0.3

    def test_personal_mapping_is_exempt(self, categorizer):
        result = categorizer.classify("알수없는상점", 2_000_000, personal_mapping={"알수없는상점": "기타"})

        assert result.confidence == 0.95
        assert not result.needs_review

    def test_large_categorized_amount_untouched(self, categorizer):
        result = categorizer.classify("(주)회사 급여", 3_000_000)

        assert result.category == "급여"
        assert not result.needs_review

    def test_threshold_is_exclusive(self, categorizer):
        assert not categorizer.classify("알수없는상점", 1_000_000).reason.endswith("large uncategorized amount")


class TestOracleTier:
    """Tests for the oracle as the last provider."""

    @pytest.fixture
    def oracle_categorizer(self, config_dir, oracle):
        return TransactionCategorizer(
            config_dir=config_dir,
            merchant_mapping=merchant_mappings(InMemoryDocumentStore(), normalize_merchant_name),
            oracle=oracle,
        )

    def test_answer_is_written_back(self, oracle_categorizer, oracle_client):
        first = oracle_categorizer.classify("블루보틀 성수점", 6800)
        second = oracle_categorizer.classify("블루보틀 삼청점", 7200)

        assert first.category == "식비"
        assert first.tier == "oracle"
        assert first.confidence == 0.85
        assert oracle_categorizer.merchant_mapping.get("블루보틀") == "식비"
        assert second.tier == "merchant"
        assert oracle_client.messages.create.call_count == 1

    def test_personal_transfer_not_sent(self, oracle_categorizer, oracle_client):
        result = oracle_categorizer.classify("홍길동 입금", 50000)

        assert result.category == "기타"
        oracle_client.messages.create.assert_not_called()

    def test_known_merchant_not_sent(self, oracle_categorizer, oracle_client):
        oracle_categorizer.classify("스타벅스 강남점", 4500)

        oracle_client.messages.create.assert_not_called()

    def test_oracle_no_answer_falls_to_default(self, oracle_categorizer, oracle_client):
        oracle_client.messages.create.return_value = MagicMock(content=[MagicMock(text="기타")])

        result = oracle_categorizer.classify("블루보틀 성수점", 6800)

        assert result.tier == "default"
        assert oracle_categorizer.merchant_mapping.all() == {}


class TestCategoryOracle:
    """Tests for the oracle client wrapper."""

    def test_unavailable_without_key(self, config_dir):
        oracle = CategoryOracle(["식비", "기타"], config_dir=config_dir)

        assert not oracle.available
        assert oracle.classify("블루보틀") is None

    @pytest.mark.parametrize("answer, expected", [
        ("식비", "식비"),
        (" \"교통비\". ", "교통비"),
        ("기타", None),
        ("잘 모르겠습니다", None),
        ("운동", None),
    ])
    def test_answer_must_be_in_vocabulary(self, oracle, answer, expected):
        assert oracle._parse_answer(answer) == expected

    def test_prompt_lists_categories(self, oracle):
        prompt = oracle._build_prompt("블루보틀")

        assert "식비, 교통비, 쇼핑, 기타" in prompt
        assert "블루보틀" in prompt

    def test_vocabulary_covers_builtin_categories(self, categorizer):
        assert set(categorizer.categories) <= set(categorizer.oracle_categories)
        assert "주유비" in categorizer.oracle_categories

    def test_model_from_environment(self, config_dir, oracle_client, monkeypatch):
        monkeypatch.setenv("CATEGORY_ORACLE_MODEL", "claude-haiku-4-5")

        oracle = CategoryOracle(["식비"], config_dir=config_dir, client=oracle_client)
        oracle.classify("블루보틀")

        assert oracle_client.messages.create.call_args.kwargs["model"] == "claude-haiku-4-5"

    def test_api_error_returns_none(self, oracle, oracle_client):
        oracle_client.messages.create.side_effect = RuntimeError("connection reset")

        assert oracle.classify("블루보틀") is None
        # the call slot is released again
        assert oracle.rate_limiter.acquire()
        oracle.rate_limiter.release()


class TestOracleRateLimiter:
    """Tests for quota cool-down and call serialization."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def limited_oracle(self, config_dir, oracle_client, clock):
        limiter = OracleRateLimiter(acquire_timeout=0.01, default_cooldown=60, clock=clock)
        return CategoryOracle(["식비", "기타"], config_dir=config_dir, rate_limiter=limiter, client=oracle_client)

    def test_quota_error_starts_cooldown(self, limited_oracle, oracle_client, clock):
        oracle_client.messages.create.side_effect = rate_limit_error("30")

        assert limited_oracle.classify("블루보틀") is None
        assert limited_oracle.rate_limiter.in_cooldown
        assert limited_oracle.rate_limiter.cooldown_remaining == 30

        # no call while cooling down
        assert limited_oracle.classify("블루보틀") is None
        assert oracle_client.messages.create.call_count == 1

        clock.now += 31
        oracle_client.messages.create.side_effect = None
        assert limited_oracle.classify("블루보틀") == "식비"
        assert oracle_client.messages.create.call_count == 2

    def test_quota_error_without_retry_after(self, limited_oracle, oracle_client):
        oracle_client.messages.create.side_effect = rate_limit_error(None)

        limited_oracle.classify("블루보틀")

        assert limited_oracle.rate_limiter.cooldown_remaining == 60

    def test_busy_slot_times_out(self, limited_oracle, oracle_client):
        limiter = limited_oracle.rate_limiter
        assert limiter.acquire()
        try:
            assert limited_oracle.classify("블루보틀") is None
        finally:
            limiter.release()

        oracle_client.messages.create.assert_not_called()
