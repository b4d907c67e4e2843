"""
Category Oracle

Last-resort merchant categorization through the Claude API, behind a
rate limiter that serializes calls and honours quota cool-downs.
"""

import logging
import os
import threading
import time
from pathlib import Path
from typing import Any, Callable

import anthropic
import yaml

from ledger_store.config import default_config_dir

logger = logging.getLogger(__name__)


class OracleRateLimiter:
    """Serializes oracle calls and tracks the quota cool-down window.

    The clock is injectable so tests can move time without sleeping.
    """

    def __init__(
        self,
        acquire_timeout: float = 10.0,
        default_cooldown: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the limiter.

        Args:
            acquire_timeout: Seconds to wait for the call slot before giving up
            default_cooldown: Cool-down used when a quota error has no retry-after
            clock: Monotonic clock returning seconds
        """
        self.acquire_timeout = acquire_timeout
        self.default_cooldown = default_cooldown
        self._clock = clock
        self._lock = threading.Lock()
        self._cooldown_until = 0.0

    @property
    def in_cooldown(self) -> bool:
        return self._clock() < self._cooldown_until

    @property
    def cooldown_remaining(self) -> float:
        return max(0.0, self._cooldown_until - self._clock())

    def acquire(self) -> bool:
        """Take the call slot; False when it is not free within the timeout."""
        return self._lock.acquire(timeout=self.acquire_timeout)

    def release(self) -> None:
        self._lock.release()

    def start_cooldown(self, seconds: float | None = None) -> None:
        seconds = self.default_cooldown if seconds is None else seconds
        self._cooldown_until = self._clock() + seconds
        logger.warning(f"Category oracle quota hit; pausing calls for {seconds:.0f}s")


def _retry_after(error: Exception) -> float | None:
    response = getattr(error, "response", None)
    headers = getattr(response, "headers", None) or {}
    value = headers.get("retry-after")
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


class CategoryOracle:
    """Asks Claude for the category of an unknown merchant."""

    DEFAULT_MODEL = "claude-sonnet-4-5-20250929"
    DEFAULT_MAX_TOKENS = 20
    NO_ANSWER = "기타"

    def __init__(
        self,
        categories: list[str],
        api_key: str | None = None,
        model: str | None = None,
        rate_limiter: OracleRateLimiter | None = None,
        config_dir: Path | str | None = None,
        client: Any = None,
    ):
        """Initialize the oracle.

        Args:
            categories: Closed vocabulary the answer must come from
            api_key: Anthropic API key (defaults to ANTHROPIC_API_KEY)
            model: Claude model (defaults to CATEGORY_ORACLE_MODEL or config)
            rate_limiter: Shared limiter; one is built from config if omitted
            config_dir: Path to configuration directory
            client: Pre-built Anthropic client
        """
        self.config_dir = Path(config_dir) if config_dir else default_config_dir()
        self.categories = list(categories)
        self._load_config()

        self.model = model or os.getenv("CATEGORY_ORACLE_MODEL") or self.config.get("model", self.DEFAULT_MODEL)
        self.max_tokens = self.config.get("max_tokens", self.DEFAULT_MAX_TOKENS)
        self.rate_limiter = rate_limiter or OracleRateLimiter(
            acquire_timeout=self.config.get("acquire_timeout_seconds", 10.0),
            default_cooldown=self.config.get("default_cooldown_seconds", 60.0),
        )

        api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
        if client is None and api_key:
            client = anthropic.Anthropic(api_key=api_key)
        self.client = client
        if self.client is None:
            logger.info("ANTHROPIC_API_KEY not set; category oracle disabled")

    def _load_config(self) -> None:
        config_file = self.config_dir / "pipeline.yaml"
        if config_file.exists():
            with open(config_file) as f:
                self.config = (yaml.safe_load(f) or {}).get("oracle", {})
        else:
            self.config = {}

    @property
    def available(self) -> bool:
        return self.client is not None

    def _build_prompt(self, merchant: str) -> str:
        return (
            "다음 거래처/가맹점 이름을 보고 가계부 카테고리를 하나만 골라주세요.\n"
            f"카테고리 목록: {', '.join(self.categories)}\n"
            f"거래처: {merchant}\n"
            "목록에 있는 카테고리 이름만 답하세요. 확실하지 않으면 '기타'라고 답하세요."
        )

    def _parse_answer(self, text: str) -> str | None:
        answer = text.strip().strip("\"'`.").strip()
        if answer in self.categories and answer != self.NO_ANSWER:
            return answer
        return None

    def classify(self, merchant: str) -> str | None:
        """Return a category for the merchant, or None for no answer.

        Never raises: API failures, timeouts and quota cool-downs all come
        back as None.
        """
        if not self.available or not merchant:
            return None
        if self.rate_limiter.in_cooldown:
            logger.debug(f"Oracle cooling down ({self.rate_limiter.cooldown_remaining:.0f}s left)")
            return None
        if not self.rate_limiter.acquire():
            logger.warning(f"Timed out waiting for the oracle slot: {merchant}")
            return None

        try:
            if self.rate_limiter.in_cooldown:
                return None

            message = self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                messages=[{"role": "user", "content": self._build_prompt(merchant)}],
            )
            category = self._parse_answer(message.content[0].text)
            logger.debug(f"Oracle answered {category!r} for {merchant!r}")
            return category

        except anthropic.RateLimitError as e:
            self.rate_limiter.start_cooldown(_retry_after(e))
            return None
        except Exception as e:
            logger.error(f"Category oracle error: {e}")
            return None
        finally:
            self.rate_limiter.release()
