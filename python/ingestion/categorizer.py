"""
Transaction Categorizer Module

Assigns a spending category through a cascade of providers: the user's own
name mappings, keyword mappings, the built-in keyword table, learned merchant
mappings and finally the remote category oracle.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

import yaml

from ledger_store import InMemoryDocumentStore, MappingStore, merchant_mappings
from ledger_store.config import default_config_dir

from .category_oracle import CategoryOracle
from .models import DEFAULT_CATEGORY
from .name_normalizer import contains_keyword, display_name, normalize_key, normalize_merchant_name

logger = logging.getLogger(__name__)


@dataclass
class ProviderMatch:
    """A category proposed by one provider."""

    category: str
    confidence: float
    reason: str


@dataclass
class ClassificationResult:
    """Transaction classification result."""

    category: str
    name: str
    confidence: float
    needs_review: bool
    reason: str
    tier: str  # 'personal', 'keyword', 'builtin', 'merchant', 'oracle', 'default'

    def to_dict(self) -> dict:
        return {
            "category": self.category,
            "name": self.name,
            "confidence": self.confidence,
            "needsReview": self.needs_review,
            "reason": self.reason,
            "tier": self.tier,
        }


@dataclass
class ClassificationContext:
    """Inputs shared by every provider for one classification."""

    text: str
    personal_mapping: dict[str, str]
    keyword_mapping: dict[str, str]

    @property
    def lowered(self) -> str:
        return self.text.lower()


class CategoryProvider(ABC):
    """One tier of the classification cascade."""

    TIER: str = ""

    def __init__(self, confidence: float):
        self.confidence = confidence

    @abstractmethod
    def lookup(self, context: ClassificationContext) -> ProviderMatch | None:
        pass


class PersonalMappingProvider(CategoryProvider):
    """Exact match on the user's own name -> category mapping."""

    TIER = "personal"

    def lookup(self, context: ClassificationContext) -> ProviderMatch | None:
        category = context.personal_mapping.get(normalize_key(context.text))
        if category:
            return ProviderMatch(category, self.confidence, "personal mapping")
        return None


class KeywordMappingProvider(CategoryProvider):
    """Substring match on user-defined keywords; longer keywords win."""

    TIER = "keyword"

    def lookup(self, context: ClassificationContext) -> ProviderMatch | None:
        lowered = context.lowered
        for keyword in sorted(context.keyword_mapping, key=len, reverse=True):
            if keyword and keyword.lower() in lowered:
                return ProviderMatch(
                    context.keyword_mapping[keyword], self.confidence, f"keyword '{keyword}'"
                )
        return None


class BuiltinKeywordProvider(CategoryProvider):
    """The shipped category keyword table, checked in category order."""

    TIER = "builtin"

    def __init__(self, confidence: float, categories: dict[str, list[str]]):
        super().__init__(confidence)
        self.categories = categories

    def lookup(self, context: ClassificationContext) -> ProviderMatch | None:
        lowered = context.lowered
        for category, keywords in self.categories.items():
            for keyword in keywords:
                if contains_keyword(lowered, str(keyword)):
                    return ProviderMatch(category, self.confidence, f"built-in keyword '{keyword}'")
        return None


class MerchantMappingProvider(CategoryProvider):
    """Learned global mapping keyed by the normalized merchant name."""

    TIER = "merchant"

    def __init__(self, confidence: float, mappings: MappingStore):
        super().__init__(confidence)
        self.mappings = mappings

    def lookup(self, context: ClassificationContext) -> ProviderMatch | None:
        category = self.mappings.get(context.text)
        if category:
            return ProviderMatch(category, self.confidence, "merchant mapping")
        return None


class OracleProvider(CategoryProvider):
    """Remote oracle; answers are written back to the merchant mapping."""

    TIER = "oracle"

    def __init__(
        self,
        confidence: float,
        oracle: CategoryOracle,
        mappings: MappingStore,
        transfer_keywords: list[str],
    ):
        super().__init__(confidence)
        self.oracle = oracle
        self.mappings = mappings
        self.transfer_keywords = transfer_keywords

    def is_personal_transfer(self, text: str) -> bool:
        return any(keyword in text for keyword in self.transfer_keywords)

    def lookup(self, context: ClassificationContext) -> ProviderMatch | None:
        if not self.oracle.available or self.is_personal_transfer(context.text):
            return None

        category = self.oracle.classify(context.text)
        if not category:
            return None

        try:
            self.mappings.set(context.text, category)
        except ValueError as e:
            logger.warning(f"Could not store merchant mapping for {context.text!r}: {e}")
        return ProviderMatch(category, self.confidence, "category oracle")


class TransactionCategorizer:
    """Runs the provider cascade; the first provider with an answer wins."""

    DEFAULT_CONFIDENCE = {
        "personal_mapping": 0.95,
        "keyword_mapping": 0.90,
        "builtin_keywords": 0.80,
        "merchant_mapping": 0.85,
        "oracle": 0.85,
        "default": 0.30,
    }
    DEFAULT_LARGE_AMOUNT = 1_000_000

    def __init__(
        self,
        config_dir: Path | str | None = None,
        merchant_mapping: MappingStore | None = None,
        oracle: CategoryOracle | None = None,
        use_oracle: bool = True,
    ):
        """Initialize the categorizer.

        Args:
            config_dir: Path to configuration directory
            merchant_mapping: Global merchant mapping; in-memory if omitted
            oracle: Category oracle; built from config when omitted
            use_oracle: Whether the remote oracle tier is enabled
        """
        self.config_dir = Path(config_dir) if config_dir else default_config_dir()
        self._load_config()

        self.merchant_mapping = merchant_mapping or merchant_mappings(
            InMemoryDocumentStore(), normalize_merchant_name
        )

        confidence = {**self.DEFAULT_CONFIDENCE, **self.config.get("confidence", {})}
        self.default_confidence = confidence["default"]
        self.large_amount_threshold = self.config.get("large_amount_threshold", self.DEFAULT_LARGE_AMOUNT)

        self.providers: list[CategoryProvider] = [
            PersonalMappingProvider(confidence["personal_mapping"]),
            KeywordMappingProvider(confidence["keyword_mapping"]),
            BuiltinKeywordProvider(confidence["builtin_keywords"], self.categories),
            MerchantMappingProvider(confidence["merchant_mapping"], self.merchant_mapping),
        ]

        if use_oracle:
            self.oracle = oracle or CategoryOracle(self.oracle_categories, config_dir=self.config_dir)
            self.providers.append(OracleProvider(
                confidence["oracle"], self.oracle, self.merchant_mapping, self.transfer_keywords
            ))
        else:
            self.oracle = None

    def _load_config(self) -> None:
        """Load the keyword table and classification thresholds."""
        keywords_file = self.config_dir / "category_keywords.yaml"
        if keywords_file.exists():
            with open(keywords_file, encoding="utf-8") as f:
                keywords = yaml.safe_load(f) or {}
        else:
            logger.warning(f"Category keyword table not found: {keywords_file}")
            keywords = {}

        self.categories: dict[str, list[str]] = keywords.get("categories", {})
        self.brand_labels: dict[str, str] = keywords.get("brand_labels", {})
        self.oracle_categories: list[str] = keywords.get("oracle_categories", list(self.categories) + [DEFAULT_CATEGORY])
        self.transfer_keywords: list[str] = keywords.get("personal_transfer_keywords", [])

        pipeline_file = self.config_dir / "pipeline.yaml"
        if pipeline_file.exists():
            with open(pipeline_file) as f:
                self.config = (yaml.safe_load(f) or {}).get("classification", {})
        else:
            self.config = {}

    @property
    def category_names(self) -> list[str]:
        names = list(self.categories)
        if DEFAULT_CATEGORY not in names:
            names.append(DEFAULT_CATEGORY)
        return names

    def display_name(self, text: str) -> str:
        return display_name(text, self.brand_labels)

    def classify(
        self,
        text: str,
        amount: int = 0,
        personal_mapping: dict[str, str] | None = None,
        keyword_mapping: dict[str, str] | None = None,
    ) -> ClassificationResult:
        """Classify one transaction text.

        Args:
            text: Raw merchant / transaction text
            amount: Transaction amount (magnitude)
            personal_mapping: Profile name -> category mapping (normalized keys)
            keyword_mapping: Keyword -> category mapping

        Returns:
            ClassificationResult; never raises for provider failures
        """
        text = (text or "").strip()
        context = ClassificationContext(
            text=text,
            personal_mapping=personal_mapping or {},
            keyword_mapping=keyword_mapping or {},
        )

        result = None
        for provider in self.providers:
            try:
                match = provider.lookup(context)
            except Exception as e:
                logger.warning(f"{provider.TIER} lookup failed for {text!r}: {e}")
                continue
            if match:
                result = ClassificationResult(
                    category=match.category,
                    name=self.display_name(text),
                    confidence=match.confidence,
                    needs_review=False,
                    reason=match.reason,
                    tier=provider.TIER,
                )
                break

        if result is None:
            result = ClassificationResult(
                category=DEFAULT_CATEGORY,
                name=self.display_name(text),
                confidence=self.default_confidence,
                needs_review=True,
                reason="no rule matched",
                tier="default",
            )

        if self.needs_large_amount_review(result.category, amount, result.tier):
            result.needs_review = True
            result.confidence = self.default_confidence
            result.reason = f"{result.reason}; large uncategorized amount"

        return result

    def needs_large_amount_review(self, category: str, amount: int, tier: str) -> bool:
        """Large amounts left in the default category always go to review.

        Answers from the personal mapping are exempt.
        """
        return (
            amount > self.large_amount_threshold
            and category == DEFAULT_CATEGORY
            and tier != PersonalMappingProvider.TIER
        )
