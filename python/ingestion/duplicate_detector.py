"""
Duplicate Transaction Detector Module

Merges a freshly parsed batch into the stored transactions: cancels refund
pairs, rejects duplicates and flags ambiguous look-alikes for review.
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path

import yaml

from ledger_store.config import default_config_dir

from .models import Transaction

logger = logging.getLogger(__name__)


def name_similarity(a: str, b: str) -> float:
    """Coarse character-set overlap between two names.

    Identical strings score 1.0 and an empty string 0.0. Otherwise the number
    of distinct characters of the shorter string found in the longer one is
    divided by the longer string's length; containment lifts the score to at
    least 0.8.
    """
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0

    longer, shorter = (a, b) if len(a) >= len(b) else (b, a)
    common = sum(1 for char in set(shorter) if char in longer)
    score = common / len(longer)

    if shorter in longer:
        score = max(score, 0.8)
    return score


def _label(txn: Transaction) -> str:
    return (txn.original_text or txn.name or "").strip()


@dataclass
class MergeResult:
    """Outcome of merging a batch into the existing transactions."""

    accepted: list[Transaction] = field(default_factory=list)
    ambiguous: list[Transaction] = field(default_factory=list)
    duplicates: list[Transaction] = field(default_factory=list)
    cancelled_ids: list[str] = field(default_factory=list)
    removed_original_ids: list[str] = field(default_factory=list)
    settled: list[Transaction] = field(default_factory=list)  # both halves of each pair

    @property
    def duplicate_count(self) -> int:
        return len(self.duplicates)

    @property
    def cancelled_count(self) -> int:
        """Number of cancellation pairs removed."""
        return len(self.cancelled_ids)

    @property
    def to_store(self) -> list[Transaction]:
        return self.accepted + self.ambiguous


class DuplicateDetector:
    """Scores batch records against stored ones and decides accept / review / reject."""

    REJECT_THRESHOLD = 0.9
    REVIEW_THRESHOLD = 0.5

    CANCEL_WINDOW_DAYS = 4
    CANCEL_AMOUNT_TOLERANCE = 1
    CANCEL_NAME_SIMILARITY = 0.8

    NEAR_WINDOW = timedelta(minutes=5)
    SAME_VISIT_WINDOW = timedelta(minutes=30)

    def __init__(
        self,
        reject_threshold: float = REJECT_THRESHOLD,
        review_threshold: float = REVIEW_THRESHOLD,
        cancel_window_days: int = CANCEL_WINDOW_DAYS,
        cancel_amount_tolerance: int = CANCEL_AMOUNT_TOLERANCE,
        cancel_name_similarity: float = CANCEL_NAME_SIMILARITY,
        prefer_closest_datetime: bool = False,
    ):
        """Initialize the duplicate detector.

        Args:
            reject_threshold: Score at or above which a record is dropped
            review_threshold: Score at or above which a record is flagged
            cancel_window_days: Max days between a cancellation and its original
            cancel_amount_tolerance: Max amount difference for a cancellation pair
            cancel_name_similarity: Min name similarity for a cancellation pair
            prefer_closest_datetime: Pair a cancellation with the closest-in-time
                original instead of the first one found
        """
        self.reject_threshold = reject_threshold
        self.review_threshold = review_threshold
        self.cancel_window_days = cancel_window_days
        self.cancel_amount_tolerance = cancel_amount_tolerance
        self.cancel_name_similarity = cancel_name_similarity
        self.prefer_closest_datetime = prefer_closest_datetime

    @classmethod
    def from_config(cls, config_dir: Path | str | None = None) -> "DuplicateDetector":
        """Build a detector from ``pipeline.yaml``; class defaults when absent."""
        config_file = Path(config_dir or default_config_dir()) / "pipeline.yaml"
        config = {}
        if config_file.exists():
            with open(config_file) as f:
                config = (yaml.safe_load(f) or {}).get("duplicates", {})

        cancellation = config.get("cancellation", {})
        return cls(
            reject_threshold=config.get("reject_threshold", cls.REJECT_THRESHOLD),
            review_threshold=config.get("review_threshold", cls.REVIEW_THRESHOLD),
            cancel_window_days=cancellation.get("window_days", cls.CANCEL_WINDOW_DAYS),
            cancel_amount_tolerance=cancellation.get("amount_tolerance", cls.CANCEL_AMOUNT_TOLERANCE),
            cancel_name_similarity=cancellation.get("name_similarity", cls.CANCEL_NAME_SIMILARITY),
            prefer_closest_datetime=cancellation.get("prefer_closest_datetime", False),
        )

    def score(self, candidate: Transaction, other: Transaction) -> float:
        """Likelihood that two records describe the same transaction.

        Args:
            candidate: Incoming record
            other: Stored or already-kept record

        Returns:
            Confidence between 0.0 and 1.0
        """
        number_score = 0.0
        if candidate.transaction_number and candidate.transaction_number == other.transaction_number:
            if candidate.datetime and other.datetime:
                number_score = 1.0 if candidate.datetime == other.datetime else 0.7
            else:
                number_score = 0.8

        if candidate.amount != other.amount:
            return number_score

        gap = abs(candidate.effective_datetime - other.effective_datetime)
        candidate_name = _label(candidate)
        other_name = _label(other)

        if gap <= self.NEAR_WINDOW and candidate_name == other_name:
            return max(number_score, 1.0 if gap == timedelta(0) else 0.9)

        if candidate.date != other.date:
            return number_score

        similarity = name_similarity(candidate_name, other_name)
        if similarity > 0.9:
            name_score = 0.85 if gap <= self.SAME_VISIT_WINDOW else 0.6
        elif similarity > 0.7:
            name_score = 0.5
        else:
            name_score = 0.3
        return max(number_score, name_score)

    def best_match(self, candidate: Transaction, pool: list[Transaction]) -> tuple[float, Transaction | None]:
        best, best_txn = 0.0, None
        for other in pool:
            value = self.score(candidate, other)
            if value > best:
                best, best_txn = value, other
                if best >= 1.0:
                    break
        return best, best_txn

    def _is_cancellation_pair(self, cancellation: Transaction, original: Transaction) -> bool:
        if abs(cancellation.amount - original.amount) > self.cancel_amount_tolerance:
            return False
        if abs((cancellation.date_value - original.date_value).days) > self.cancel_window_days:
            return False
        return name_similarity(_label(cancellation), _label(original)) >= self.cancel_name_similarity

    def _find_original(
        self,
        cancellation: Transaction,
        pools: list[list[Transaction]],
        excluded: set[str],
    ) -> Transaction | None:
        matches = []
        for pool in pools:
            for original in pool:
                if original.id in excluded or original.id == cancellation.id:
                    continue
                if self._is_cancellation_pair(cancellation, original):
                    if not self.prefer_closest_datetime:
                        return original
                    matches.append(original)

        if not matches:
            return None
        return min(
            matches,
            key=lambda t: abs(t.effective_datetime - cancellation.effective_datetime),
        )

    def cancel_pairs(
        self,
        batch: list[Transaction],
        existing: list[Transaction],
        result: MergeResult,
    ) -> list[Transaction]:
        """Remove cancellation records together with the purchase they reverse.

        Originals are searched in the stored records first, then in the batch.
        Returns the batch records that survive.
        """
        candidate_ids = {t.id for t in batch if t.is_cancellation}
        consumed = set(candidate_ids)
        consumed.update(t.id for t in existing if t.is_cancellation)
        removed_batch_ids = set()

        for cancellation in batch:
            if cancellation.id not in candidate_ids:
                continue
            original = self._find_original(cancellation, [existing, batch], consumed)
            if original is None:
                logger.debug(f"No original found for cancellation {_label(cancellation)!r}")
                continue

            consumed.add(original.id)
            removed_batch_ids.add(cancellation.id)
            result.cancelled_ids.append(cancellation.id)
            result.settled.extend([original, cancellation])
            if any(original is t for t in existing):
                result.removed_original_ids.append(original.id)
            else:
                removed_batch_ids.add(original.id)
            logger.info(
                f"Cancelled {_label(cancellation)!r} {cancellation.amount} "
                f"against original on {original.date}"
            )

        return [t for t in batch if t.id not in removed_batch_ids]

    def merge(
        self,
        batch: list[Transaction],
        existing: list[Transaction],
        settled: list[Transaction] | None = None,
    ) -> MergeResult:
        """Merge a batch into the existing transactions.

        Args:
            batch: Newly parsed and classified records
            existing: Records already stored for the profile
            settled: Halves of cancellation pairs removed by earlier merges;
                only scored against, never paired again

        Returns:
            MergeResult with accepted, ambiguous and rejected records
        """
        result = MergeResult()
        removed = set()
        survivors = self.cancel_pairs(batch, existing, result)
        removed.update(result.removed_original_ids)
        pool = [t for t in existing if t.id not in removed] + list(settled or [])

        for txn in survivors:
            confidence, match = self.best_match(txn, pool)

            if confidence >= self.reject_threshold:
                result.duplicates.append(txn)
                logger.debug(f"Duplicate ({confidence:.2f}): {txn.date} {_label(txn)} {txn.amount}")
                continue

            if confidence >= self.review_threshold:
                txn.possible_duplicate = True
                txn.needs_review = True
                txn.duplicate_check_confidence = confidence
                result.ambiguous.append(txn)
            else:
                result.accepted.append(txn)
            pool.append(txn)

        logger.info(
            f"Merged batch of {len(batch)}: {len(result.accepted)} accepted, "
            f"{len(result.ambiguous)} ambiguous, {result.duplicate_count} duplicates, "
            f"{result.cancelled_count} cancellations"
        )
        return result
