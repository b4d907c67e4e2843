"""
Transaction Ingestion Pipeline

Parses uploaded statements, classifies every row, merges the batch into the
profile's stored transactions and keeps the mapping tables up to date.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from pathlib import Path

import yaml

from ledger_store import (
    CANCELLED_PAIRS,
    TRANSACTIONS,
    DocumentStore,
    InMemoryDocumentStore,
    default_config_dir,
    keyword_mappings,
    merchant_mappings,
    personal_mappings,
)
from spending_analysis import PatternAnalyzer, generate_insights

from .categorizer import TransactionCategorizer
from .duplicate_detector import DuplicateDetector, MergeResult
from .models import Transaction
from .name_normalizer import normalize_key, normalize_merchant_name
from .sheet_parsers import ParseResult, parse_workbook

logger = logging.getLogger(__name__)

EXPECTED_COLUMNS = "date (거래일/이용일/date), name (가맹점/적요/description), amount (금액/amount)"


class ReclassifyScope(Enum):
    """Which stored transactions a reclassification touches."""

    NEEDS_REVIEW = "needs_review"
    LOW_CONFIDENCE = "low_confidence"
    ALL = "all"


@dataclass
class IngestResult:
    """Result of ingesting one statement file."""

    file_name: str
    parsed: int = 0
    skipped_rows: int = 0
    skipped_reasons: dict[str, int] = field(default_factory=dict)
    transactions: list[Transaction] = field(default_factory=list)
    ambiguous: list[Transaction] = field(default_factory=list)
    duplicate: int = 0
    cancelled: int = 0
    removed_original_ids: list[str] = field(default_factory=list)
    settled: list[Transaction] = field(default_factory=list)
    source_file: str | None = None

    @property
    def to_store(self) -> list[Transaction]:
        return self.transactions + self.ambiguous


@dataclass
class UploadResult:
    """Result of an upload request (one or more files).

    ``total`` counts the records added (accepted plus ambiguous); ``parsed``
    counts every row read from the files.
    """

    accepted: list[Transaction] = field(default_factory=list)
    ambiguous: list[Transaction] = field(default_factory=list)
    parsed: int = 0
    duplicate: int = 0
    skipped_rows: int = 0
    skipped_reasons: dict[str, int] = field(default_factory=dict)
    cancelled: int = 0
    skipped_files: list[dict] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.accepted) + len(self.ambiguous)

    @property
    def ambiguous_count(self) -> int:
        return len(self.ambiguous)

    def to_dict(self) -> dict:
        return {
            "accepted": [t.to_dict() for t in self.accepted],
            "ambiguous": [t.to_dict() for t in self.ambiguous],
            "total": self.total,
            "parsed": self.parsed,
            "duplicate": self.duplicate,
            "ambiguousCount": self.ambiguous_count,
            "skippedRows": self.skipped_rows,
            "skippedReasons": self.skipped_reasons,
            "skippedFiles": self.skipped_files,
            "cancelled": self.cancelled,
        }


def _sort_key(txn: Transaction) -> str:
    return txn.datetime or f"{txn.date} 00:00:00"


class TransactionPipeline:
    """Upload, reclassification and analysis operations for one store."""

    DEFAULT_MAX_FILE_SIZE_MB = 100
    DEFAULT_EXTENSIONS = [".xlsx", ".xls", ".csv"]
    DEFAULT_LOW_CONFIDENCE = 0.7

    def __init__(
        self,
        store: DocumentStore | None = None,
        categorizer: TransactionCategorizer | None = None,
        detector: DuplicateDetector | None = None,
        analyzer: PatternAnalyzer | None = None,
        config_dir: Path | str | None = None,
    ):
        """Initialize the pipeline.

        Args:
            store: Document store; in-memory when omitted
            categorizer: Categorizer; built on the store's merchant mapping when omitted
            detector: Duplicate detector; built from config when omitted
            analyzer: Pattern analyzer; built from config when omitted
            config_dir: Path to configuration directory
        """
        self.config_dir = Path(config_dir) if config_dir else default_config_dir()
        self._load_config()

        self.store = store or InMemoryDocumentStore()
        self.categorizer = categorizer or TransactionCategorizer(
            config_dir=self.config_dir,
            merchant_mapping=merchant_mappings(self.store, normalize_merchant_name),
        )
        self.detector = detector or DuplicateDetector.from_config(self.config_dir)
        self.analyzer = analyzer or PatternAnalyzer(self.config_dir)

    def _load_config(self) -> None:
        config_file = self.config_dir / "pipeline.yaml"
        config = {}
        if config_file.exists():
            with open(config_file) as f:
                config = (yaml.safe_load(f) or {}).get("upload", {})
        self.max_file_size = config.get("max_file_size_mb", self.DEFAULT_MAX_FILE_SIZE_MB) * 1024 * 1024
        self.supported_extensions = [e.lower() for e in config.get("supported_extensions", self.DEFAULT_EXTENSIONS)]

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    def validate_file(self, file_name: str, size: int) -> tuple[bool, str]:
        """Check extension and size before reading a file.

        Returns:
            (is_valid, message)
        """
        suffix = Path(file_name or "").suffix.lower()
        if suffix not in self.supported_extensions:
            return False, f"Unsupported file type '{suffix or file_name}'. Use {', '.join(self.supported_extensions)}"
        if size > self.max_file_size:
            return False, f"File too large ({size / 1024 / 1024:.1f} MB, max {self.max_file_size // 1024 // 1024} MB)"
        if size == 0:
            return False, "File is empty"
        return True, "OK"

    def build_transactions(
        self,
        parsed: ParseResult,
        file_name: str,
        profile_id: str = "",
        name_mappings: dict[str, str] | None = None,
        keyword_mappings: dict[str, str] | None = None,
    ) -> list[Transaction]:
        """Classify parsed rows into transactions stamped with their source."""
        metadata = parsed.metadata
        transactions = []
        for row in parsed.rows:
            txn = row.to_transaction(profile_id)
            result = self.categorizer.classify(row.name, txn.amount, name_mappings, keyword_mappings)

            txn.name = result.name or row.name
            txn.ai_category = result.category
            txn.category = row.source_category or result.category
            txn.confidence = result.confidence
            txn.needs_review = result.needs_review
            txn.classification_reason = result.reason
            if txn.category != result.category and self.categorizer.needs_large_amount_review(
                txn.category, txn.amount, result.tier
            ):
                txn.needs_review = True
                txn.confidence = self.categorizer.default_confidence
                txn.classification_reason = f"source category; {result.reason}; large uncategorized amount"
            txn.source_file = parsed.source_file or file_name
            txn.source_card_name = metadata.card_name
            txn.source_card_number = metadata.card_number
            txn.source_account_number = metadata.account_number
            transactions.append(txn)
        return transactions

    def ingest(
        self,
        content: bytes,
        file_name: str,
        profile_id: str = "",
        name_mappings: dict[str, str] | None = None,
        keyword_mappings: dict[str, str] | None = None,
        existing: list[Transaction] | None = None,
        settled: list[Transaction] | None = None,
    ) -> IngestResult:
        """Parse, classify and merge one file. Nothing is persisted.

        Args:
            content: Raw file bytes
            file_name: Upload name
            profile_id: Owning profile
            name_mappings: Personal name -> category mapping
            keyword_mappings: Keyword -> category mapping
            existing: Stored transactions to deduplicate against
            settled: Previously cancelled pairs to deduplicate against

        Returns:
            IngestResult; ``transactions`` holds the newly accepted records

        Raises:
            ValueError: If the file cannot be read or yields no transactions
        """
        parsed = parse_workbook(content, file_name)
        if parsed.errors:
            raise ValueError("; ".join(parsed.errors))
        if not parsed.rows:
            raise ValueError(
                f"No transactions found in {file_name}. Expected columns: {EXPECTED_COLUMNS} "
                f"({parsed.skipped_rows} rows skipped)"
            )

        batch = self.build_transactions(parsed, file_name, profile_id, name_mappings, keyword_mappings)
        merged: MergeResult = self.detector.merge(batch, existing or [], settled)

        result = IngestResult(
            file_name=file_name,
            parsed=len(batch),
            skipped_rows=parsed.skipped_rows,
            skipped_reasons=dict(parsed.skipped_reasons),
            transactions=merged.accepted,
            ambiguous=merged.ambiguous,
            duplicate=merged.duplicate_count,
            cancelled=merged.cancelled_count,
            removed_original_ids=merged.removed_original_ids,
            settled=merged.settled,
            source_file=parsed.source_file or file_name,
        )
        logger.info(
            f"Ingested {file_name} ({parsed.parser}): {len(result.transactions)} new, "
            f"{len(result.ambiguous)} ambiguous, {result.duplicate} duplicates, "
            f"{result.skipped_rows} rows skipped"
        )
        return result

    def upload(
        self,
        profile_id: str,
        files: list[tuple[str, bytes]],
        fail_fast: bool | None = None,
    ) -> UploadResult:
        """Ingest one or more files into a profile and persist the outcome.

        A file that fails to read is reported in ``skipped_files`` and does not
        stop the others. Later files are deduplicated against earlier ones.

        Args:
            profile_id: Owning profile
            files: (file name, content) pairs
            fail_fast: Re-raise the first file error; defaults to True for a
                single file

        Raises:
            ValueError: When fail_fast is set and a file cannot be ingested
        """
        if fail_fast is None:
            fail_fast = len(files) == 1
        name_map = personal_mappings(self.store, profile_id).all()
        keyword_map = keyword_mappings(self.store).all()
        existing = self.get_transactions(profile_id)
        settled = self.get_settled_pairs(profile_id)
        upload = UploadResult()
        removed_ids: list[str] = []
        new_settled: list[Transaction] = []

        for file_name, content in files:
            valid, message = self.validate_file(file_name, len(content))
            try:
                if not valid:
                    raise ValueError(message)
                result = self.ingest(content, file_name, profile_id, name_map, keyword_map, existing, settled)
            except ValueError as e:
                if fail_fast:
                    raise
                logger.warning(f"Skipping {file_name}: {e}")
                upload.skipped_files.append({"fileName": file_name, "reason": str(e)})
                continue

            upload.accepted.extend(result.transactions)
            upload.ambiguous.extend(result.ambiguous)
            upload.parsed += result.parsed
            upload.duplicate += result.duplicate
            upload.skipped_rows += result.skipped_rows
            for reason, count in result.skipped_reasons.items():
                upload.skipped_reasons[reason] = upload.skipped_reasons.get(reason, 0) + count
            upload.cancelled += result.cancelled
            removed_ids.extend(result.removed_original_ids)

            existing = [t for t in existing if t.id not in set(result.removed_original_ids)]
            existing.extend(result.to_store)
            for txn in result.settled:
                # a re-uploaded pair is already on record
                score, _ = self.detector.best_match(txn, settled)
                if score < self.detector.reject_threshold:
                    new_settled.append(txn)
                    settled.append(txn)

        upload.accepted.sort(key=_sort_key)
        upload.ambiguous.sort(key=_sort_key)

        to_store = upload.accepted + upload.ambiguous
        if to_store:
            self.store.batch_upsert(profile_id, TRANSACTIONS, [t.to_dict() for t in to_store])
        if removed_ids:
            self.store.batch_delete(profile_id, TRANSACTIONS, removed_ids)
        if new_settled:
            self.store.batch_upsert(profile_id, CANCELLED_PAIRS, [t.to_dict() for t in new_settled])

        logger.info(
            f"Upload for {profile_id}: {len(files)} file(s), {len(upload.accepted)} accepted, "
            f"{upload.ambiguous_count} ambiguous, {upload.duplicate} duplicates, "
            f"{upload.cancelled} cancelled, {len(upload.skipped_files)} files skipped"
        )
        return upload

    # ------------------------------------------------------------------
    # Stored transactions
    # ------------------------------------------------------------------

    def get_transactions(self, profile_id: str) -> list[Transaction]:
        records = self.store.get_all(profile_id, TRANSACTIONS)
        transactions = [Transaction.from_dict(r) for r in records]
        transactions.sort(key=_sort_key, reverse=True)
        return transactions

    def get_settled_pairs(self, profile_id: str) -> list[Transaction]:
        """Both halves of every cancellation pair removed from the profile."""
        return [Transaction.from_dict(r) for r in self.store.get_all(profile_id, CANCELLED_PAIRS)]

    def list_sources(self, profile_id: str) -> list[dict]:
        """Stored transactions grouped by the statement they came from.

        Returns:
            One entry per source with card details, date range and count,
            most recent statement first
        """
        sources: dict[str, dict] = {}
        for txn in self.get_transactions(profile_id):
            key = txn.source_file or "unknown"
            entry = sources.get(key)
            if entry is None:
                entry = sources[key] = {
                    "sourceFile": key,
                    "cardName": txn.source_card_name,
                    "cardNumber": txn.source_card_number,
                    "accountNumber": txn.source_account_number,
                    "startDate": txn.date,
                    "endDate": txn.date,
                    "count": 0,
                }
            entry["count"] += 1
            entry["startDate"] = min(entry["startDate"], txn.date)
            entry["endDate"] = max(entry["endDate"], txn.date)
        return sorted(sources.values(), key=lambda s: s["endDate"], reverse=True)

    def update_transaction(
        self,
        profile_id: str,
        txn_id: str,
        changes: dict,
        confirm: bool = False,
        apply_to_same_name: bool = False,
    ) -> list[Transaction]:
        """Edit a stored transaction.

        Args:
            profile_id: Owning profile
            txn_id: Transaction id
            changes: Field name -> new value (snake_case)
            confirm: Mark the category as user-confirmed and learn the mapping
            apply_to_same_name: Apply a category change to every transaction
                with the same original text

        Returns:
            Updated transactions

        Raises:
            KeyError: If the transaction does not exist
        """
        transactions = self.get_transactions(profile_id)
        target = next((t for t in transactions if t.id == txn_id), None)
        if target is None:
            raise KeyError(txn_id)

        editable = {"category", "name", "description", "type", "amount", "date", "datetime", "possible_duplicate"}
        unknown = set(changes) - editable
        if unknown:
            raise ValueError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")

        targets = [target]
        if apply_to_same_name and "category" in changes:
            key = normalize_key(target.original_text or target.name)
            targets = [t for t in transactions if normalize_key(t.original_text or t.name) == key]

        for txn in targets:
            for name, value in changes.items():
                if txn is not target and name != "category":
                    continue
                setattr(txn, name, value)
            if changes.get("possible_duplicate") is False:
                txn.duplicate_check_confidence = None
            if confirm:
                txn.user_confirmed = True
                txn.needs_review = False

        if confirm and "category" in changes:
            mapping = personal_mappings(self.store, profile_id)
            mapping.set(target.original_text or target.name, changes["category"])

        self.store.batch_upsert(profile_id, TRANSACTIONS, [t.to_dict() for t in targets])
        return targets

    def confirm_category(
        self,
        profile_id: str,
        txn_id: str,
        category: str,
        apply_to_same_name: bool = False,
    ) -> list[Transaction]:
        """Set a user-confirmed category and remember it in the personal mapping."""
        return self.update_transaction(
            profile_id, txn_id, {"category": category}, confirm=True, apply_to_same_name=apply_to_same_name
        )

    def delete_transaction(self, profile_id: str, txn_id: str) -> bool:
        return self.store.batch_delete(profile_id, TRANSACTIONS, [txn_id]) > 0

    def delete_all(self, profile_id: str) -> int:
        removed = self.store.delete_all(profile_id, TRANSACTIONS)
        self.store.delete_all(profile_id, CANCELLED_PAIRS)
        logger.info(f"Deleted {removed} transactions for {profile_id}")
        return removed

    # ------------------------------------------------------------------
    # Reclassification
    # ------------------------------------------------------------------

    def _in_scope(self, txn: Transaction, scope: ReclassifyScope, threshold: float) -> bool:
        if txn.user_confirmed:
            return False
        if scope is ReclassifyScope.NEEDS_REVIEW:
            return txn.needs_review
        if scope is ReclassifyScope.LOW_CONFIDENCE:
            return txn.confidence < threshold
        return True

    def reclassify(
        self,
        profile_id: str,
        scope: ReclassifyScope = ReclassifyScope.NEEDS_REVIEW,
        threshold: float = DEFAULT_LOW_CONFIDENCE,
    ) -> dict:
        """Re-run the classifier over stored transactions without re-parsing.

        Args:
            profile_id: Owning profile
            scope: Which transactions to revisit
            threshold: Confidence bound for the low-confidence scope

        Returns:
            Dict with scope, total candidates and number updated
        """
        transactions = self.get_transactions(profile_id)
        name_map = personal_mappings(self.store, profile_id).all()
        keyword_map = keyword_mappings(self.store).all()

        candidates = [t for t in transactions if self._in_scope(t, scope, threshold)]
        updated = 0
        for txn in candidates:
            result = self.categorizer.classify(
                txn.original_text or txn.name, txn.amount, name_map, keyword_map
            )
            if result.category == txn.category and result.confidence == txn.confidence:
                continue
            txn.category = result.category
            txn.ai_category = result.category
            txn.name = result.name or txn.name
            txn.confidence = result.confidence
            txn.needs_review = result.needs_review or txn.possible_duplicate
            txn.classification_reason = result.reason
            updated += 1

        if updated:
            self.store.replace_all(profile_id, TRANSACTIONS, [t.to_dict() for t in transactions])

        logger.info(f"Reclassified {updated}/{len(candidates)} transactions ({scope.value}) for {profile_id}")
        return {"scope": scope.value, "total": len(candidates), "updated": updated}

    # ------------------------------------------------------------------
    # Mappings
    # ------------------------------------------------------------------

    def get_personal_mappings(self, profile_id: str) -> dict[str, str]:
        return personal_mappings(self.store, profile_id).all()

    def clear_personal_mappings(self, profile_id: str) -> int:
        return personal_mappings(self.store, profile_id).clear()

    def get_keyword_mappings(self) -> dict[str, str]:
        return keyword_mappings(self.store).all()

    def add_keyword_mapping(self, keyword: str, category: str) -> str:
        return keyword_mappings(self.store).set(keyword, category)

    def delete_keyword_mapping(self, keyword: str) -> bool:
        return keyword_mappings(self.store).delete(keyword)

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    def analyze_profile(self, profile_id: str, today: date | None = None) -> dict:
        """Recurring patterns, summary and insights over the lookback window."""
        transactions = self.analyzer.recent(self.get_transactions(profile_id), today)
        patterns, summary = self.analyzer.analyze(transactions)
        insights = generate_insights(
            patterns,
            summary,
            concentration_threshold=self.analyzer.concentration_threshold,
            trend_threshold=self.analyzer.trend_threshold,
        )
        return {
            "patterns": [p.to_dict() for p in patterns],
            "summary": summary.to_dict(),
            "insights": [i.to_dict() for i in insights],
            "transactionCount": len(transactions),
        }
