"""
Transaction Ingestion Module

Handles spreadsheet parsing, cascade categorization, duplicate detection and
the upload pipeline for bank and card statements.
"""

from .models import Transaction, INCOME, EXPENSE, DEFAULT_CATEGORY
from .name_normalizer import normalize_merchant_name, display_name
from .sheet_parsers import ParsedRow, ParseResult, SourceMetadata, detect_and_parse, parse_workbook
from .category_oracle import CategoryOracle, OracleRateLimiter
from .categorizer import TransactionCategorizer, ClassificationResult
from .duplicate_detector import DuplicateDetector, MergeResult, name_similarity
from .pipeline import TransactionPipeline, IngestResult, UploadResult, ReclassifyScope

__all__ = [
    # Models
    "Transaction",
    "INCOME",
    "EXPENSE",
    "DEFAULT_CATEGORY",
    # Name normalization
    "normalize_merchant_name",
    "display_name",
    # Parsing
    "ParsedRow",
    "ParseResult",
    "SourceMetadata",
    "detect_and_parse",
    "parse_workbook",
    # Categorization
    "CategoryOracle",
    "OracleRateLimiter",
    "TransactionCategorizer",
    "ClassificationResult",
    # Duplicate Detection
    "DuplicateDetector",
    "MergeResult",
    "name_similarity",
    # Pipeline
    "TransactionPipeline",
    "IngestResult",
    "UploadResult",
    "ReclassifyScope",
]
