"""
Statement sheet parsers for bank and card exports.
"""

import logging

from .base import BaseSheetParser, ParsedRow, ParseResult
from .generic import GenericSheetParser
from .kb_card import KBCardParser
from .metadata import SourceMetadata, detect_card_company, extract_source_metadata
from .workbook import Sheet, load_sheets, select_sheet

logger = logging.getLogger(__name__)


def detect_and_parse(sheets: list[Sheet], file_name: str | None = None) -> ParseResult:
    """Pick the parser for a decoded workbook and run it.

    Args:
        sheets: Decoded sheets
        file_name: Upload name, used as a format hint

    Returns:
        ParseResult from the appropriate parser
    """
    first = sheets[0].rows if sheets else []
    metadata = extract_source_metadata(first)

    if KBCardParser.matches(sheets, file_name, metadata):
        result = KBCardParser().parse(sheets, file_name)
        if not result.errors:
            return result
        logger.info(f"{file_name} looked like a KB card export but has no KB header; using generic parser")

    return GenericSheetParser().parse(sheets, file_name)


def parse_workbook(content: bytes, file_name: str) -> ParseResult:
    """Decode and parse an uploaded statement file."""
    return detect_and_parse(load_sheets(content, file_name), file_name)


__all__ = [
    "BaseSheetParser",
    "ParsedRow",
    "ParseResult",
    "GenericSheetParser",
    "KBCardParser",
    "SourceMetadata",
    "Sheet",
    "detect_and_parse",
    "detect_card_company",
    "extract_source_metadata",
    "load_sheets",
    "parse_workbook",
    "select_sheet",
]
