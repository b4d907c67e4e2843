"""
Pytest configuration and fixtures for household ledger tests.
"""

import sys
from io import BytesIO
from pathlib import Path
from typing import Any, Callable
from unittest.mock import MagicMock

import pytest
from openpyxl import Workbook

# Project root directory
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT / "python"))

from ingestion import CategoryOracle, Transaction, TransactionCategorizer, TransactionPipeline  # noqa: E402
from ingestion.name_normalizer import normalize_merchant_name  # noqa: E402
from ledger_store import InMemoryDocumentStore, merchant_mappings  # noqa: E402


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def config_dir() -> Path:
    """Return the config directory path."""
    return PROJECT_ROOT / "config"


@pytest.fixture
def store() -> InMemoryDocumentStore:
    """Fresh in-memory document store."""
    return InMemoryDocumentStore()


@pytest.fixture
def categorizer(config_dir: Path, store: InMemoryDocumentStore) -> TransactionCategorizer:
    """Categorizer without the remote oracle tier."""
    return TransactionCategorizer(
        config_dir=config_dir,
        merchant_mapping=merchant_mappings(store, normalize_merchant_name),
        use_oracle=False,
    )


@pytest.fixture
def pipeline(config_dir: Path, store: InMemoryDocumentStore, categorizer) -> TransactionPipeline:
    """Pipeline over the in-memory store with the oracle disabled."""
    return TransactionPipeline(store=store, categorizer=categorizer, config_dir=config_dir)


@pytest.fixture
def oracle_client() -> MagicMock:
    """Anthropic client stand-in answering "식비"."""
    client = MagicMock()
    client.messages.create.return_value = MagicMock(content=[MagicMock(text="식비")])
    return client


@pytest.fixture
def oracle(config_dir: Path, oracle_client: MagicMock) -> CategoryOracle:
    return CategoryOracle(
        ["식비", "교통비", "쇼핑", "기타"],
        config_dir=config_dir,
        client=oracle_client,
    )


@pytest.fixture
def make_transaction() -> Callable[..., Transaction]:
    """Factory for transactions with sensible defaults."""

    def _make(
        name: str = "스타벅스 강남점",
        amount: int = 4500,
        date: str = "2024-01-15",
        time: str | None = "12:30:00",
        **kwargs: Any,
    ) -> Transaction:
        datetime_value = f"{date} {time}" if time else None
        return Transaction(date=date, name=name, amount=amount, datetime=datetime_value, **kwargs)

    return _make


@pytest.fixture
def xlsx_bytes() -> Callable[..., bytes]:
    """Build an .xlsx file from sheet name -> rows."""

    def _build(sheets: dict[str, list[list[Any]]]) -> bytes:
        workbook = Workbook()
        workbook.remove(workbook.active)
        for title, rows in sheets.items():
            worksheet = workbook.create_sheet(title)
            for row in rows:
                worksheet.append(row)
        buffer = BytesIO()
        workbook.save(buffer)
        return buffer.getvalue()

    return _build


@pytest.fixture
def kb_card_rows() -> list[list[Any]]:
    """KB card export: six metadata rows, header on row 7."""
    return [
        ["KB국민카드 이용내역"],
        ["카드번호", "****-****-****-1234"],
        ["조회기간", "2024.01.01 ~ 2024.01.31"],
        ["회원명", "홍길동"],
        ["조회일시", "2024.02.01"],
        ["단위", "원"],
        ["이용일", "이용시간", "이용하신곳", "국내이용금액(원)", "해외이용금액($)", "승인번호", "상태"],
        ["2024.01.15", "12:30", "스타벅스 강남점", 4500, 0, "30001234", "정상"],
        ["2024.01.16", "19:05", "ABC마트 명동점", 89000, 0, "30001235", "정상"],
        ["2024.01.17", "08:10", "ABC마트 명동점", -89000, 0, "30001236", "취소"],
        ["2024.01.20", "13:00", "블루보틀 성수점", 6800, 0, "30001237", "정상"],
        [None, None, None, None, None, None, None],
        ["합계", None, None, 11300, None, None, None],
    ]


@pytest.fixture
def bank_csv() -> bytes:
    """Bank export with separate withdrawal / deposit columns (CP949)."""
    text = (
        "거래일시,적요,출금액,입금액,잔액\n"
        "2024-01-10 09:00:00,(주)회사 급여,0,\"3,000,000\",\"3,500,000\"\n"
        "2024-01-11 10:15:00,GS25 역삼점,\"3,200\",0,\"3,496,800\"\n"
        "2024-01-12 18:40:00,알수없는상점,\"15,000\",0,\"3,481,800\"\n"
    )
    return text.encode("cp949")


@pytest.fixture(autouse=True)
def setup_test_env(monkeypatch):
    """Keep tests away from real credentials."""
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    monkeypatch.delenv("CATEGORY_ORACLE_MODEL", raising=False)
    monkeypatch.delenv("LEDGER_CONFIG_DIR", raising=False)
    yield
