"""
Merchant Name Normalizer

Canonicalizes merchant / transaction labels so that the same merchant seen
through different card issuers, branches and approval numbers maps to one key.
"""

import re

# Longer alternatives first so "kb국민은행" wins over "kb".
INSTITUTION_PREFIXES = [
    "kb국민은행", "kb국민카드", "kb국민", "국민은행", "신한은행", "우리은행", "하나은행",
    "농협은행", "카카오뱅크", "토스뱅크", "kb", "국민", "삼성", "신한", "현대", "롯데",
    "하나", "bc", "우리", "nh", "농협", "카카오", "토스",
]

REGION_NAMES = [
    "평내", "호평", "마석", "강남", "강북", "서울", "부산", "대구", "인천", "광주", "대전",
    "울산", "수원", "성남", "고양", "용인", "부천", "안산", "안양", "남양주", "화성", "평택",
    "의정부", "시흥", "김포", "광명", "군포", "이천", "양주", "오산", "구리", "안성", "포천",
    "의왕", "하남", "여주", "양평", "동두천", "과천", "가평", "연천", "hongdae", "gangnam",
    "myeongdong",
]

_CORPORATE_FORM = re.compile(r"^(?:주식회사|유한회사|합자회사|합명회사|\(주\)|\(유\)|㈜)\s*")
_CORPORATE_SUFFIX = re.compile(r"\s*(?:\(주\)|\(유\)|㈜)\s*$")
_INSTITUTION_PREFIX = re.compile(
    r"^(?:" + "|".join(re.escape(p) for p in INSTITUTION_PREFIXES) + r")"
    r"(?:\s*(?:카드|은행|뱅크|card|bank))?\s+",
    re.IGNORECASE,
)
_CARD_BANK_WORD = re.compile(r"(?<!\S)(?:카드|은행|뱅크|bank|card)(?!\S)", re.IGNORECASE)
_APPROVAL_NUMBER = re.compile(r"\s*(?:승인번호|거래번호|승인)\s*:?\s*\d+", re.IGNORECASE)
_BRANCH_SUFFIX = re.compile(r"\s+[가-힣a-zA-Z0-9\s]*(?:지점|본점|매장|센터|점)\s*$")
_REGION_SUFFIX = re.compile(
    r"(?<=\S)\s*(?:" + "|".join(re.escape(r) for r in REGION_NAMES) + r")\s*점\s*$",
    re.IGNORECASE,
)
_WHITESPACE = re.compile(r"\s+")
_SHORT_LATIN = re.compile(r"^[a-z0-9]{1,3}$")


def _strip_institution(text: str) -> str:
    text = _INSTITUTION_PREFIX.sub("", text)
    text = _CARD_BANK_WORD.sub(" ", text)
    return _APPROVAL_NUMBER.sub("", text)


def normalize_merchant_name(text: str) -> str:
    """Normalize a merchant name into a mapping key.

    The same function must be used when writing and reading the global
    merchant mapping.

    Args:
        text: Raw merchant or transaction label

    Returns:
        Lower-cased key with prefixes, branch suffixes and reference numbers removed
    """
    if not text:
        return ""

    normalized = text.strip()
    normalized = _CORPORATE_FORM.sub("", normalized)
    normalized = _CORPORATE_SUFFIX.sub("", normalized)
    normalized = _strip_institution(normalized)
    normalized = _WHITESPACE.sub(" ", normalized).strip()

    without_branch = _BRANCH_SUFFIX.sub("", normalized)
    without_branch = _REGION_SUFFIX.sub("", without_branch)
    if without_branch.strip():
        normalized = without_branch

    normalized = _WHITESPACE.sub(" ", normalized).strip().lower()
    return normalized or text.strip().lower()


def normalize_key(text: str) -> str:
    """Key used by the personal and keyword mappings."""
    return (text or "").strip().lower()


def contains_keyword(text_lower: str, keyword: str) -> bool:
    """Check whether a keyword occurs in already lower-cased text.

    Short latin keywords ("cu", "kt") only match as whole tokens, otherwise
    they would fire inside unrelated words.
    """
    keyword = keyword.lower()
    if not keyword:
        return False
    if _SHORT_LATIN.match(keyword):
        return re.search(rf"(?<![a-z0-9]){re.escape(keyword)}(?![a-z0-9])", text_lower) is not None
    return keyword in text_lower


def display_name(text: str, brand_labels: dict[str, str] | None = None) -> str:
    """Build the label shown for a transaction.

    Known brands collapse into their group label (e.g. every Starbucks branch
    becomes "카페/음료"); anything else only loses issuer prefixes and
    approval numbers.
    """
    if not text:
        return ""

    lowered = text.lower()
    for keyword, label in (brand_labels or {}).items():
        if contains_keyword(lowered, keyword):
            return label

    cleaned = _WHITESPACE.sub(" ", _strip_institution(text.strip())).strip()
    return cleaned or text.strip()
