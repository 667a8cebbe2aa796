"""Heuristic PII detection for uploaded columns.

Detection is a fixed pipeline over rule tables: non-PII keywords, PII
keywords and named value-shape patterns. Extending the rules means editing
the tables below, not the control flow.
"""

import re
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

SAMPLE_SIZE = 20
PATTERN_MATCH_THRESHOLD = 0.5

CONFIDENCE_HIGH = "high"
CONFIDENCE_MEDIUM = "medium"
CONFIDENCE_LOW = "low"

# Column-name fragments that mark a column as personal data.
# A bare "name" is deliberately absent: product_name and customer_name differ.
PII_KEYWORDS: Tuple[str, ...] = (
    "customer_name",
    "user_name",
    "client_name",
    "person_name",
    "first_name",
    "last_name",
    "middle_name",
    "full_name",
    "이름",
    "성명",
    "email",
    "이메일",
    "mail",
    "phone",
    "전화",
    "tel",
    "mobile",
    "휴대폰",
    "address",
    "주소",
    "addr",
    "ssn",
    "주민",
    "주민번호",
    "social",
    "계좌",
    "account",
    "bank",
    "card",
    "카드",
    "credit",
    "ip",
    "ipaddress",
    "ip_address",
    "password",
    "비밀번호",
    "passwd",
    "pwd",
    "birth",
    "생년월일",
    "birthday",
    "user_id",
    "userid",
)

# Column-name fragments that win over everything else.
NON_PII_KEYWORDS: Tuple[str, ...] = (
    "product_name",
    "order_name",
    "item_name",
    "goods_name",
    "category_name",
    "type_name",
    "status_name",
    "company_name",
    "organization_name",
    "org_name",
    "table_name",
    "column_name",
    "field_name",
    "file_name",
    "folder_name",
    "path_name",
    "상품명",
    "주문명",
    "항목명",
    "카테고리명",
)

# Value shapes, tried in order; the first one matching most samples wins.
VALUE_PATTERNS: Tuple[Tuple[str, re.Pattern], ...] = (
    ("email", re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$", re.IGNORECASE)),
    ("phone", re.compile(r"^[\d\s\-()+]{10,}$")),
    ("ip", re.compile(r"^(\d{1,3}\.){3}\d{1,3}$")),
    ("ssn", re.compile(r"^\d{6}-?\d{7}$")),
    ("account", re.compile(r"^\d{10,}$")),
    ("card", re.compile(r"^\d{4}[\s\-]?\d{4}[\s\-]?\d{4}[\s\-]?\d{4}$")),
)


@dataclass
class PIIDetection:
    is_pii: bool
    reason: str
    confidence: str


@dataclass
class PIIColumn:
    name: str
    reason: str
    confidence: str
    suggested_action: str


@dataclass
class PIIReport:
    columns: List[PIIColumn] = field(default_factory=list)

    @property
    def column_names(self) -> List[str]:
        return [column.name for column in self.columns]

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for session state or a JSON request body."""
        return {"columns": [asdict(column) for column in self.columns]}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PIIReport":
        """Rebuild a report from to_dict() output."""
        return cls(columns=[PIIColumn(**column) for column in data.get("columns", [])])


# Substring search over a keyword table.
def match_keyword(column_name: str, keywords: Iterable[str]) -> Optional[str]:
    """Return the first keyword contained in the lowercased column name."""
    lower_name = column_name.lower()
    for keyword in keywords:
        if keyword.lower() in lower_name:
            return keyword
    return None


def match_value_pattern(sample_values: Sequence[Any]) -> Optional[Tuple[str, int, int]]:
    """Return (pattern name, matches, sampled) for the first pattern matching most samples."""
    samples = [str(value) for value in list(sample_values)[:SAMPLE_SIZE]]
    samples = [value for value in samples if value and value.strip()]
    # Nothing to inspect; the caller falls back to the column name alone.
    if not samples:
        return None
    for pattern_name, pattern in VALUE_PATTERNS:
        matches = sum(1 for value in samples if pattern.match(value))
        if matches / len(samples) > PATTERN_MATCH_THRESHOLD:
            return pattern_name, matches, len(samples)
    return None


def detect_pii(column_name: str, sample_values: Sequence[Any]) -> PIIDetection:
    """Classify one column from its name and sample values."""
    non_pii_keyword = match_keyword(column_name, NON_PII_KEYWORDS)
    # Explicit non-personal names short-circuit the value check.
    if non_pii_keyword:
        return PIIDetection(
            is_pii=False,
            reason=f'Column name contains "{non_pii_keyword}", treated as non-PII.',
            confidence=CONFIDENCE_HIGH,
        )

    keyword = match_keyword(column_name, PII_KEYWORDS)
    pattern = match_value_pattern(sample_values)

    if keyword and pattern:
        pattern_name, matches, total = pattern
        return PIIDetection(
            is_pii=True,
            reason=(
                f'Column name contains "{keyword}" and values match the "{pattern_name}" '
                f"pattern ({matches}/{total} samples)."
            ),
            confidence=CONFIDENCE_HIGH,
        )
    if keyword:
        return PIIDetection(
            is_pii=True,
            reason=f'Column name contains "{keyword}".',
            confidence=CONFIDENCE_MEDIUM,
        )
    if pattern:
        pattern_name, matches, total = pattern
        return PIIDetection(
            is_pii=True,
            reason=f'Values match the "{pattern_name}" pattern ({matches}/{total} samples).',
            confidence=CONFIDENCE_MEDIUM,
        )
    return PIIDetection(is_pii=False, reason="", confidence=CONFIDENCE_LOW)


def suggest_action(confidence: str) -> str:
    return "drop" if confidence == CONFIDENCE_HIGH else "mask"


def generate_pii_report(columns: Sequence[str], rows: Sequence[Mapping[str, Any]]) -> PIIReport:
    """Run detection over every column using the first rows as samples."""
    report = PIIReport()
    sample_rows = list(rows)[:SAMPLE_SIZE]
    for column in columns:
        sample_values = [row.get(column) for row in sample_rows]
        sample_values = [str(value) for value in sample_values if value is not None]
        detection = detect_pii(column, sample_values)
        if detection.is_pii:
            report.columns.append(
                PIIColumn(
                    name=column,
                    reason=detection.reason,
                    confidence=detection.confidence,
                    suggested_action=suggest_action(detection.confidence),
                )
            )
    return report
