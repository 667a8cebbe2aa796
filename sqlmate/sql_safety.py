"""Safety guardrails for generated SQL.

This is a regex allowlist for a single dialect (SQLite), not a parser. It
blocks multi-statement input, known destructive keywords and anything that
is not a SELECT, then bounds the row count.
"""

import re
from dataclasses import dataclass
from typing import Optional

from sqlmate.errors import SafetyViolation
from sqlmate.log_utils import get_logger

logger = get_logger(__name__)

# Default safety cap on result size, applied to the SQL and to fetched rows.
MAX_RESULT_ROWS = 200

FORBIDDEN_KEYWORDS = (
    "INSERT", "UPDATE", "DELETE", "DROP", "ALTER", "CREATE", "TRUNCATE",
    "EXEC", "EXECUTE", "GRANT", "REVOKE", "MERGE", "REPLACE",
)
FORBIDDEN_RE = {
    keyword: re.compile(rf"\b{keyword}\b", re.IGNORECASE) for keyword in FORBIDDEN_KEYWORDS
}
LIMIT_RE = re.compile(r"\bLIMIT\s+(\d+)", re.IGNORECASE)
LINE_COMMENT_RE = re.compile(r"--[^\n]*")
BLOCK_COMMENT_RE = re.compile(r"/\*.*?\*/", re.DOTALL)
STATEMENT_SEPARATOR = ";"

MULTI_STATEMENT_ERROR = "Multiple SQL statements are not allowed. Only the first statement can be used."
SELECT_ONLY_ERROR = "Only SELECT statements are allowed."


@dataclass
class SQLSafetyResult:
    safe: bool
    error: Optional[str] = None
    sanitized: Optional[str] = None
    keyword: Optional[str] = None


# Split on ";" and keep the non-blank statements.
def split_statements(sql: str):
    """Return the non-empty statements of a SQL string."""
    return [part.strip() for part in sql.split(STATEMENT_SEPARATOR) if part.strip()]


def find_forbidden_keyword(sql: str) -> Optional[str]:
    """Return the first destructive keyword used as a whole word."""
    for keyword, pattern in FORBIDDEN_RE.items():
        if pattern.search(sql):
            return keyword
    return None


def strip_comments(sql: str) -> str:
    """Remove -- and /* */ comments; used for detection only."""
    return BLOCK_COMMENT_RE.sub(" ", LINE_COMMENT_RE.sub("", sql))


def ensure_limit(sql: str, limit: int = MAX_RESULT_ROWS) -> str:
    """Add a LIMIT when missing and clamp one that exceeds the cap."""
    sql = sql.strip()
    match = LIMIT_RE.search(strip_comments(sql))
    # ORDER BY is always the last clause before LIMIT, so appending keeps it in front.
    if not match:
        # Text appended to a line ending in a "--" comment would be commented out.
        lines = sql.splitlines()
        separator = "\n" if lines and "--" in lines[-1] else " "
        return f"{sql}{separator}LIMIT {limit}"
    if int(match.group(1)) > limit:
        return LIMIT_RE.sub(
            lambda found: f"LIMIT {limit}" if int(found.group(1)) > limit else found.group(0), sql
        )
    return sql


def validate_sql_safety(sql: str) -> SQLSafetyResult:
    """Classify SQL as safe or unsafe and normalize the safe ones."""
    statements = split_statements(sql)
    # Stacked statements are the classic injection vector.
    if len(statements) > 1:
        logger.warning("Rejected multi-statement SQL (%d statements)", len(statements))
        return SQLSafetyResult(safe=False, error=MULTI_STATEMENT_ERROR, sanitized=statements[0])

    keyword = find_forbidden_keyword(sql)
    if keyword:
        logger.warning("Rejected SQL containing forbidden keyword %s", keyword)
        return SQLSafetyResult(
            safe=False,
            error=f'Forbidden keyword "{keyword}" is not allowed.',
            keyword=keyword,
        )

    if not sql.strip().upper().startswith("SELECT"):
        logger.warning("Rejected non-SELECT SQL")
        return SQLSafetyResult(safe=False, error=SELECT_ONLY_ERROR)

    # A single trailing ";" is harmless; drop it so LIMIT lands inside the statement.
    single = statements[0] if statements else sql.strip()
    return SQLSafetyResult(safe=True, sanitized=ensure_limit(single))


def sanitize_sql(sql: str) -> str:
    """Return normalized SQL or raise SafetyViolation."""
    result = validate_sql_safety(sql)
    if not result.safe:
        raise SafetyViolation(
            result.error or "SQL safety check failed.",
            keyword=result.keyword,
            suggestion=result.sanitized,
        )
    return result.sanitized or sql
