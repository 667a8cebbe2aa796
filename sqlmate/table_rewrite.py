"""Rewrite display table names in generated SQL to storage table names.

The model is prompted with readable dataset names (the original filenames),
while tables are stored under generated identifiers. Rewriting is regex
based: a table name that is also a prefix of another identifier in a table
position, or a dialect construct not listed in TABLE_CLAUSE, can be
mis-rewritten or missed.
"""

import re
from typing import Any, Mapping, Sequence, Tuple, Union

from sqlmate.log_utils import get_logger

logger = get_logger(__name__)

# Clause keywords that introduce a table reference, longest first.
TABLE_CLAUSE = (
    r"(?:FROM|(?:FULL\s+(?:OUTER\s+)?|LEFT\s+(?:OUTER\s+)?|RIGHT\s+(?:OUTER\s+)?|INNER\s+|CROSS\s+)?JOIN)"
)
QUOTED_TABLE_REF_RE = re.compile(rf"\b{TABLE_CLAUSE}\s+[\"'`]", re.IGNORECASE)
HAS_FROM_RE = re.compile(r"\bFROM\b", re.IGNORECASE)
BARE_FROM_REF_RE = re.compile(r"\bFROM\s+[\"'`]?[\w]+[\"'`]?", re.IGNORECASE)
SELECT_RE = re.compile(r"^\s*SELECT\b", re.IGNORECASE)
# Clauses that may follow the projection when a query has no FROM.
TRAILING_CLAUSE_RE = re.compile(r"\b(WHERE|GROUP\s+BY|HAVING|ORDER\s+BY|LIMIT)\b", re.IGNORECASE)

DatasetRef = Union[Mapping[str, Any], Any]


def quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


# Accept Dataset objects, dicts from the metadata store or (display, storage) tuples.
def dataset_names(dataset: DatasetRef) -> Tuple[str, str]:
    """Return (display name, storage table name) for a dataset reference."""
    if isinstance(dataset, tuple):
        return dataset[0], dataset[1]
    if isinstance(dataset, Mapping):
        display = dataset.get("display_name", dataset.get("name"))
        storage = dataset.get("storage_table_name", dataset.get("table_name"))
        return display, storage
    return dataset.display_name, dataset.storage_table_name


def replace_display_name(sql: str, display_name: str, storage_table_name: str) -> str:
    """Replace FROM/JOIN references to one display name, in any quoting style."""
    escaped = re.escape(display_name)
    pattern = re.compile(
        rf"\b({TABLE_CLAUSE})\s+(?:\"{escaped}\"|'{escaped}'|`{escaped}`|{escaped}(?![\w\"'`]))",
        re.IGNORECASE,
    )
    replacement = quote_identifier(storage_table_name)
    return pattern.sub(lambda match: f"{match.group(1)} {replacement}", sql)


def inject_from_clause(sql: str, storage_table_name: str) -> str:
    """Add a FROM clause to a SELECT that has none."""
    from_clause = f"FROM {quote_identifier(storage_table_name)}"
    select = SELECT_RE.match(sql)
    if not select:
        return sql
    head, tail = sql[: select.end()], sql[select.end():]
    trailing = TRAILING_CLAUSE_RE.search(tail)
    projection = tail[: trailing.start()] if trailing else tail
    rest = tail[trailing.start():] if trailing else ""
    # "SELECT LIMIT 5" has nothing to project; select every column.
    if not projection.strip():
        projection = " *"
    rewritten = f"{head}{projection.rstrip()} {from_clause}"
    return f"{rewritten} {rest}" if rest else rewritten


def rewrite_table_references(sql: str, datasets: Sequence[DatasetRef]) -> str:
    """Map display table names in SQL to quoted storage table names.

    With exactly one dataset in scope a query that names no recognizable
    table is pointed at that dataset. With several datasets only verbatim
    display names are replaced; anything else is left for the storage
    engine to reject.
    """
    rewritten = sql
    # Longer names first so "Orders 2024" is not consumed by "Orders".
    by_length = sorted(datasets, key=lambda dataset: len(dataset_names(dataset)[0] or ""), reverse=True)
    for dataset in by_length:
        display_name, storage_table_name = dataset_names(dataset)
        if not display_name or not storage_table_name:
            continue
        rewritten = replace_display_name(rewritten, display_name, storage_table_name)

    if len(datasets) == 1 and not QUOTED_TABLE_REF_RE.search(rewritten):
        _, storage_table_name = dataset_names(datasets[0])
        if not HAS_FROM_RE.search(rewritten):
            logger.info("No FROM clause in generated SQL; targeting %s", storage_table_name)
            rewritten = inject_from_clause(rewritten, storage_table_name)
        else:
            logger.info("Unknown table after FROM; targeting %s", storage_table_name)
            rewritten = BARE_FROM_REF_RE.sub(
                f"FROM {quote_identifier(storage_table_name)}", rewritten, count=1
            )

    if rewritten != sql:
        logger.debug("Rewrote SQL table references: %s", rewritten)
    return rewritten
