import json
import re
from typing import Dict, List, Mapping, Sequence

from sqlmate.errors import LLMError
from sqlmate.log_utils import get_logger
from sqlmate.models import Dataset, SchemaData
from sqlmate.sql_safety import MAX_RESULT_ROWS

logger = get_logger(__name__)

SURROGATE_KEY = "id"

BASE_RULES = (
    "- Generate a single SELECT statement only.",
    "- Never use INSERT, UPDATE, DELETE, DROP, ALTER, CREATE or TRUNCATE.",
    f"- LIMIT {MAX_RESULT_ROWS} is added automatically when the query has no LIMIT.",
    "- Only use the tables and columns listed above.",
    "- The SQL must be correct and executable on SQLite.",
)

CSV_RULES = (
    '- Phrases such as "top N" or "first N" need ORDER BY together with LIMIT.',
    "- SELECT * is fine for all columns, but list columns explicitly when asked to exclude PII columns.",
    "- Every column is stored as TEXT. Use CAST(column AS REAL) or CAST(column AS INTEGER)",
    "  for numeric comparisons, arithmetic and numeric sorting.",
    "  e.g. WHERE CAST(discount AS REAL) >= 2000",
    "  e.g. ORDER BY CAST(quantity AS INTEGER) DESC",
)


def generate_schema_prompt(schema: SchemaData) -> str:
    """Describe a declared schema for the SQL generation prompt."""
    parts: List[str] = ["The database schema is:", ""]
    for table in schema.tables:
        parts.append(f"Table: {table.name}")
        if table.primary_key:
            parts.append(f"  PRIMARY KEY: {', '.join(table.primary_key)}")
        parts.append("  Columns:")
        for column in table.columns:
            nullable = "NULL" if column.nullable else "NOT NULL"
            parts.append(f"    - {column.name} ({column.type}, {nullable})")
        if table.foreign_keys:
            parts.append("  Foreign keys:")
            for fk in table.foreign_keys:
                parts.append(f"    - {fk.column} -> {fk.references_table}.{fk.references_column}")
        parts.append("")
    parts.append("Rules:")
    parts.extend(BASE_RULES)
    return "\n".join(parts)


def generate_dataset_prompt(
    datasets: Sequence[Dataset], columns_by_dataset: Mapping[str, Sequence[Mapping[str, str]]]
) -> str:
    """Describe uploaded datasets by display name, flagging redacted columns.

    ``columns_by_dataset`` maps dataset id to introspected [{name, type}].
    """
    parts: List[str] = ["The database schema is:", ""]
    for dataset in datasets:
        columns = [
            column for column in columns_by_dataset.get(dataset.id, []) if column["name"] != SURROGATE_KEY
        ]
        parts.append(f'Table: "{dataset.display_name}"')
        parts.append("  Columns:")
        for column in columns:
            marker = f" [PII processed: {dataset.pii_action}]" if column["name"] in dataset.pii_columns else ""
            parts.append(f"    - {column['name']} ({column.get('type') or 'TEXT'}){marker}")
        redacted = [column["name"] for column in columns if column["name"] in dataset.pii_columns]
        if redacted:
            parts.append(f"  These columns were detected as PII and processed with {dataset.pii_action}:")
            parts.extend(f"    - {name}" for name in redacted)
            parts.append("  Leave them out of the SELECT list when the user asks to exclude PII columns.")
        parts.append("")

    parts.append("Rules:")
    parts.extend(BASE_RULES)
    names = ", ".join(f'"{dataset.display_name}"' for dataset in datasets)
    parts.append(f"- Refer to tables by these names: {names}.")
    if len(datasets) > 1:
        parts.append("- Use JOIN with the matching key columns when a question spans several tables.")
    parts.extend(CSV_RULES)
    return "\n".join(parts)


def recommend_questions(columns: Sequence[str], limit: int = 5) -> List[str]:
    """Starter questions for a dataset, built from its column names."""
    names = [name for name in columns if name != SURROGATE_KEY]
    if not names:
        return []
    questions = [
        "Show all of the data",
        f"Show the values of the {names[0]} column",
        "How many rows are there?",
        (
            f"Show the {names[0]} and {names[1]} columns together"
            if len(names) > 1
            else f"Show the distinct values of {names[0]}"
        ),
        "Show the 10 most recent rows",
    ]
    return questions[:limit]


def columns_by_id(storage, datasets: Sequence[Dataset]) -> Dict[str, List[Dict[str, str]]]:
    """Introspect the stored columns of each dataset."""
    return {dataset.id: storage.introspect_columns(dataset.storage_table_name) for dataset in datasets}


RECOMMEND_TEMPLATE = """
{schema_details}

Study the schema above and suggest {count} practical questions a user could ask
about this data in plain language. Every question must be answerable with this
schema, and at least one should use the foreign key relationships between tables.

Respond with JSON in exactly this shape:
{{
  "recommendations": ["question 1", "question 2"]
}}
"""

RECOMMENDATIONS_JSON_RE = re.compile(r"\{[\s\S]*\"recommendations\"[\s\S]*\}")
LIST_MARKER_RE = re.compile(r"^(?:\d+[.)]|[-*•])\s*")


def default_schema_questions(schema: SchemaData, limit: int = 5) -> List[str]:
    """Generic questions used when the model gives nothing usable."""
    names = [table.name for table in schema.tables] or ["the first"]
    questions = [
        f"Show all of the data in the {names[0]} table",
        "List every table with its number of columns",
        (
            f"Join the {names[0]} and {names[1]} tables and show the result"
            if len(names) > 1
            else f"How many rows does the {names[0]} table have?"
        ),
        "Show the 10 most recently created records",
        "How many records does each table have?",
    ]
    return questions[:limit]


def parse_recommendations(text_value: str, limit: int = 5) -> List[str]:
    """Read questions from a {"recommendations": [...]} reply, else from list lines."""
    match = RECOMMENDATIONS_JSON_RE.search(text_value)
    if match:
        try:
            parsed = json.loads(match.group(0))
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, dict) and isinstance(parsed.get("recommendations"), list):
            questions = [item.strip() for item in parsed["recommendations"] if isinstance(item, str) and item.strip()]
            return questions[:limit]

    questions = []
    for line in text_value.splitlines():
        line = line.strip()
        if not LIST_MARKER_RE.match(line) and "?" not in line:
            continue
        question = LIST_MARKER_RE.sub("", line).strip()
        if question and not question.startswith(("{", "[")):
            questions.append(question)
    return questions[:limit]


def recommend_schema_questions(generator, schema: SchemaData, limit: int = 5) -> List[str]:
    """Ask the model for starter questions about a declared schema.

    Falls back to generic questions when the model fails or its reply
    holds none.
    """
    variables = {"schema_details": generate_schema_prompt(schema), "count": str(limit)}
    try:
        content, _ = generator.complete(RECOMMEND_TEMPLATE, variables)
    except LLMError as exc:
        logger.warning("Question recommendation failed: %s", exc)
        return default_schema_questions(schema, limit)
    return parse_recommendations(content, limit) or default_schema_questions(schema, limit)
