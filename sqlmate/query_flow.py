"""Question-to-result flow.

QUESTION_RECEIVED -> SQL_GENERATED -> SQL_VALIDATED (or REJECTED)
-> SQL_REWRITTEN -> EXECUTED -> RETURNED. An execution failure triggers
exactly one regeneration with the error appended to the question; a second
failure ends in FAILED with the failing SQL attached.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from sqlmate.db_utils import StorageEngine
from sqlmate.errors import ExecutionError, SafetyViolation
from sqlmate.llm_utils import LLMResponse, SQLGenerator, generate_sql_with_retry
from sqlmate.log_utils import get_logger
from sqlmate.models import Dataset
from sqlmate.sql_safety import MAX_RESULT_ROWS, sanitize_sql
from sqlmate.table_rewrite import rewrite_table_references

logger = get_logger(__name__)

MAX_EXECUTION_ATTEMPTS = 2


class QueryState(str, Enum):
    QUESTION_RECEIVED = "question_received"
    SQL_GENERATED = "sql_generated"
    SQL_VALIDATED = "sql_validated"
    SQL_REWRITTEN = "sql_rewritten"
    EXECUTED = "executed"
    RETRY_GENERATED = "retry_generated"
    REJECTED = "rejected"
    RETURNED = "returned"
    FAILED = "failed"


@dataclass
class QueryOutcome:
    question: str
    state: QueryState
    sql: Optional[str] = None
    rows: Optional[List[Dict[str, Any]]] = None
    error: Optional[str] = None
    explanation: str = ""
    warnings: List[str] = field(default_factory=list)
    suggestion: Optional[str] = None
    history: List[QueryState] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.state == QueryState.RETURNED

    @property
    def columns(self) -> List[str]:
        return list(self.rows[0].keys()) if self.rows else []


# Validate, rewrite and run one SQL string against the in-scope datasets.
def execute_sql(storage: StorageEngine, sql: str, datasets: Sequence[Dataset]) -> Dict[str, Any]:
    """Return {"sql": final SQL, "rows": capped rows}; raises SafetyViolation or ExecutionError."""
    sanitized = sanitize_sql(sql)
    final_sql = rewrite_table_references(sanitized, datasets)
    try:
        rows = storage.execute(final_sql, max_rows=MAX_RESULT_ROWS)
    except ExecutionError as exc:
        exc.sql = final_sql
        raise
    return {"sql": final_sql, "rows": rows[:MAX_RESULT_ROWS]}


def retry_question(question: str, error: str) -> str:
    """Append the storage error so the model can correct its previous SQL."""
    return f"{question}\n\nThe previous SQL failed with this error: {error}\nFix the query."


def answer_question(
    question: str,
    schema_prompt: str,
    datasets: Sequence[Dataset],
    storage: StorageEngine,
    generator: SQLGenerator,
) -> QueryOutcome:
    """Run the full question-to-result flow with a single automatic retry."""
    outcome = QueryOutcome(question=question, state=QueryState.QUESTION_RECEIVED)
    outcome.history.append(outcome.state)

    def advance(state: QueryState) -> None:
        outcome.state = state
        outcome.history.append(state)

    prompt_question = question
    for attempt in range(MAX_EXECUTION_ATTEMPTS):
        response: LLMResponse = generate_sql_with_retry(generator, schema_prompt, prompt_question)
        outcome.sql = response.sql
        outcome.explanation = response.explanation
        outcome.warnings.extend(warning for warning in response.warnings if warning not in outcome.warnings)
        advance(QueryState.SQL_GENERATED)

        try:
            sanitized = sanitize_sql(response.sql)
        except SafetyViolation as exc:
            # Safety rejections are terminal and reported verbatim.
            outcome.error = exc.reason
            outcome.suggestion = exc.suggestion
            advance(QueryState.REJECTED)
            return outcome
        advance(QueryState.SQL_VALIDATED)

        final_sql = rewrite_table_references(sanitized, datasets)
        outcome.sql = final_sql
        advance(QueryState.SQL_REWRITTEN)

        try:
            rows = storage.execute(final_sql, max_rows=MAX_RESULT_ROWS)
        except ExecutionError as exc:
            outcome.error = exc.message
            if attempt + 1 >= MAX_EXECUTION_ATTEMPTS:
                advance(QueryState.FAILED)
                return outcome
            logger.info("Execution failed, regenerating SQL once: %s", exc.message)
            prompt_question = retry_question(question, exc.message)
            advance(QueryState.RETRY_GENERATED)
            continue

        advance(QueryState.EXECUTED)
        outcome.rows = rows[:MAX_RESULT_ROWS]
        outcome.error = None
        advance(QueryState.RETURNED)
        return outcome
    return outcome
