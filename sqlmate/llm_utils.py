import json
import re
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from langchain_core.prompts import ChatPromptTemplate
from langchain_ollama.llms import OllamaLLM
from ollama import ResponseError

from sqlmate.errors import LLMError
from sqlmate.log_utils import get_logger

logger = get_logger(__name__)

# At most the configured model plus this many alternates.
MAX_MODEL_ATTEMPTS = 3
# Status codes Ollama uses when a model is missing or not pullable.
MODEL_UNAVAILABLE_STATUS = {403, 404}

# Prompt template for SQL generation; braces in the JSON example are escaped.
SQL_TEMPLATE = """
You are an expert at writing SQL. Translate the user's natural language question
into one accurate SELECT query.

Guidelines:
1. If the user asks to exclude PII / hashed / dropped / masked columns, leave the
   PII-processed columns listed in the schema out of the SELECT list.
2. "Top N", "first N" and similar phrases need ORDER BY and LIMIT. Without an
   explicit sort key, order by id or the first column.
3. Every column is stored as TEXT. Numeric comparisons, arithmetic and numeric
   sorting must use CAST(column AS REAL) or CAST(column AS INTEGER).
4. Respond with valid JSON only.

{schema_details}

Question: {query}

Respond with JSON in exactly this shape:
{{
  "sql": "SELECT ...",
  "explanation": "...",
  "warnings": []
}}
"""

CODE_BLOCK_RE = re.compile(r"```(?:sql|json)?\s*(.*?)```", re.IGNORECASE | re.DOTALL)
SELECT_FRAGMENT_RE = re.compile(r"SELECT[\s\S]*?(?=\n\n|$)", re.IGNORECASE)

PARSE_FALLBACK_EXPLANATION = "The model response was not valid JSON; SQL was extracted from the text."
PARSE_FALLBACK_WARNING = "The response format was not what was expected."


@dataclass
class LLMResponse:
    sql: str
    explanation: str = ""
    warnings: List[str] = field(default_factory=list)


def clean_text(text_value: str) -> str:
    """Remove <think>...</think> tags some models emit."""
    cleaned_text = re.sub(r"<think>.*?</think>", "", text_value, flags=re.DOTALL)
    return cleaned_text.strip()


def strip_code_fences(text_value: str) -> str:
    """Drop markdown code fences from model output."""
    # Only strip fences if the output looks like a code block.
    if text_value.strip().startswith("```"):
        text_value = re.sub(r"^```[a-zA-Z]*\n|\n?```$", "", text_value.strip(), flags=re.DOTALL)
    return text_value.strip()


def extract_sql_fragment(text_value: str) -> str:
    """Pull SQL out of free text: a fenced block first, then a bare SELECT."""
    match = CODE_BLOCK_RE.search(text_value)
    if match:
        return match.group(1).strip()
    match = SELECT_FRAGMENT_RE.search(text_value)
    if match:
        return match.group(0).strip()
    return text_value.strip()


def parse_llm_response(content: str) -> LLMResponse:
    """Parse the {sql, explanation, warnings} envelope, with a text fallback."""
    cleaned = clean_text(content)
    try:
        parsed = json.loads(strip_code_fences(cleaned))
    except json.JSONDecodeError:
        parsed = None
    # Anything but a JSON object means the model ignored the format.
    if not isinstance(parsed, dict):
        logger.warning("Model response was not a JSON envelope; extracting SQL from text")
        return LLMResponse(
            sql=extract_sql_fragment(cleaned),
            explanation=PARSE_FALLBACK_EXPLANATION,
            warnings=[PARSE_FALLBACK_WARNING],
        )
    warnings = parsed.get("warnings") or []
    if isinstance(warnings, str):
        warnings = [warnings]
    return LLMResponse(
        sql=str(parsed.get("sql") or "").strip(),
        explanation=str(parsed.get("explanation") or ""),
        warnings=[str(warning) for warning in warnings],
    )


def substitution_warning(requested: str, used: str) -> str:
    return f"Model '{requested}' was not available, so '{used}' was used instead."


class SQLGenerator:
    """Turns a schema prompt and a question into SQL with an Ollama model.

    When the configured model is missing, up to two alternate models are
    tried and the response carries a warning naming the substitution.
    """

    def __init__(
        self,
        model_name: str,
        base_url: Optional[str] = None,
        fallback_models: Sequence[str] = (),
        model_factory: Optional[Callable[[str], Any]] = None,
    ):
        self.model_name = model_name
        self.base_url = base_url
        self.fallback_models = list(fallback_models)
        self.model_factory = model_factory or self._ollama_model

    def _ollama_model(self, model_name: str) -> OllamaLLM:
        # Use a remote Ollama base URL when configured; otherwise default to local.
        if self.base_url:
            return OllamaLLM(model=model_name, base_url=self.base_url, format="json")
        return OllamaLLM(model=model_name, format="json")

    def candidate_models(self) -> List[str]:
        others = [name for name in self.fallback_models if name != self.model_name]
        return [self.model_name, *others][:MAX_MODEL_ATTEMPTS]

    def complete(self, template: str, variables: Dict[str, str]) -> Tuple[str, str]:
        """Run a prompt template and return (text, model used).

        Falls back to alternate models when one is unavailable; raises
        LLMError for any other provider failure or an empty reply.
        """
        prompt = ChatPromptTemplate.from_template(template)
        last_error: Optional[Exception] = None
        for model_name in self.candidate_models():
            chain = prompt | self.model_factory(model_name)
            try:
                content = chain.invoke(variables)
            except ResponseError as exc:
                # Only a missing model moves on to the next candidate.
                if exc.status_code in MODEL_UNAVAILABLE_STATUS:
                    logger.warning("Model %s unavailable (%s); trying next model", model_name, exc.status_code)
                    last_error = exc
                    continue
                raise LLMError(f"LLM request failed: {exc}") from exc
            except ConnectionError as exc:
                raise LLMError(f"Could not reach the LLM server: {exc}") from exc
            if not isinstance(content, str):
                content = getattr(content, "content", str(content))
            if not content.strip():
                raise LLMError("The LLM returned an empty response.")
            if model_name != self.model_name:
                logger.info("Substituted model %s for %s", model_name, self.model_name)
            return content, model_name
        raise LLMError(f"No model could be reached: {last_error}")

    def generate_sql(self, schema_prompt: str, question: str) -> LLMResponse:
        """Generate SQL for a question against the described schema."""
        content, model_name = self.complete(SQL_TEMPLATE, {"schema_details": schema_prompt, "query": question})
        response = parse_llm_response(content)
        if model_name != self.model_name:
            response.warnings.append(substitution_warning(self.model_name, model_name))
        return response


def generate_sql_with_retry(
    generator: SQLGenerator,
    schema_prompt: str,
    question: str,
    retry_on_error: bool = True,
    retry_delay: float = 1.0,
) -> LLMResponse:
    """Call the generator, retrying once on a provider failure."""
    try:
        return generator.generate_sql(schema_prompt, question)
    except LLMError as exc:
        if not retry_on_error:
            raise
        logger.warning("LLM call failed, retrying once: %s", exc)
        time.sleep(retry_delay)
        return generator.generate_sql(schema_prompt, question)
