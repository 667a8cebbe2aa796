import io
from typing import List, Union

import pytest

from sqlmate.db_utils import StorageEngine
from sqlmate.errors import LLMError
from sqlmate.ingest import read_csv_records
from sqlmate.llm_utils import LLMResponse


class FakeGenerator:
    """Stands in for SQLGenerator, replaying canned SQL in order."""

    def __init__(self, responses: List[Union[str, Exception]]):
        self.responses = list(responses)
        self.calls = []

    def generate_sql(self, schema_prompt: str, question: str) -> LLMResponse:
        self.calls.append({"schema_prompt": schema_prompt, "question": question})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return LLMResponse(sql=response, explanation="canned", warnings=[])


@pytest.fixture
def storage():
    """In-memory SQLite store with metadata tables."""
    with StorageEngine("sqlite://") as engine:
        yield engine


@pytest.fixture
def make_generator():
    return FakeGenerator


@pytest.fixture
def parse_csv():
    def _parse(text: str, filename: str):
        return read_csv_records(io.StringIO(text), filename=filename)

    return _parse


@pytest.fixture
def failing_llm():
    return LLMError("connection reset")
