import os

import pytest

from sqlmate.config_utils import (
    DEFAULT_DB_URL,
    build_db_url,
    ensure_sqlite_dir,
    get_fallback_models,
    load_dotenv_file,
    parse_dotenv_line,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in ("DB_URL", "SQLITE_PATH", "OLLAMA_FALLBACK_MODELS", "SQLMATE_TEST_KEY"):
        monkeypatch.delenv(key, raising=False)


class TestBuildDbUrl:
    def test_default(self):
        assert build_db_url() == DEFAULT_DB_URL

    def test_db_url_wins(self, monkeypatch):
        monkeypatch.setenv("DB_URL", "sqlite:///tmp/a.db")
        monkeypatch.setenv("SQLITE_PATH", "other.db")
        assert build_db_url() == "sqlite:///tmp/a.db"

    def test_sqlite_path_is_wrapped(self, monkeypatch):
        monkeypatch.setenv("SQLITE_PATH", "data/local.db")
        assert build_db_url() == "sqlite:///data/local.db"


def test_ensure_sqlite_dir(tmp_path):
    target = tmp_path / "nested" / "store.db"
    ensure_sqlite_dir(f"sqlite:///{target}")
    assert target.parent.is_dir()
    # Nothing to create for in-memory stores.
    ensure_sqlite_dir("sqlite://")


def test_load_dotenv_file(tmp_path, monkeypatch):
    env_file = tmp_path / ".env"
    env_file.write_text('# comment\nSQLMATE_TEST_KEY="quoted value"\nnot a pair\n', encoding="utf-8")
    load_dotenv_file(str(env_file))
    assert os.environ["SQLMATE_TEST_KEY"] == "quoted value"

    monkeypatch.setenv("SQLMATE_TEST_KEY", "kept")
    load_dotenv_file(str(env_file))
    assert os.environ["SQLMATE_TEST_KEY"] == "kept"


def test_missing_dotenv_is_ignored(tmp_path):
    load_dotenv_file(str(tmp_path / "absent.env"))


def test_fallback_models(monkeypatch):
    assert get_fallback_models() == ["llama3.1", "qwen2.5-coder", "mistral"]
    monkeypatch.setenv("OLLAMA_FALLBACK_MODELS", " phi3 , ,gemma2")
    assert get_fallback_models() == ["phi3", "gemma2"]


@pytest.mark.parametrize(
    "line, expected",
    [
        ("KEY=value", ("KEY", "value")),
        ("export KEY = 'spaced value'", ("KEY", "spaced value")),
        ('KEY="a=b"', ("KEY", "a=b")),
        ("   ", None),
        ("# KEY=value", None),
        ("=value", None),
        ("no separator", None),
    ],
)
def test_parse_dotenv_line(line, expected):
    assert parse_dotenv_line(line) == expected
