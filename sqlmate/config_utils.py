import os
from pathlib import Path
from typing import List, Optional, Tuple

import streamlit as st

DEFAULT_DB_URL = "sqlite:///data/sqlmate.db"
DEFAULT_FALLBACK_MODELS = "llama3.1,qwen2.5-coder,mistral"


def parse_dotenv_line(raw_line: str) -> Optional[Tuple[str, str]]:
    """Split one .env line into (key, value); None for blanks, comments and junk."""
    line = raw_line.strip()
    if not line or line.startswith("#"):
        return None
    # Shell-style files often prefix assignments with "export".
    if line.startswith("export "):
        line = line[len("export "):].lstrip()
    key, sep, value = line.partition("=")
    key = key.strip()
    if not sep or not key:
        return None
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        value = value[1:-1]
    return key, value


# Lightweight .env loader to avoid adding a dependency.
def load_dotenv_file(path: str = ".env", override: bool = False) -> None:
    """Load KEY=VALUE pairs from a .env file into os.environ."""
    env_path = Path(path)
    if not env_path.is_file():
        return
    for raw_line in env_path.read_text(encoding="utf-8").splitlines():
        pair = parse_dotenv_line(raw_line)
        if pair is None:
            continue
        key, value = pair
        # Values already in the environment win unless override=True.
        if override or key not in os.environ:
            os.environ[key] = value


# st.secrets first, then the process environment.
def get_setting(key: str, default: Optional[str] = None) -> Optional[str]:
    """Look up a setting in .streamlit/secrets.toml or the environment."""
    try:
        if key in st.secrets:
            return st.secrets.get(key)
    except Exception:
        # No secrets.toml outside a configured Streamlit project.
        pass
    return os.getenv(key, default)


def build_db_url() -> str:
    """Return the SQLAlchemy URL of the embedded store."""
    db_url = get_setting("DB_URL")
    if db_url:
        return db_url
    sqlite_path = get_setting("SQLITE_PATH")
    # Accept either a bare file path or a full sqlite:/// URL.
    if sqlite_path:
        return sqlite_path if sqlite_path.startswith("sqlite") else f"sqlite:///{sqlite_path}"
    return DEFAULT_DB_URL


def ensure_sqlite_dir(db_url: str) -> None:
    """Create the parent directory of a file-based SQLite database."""
    if not db_url.startswith("sqlite:///"):
        return
    path = db_url[len("sqlite:///"):]
    # In-memory databases have nothing to create.
    if not path or path == ":memory:":
        return
    Path(path).parent.mkdir(parents=True, exist_ok=True)


def get_fallback_models() -> List[str]:
    """Alternate model names tried when the configured model is unavailable."""
    raw = get_setting("OLLAMA_FALLBACK_MODELS", DEFAULT_FALLBACK_MODELS) or ""
    return [name.strip() for name in raw.split(",") if name.strip()]
