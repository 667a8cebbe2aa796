import json
import os
import re
from typing import List, Optional

# SQLMate app:
# 1) Upload CSV files (reviewing PII first) or a declared schema.
# 2) Ask the model for SQL against the uploaded datasets.
# 3) Validate, rewrite and execute the query, then render tables/charts.

import streamlit as st

from sqlmate.config_utils import build_db_url, ensure_sqlite_dir, get_fallback_models, get_setting, load_dotenv_file
from sqlmate.db_utils import StorageEngine
from sqlmate.errors import ExecutionError, LLMError, SafetyViolation, SQLMateError
from sqlmate.ingest import UploadItem, commit_dataset, commit_dataset_group, preview_upload, read_csv_records, register_schema
from sqlmate.llm_utils import SQLGenerator, generate_sql_with_retry
from sqlmate.models import Dataset
from sqlmate.pii_redact import ACTIONS
from sqlmate.query_flow import answer_question, execute_sql
from sqlmate.schema_prompt import (
    columns_by_id,
    generate_dataset_prompt,
    generate_schema_prompt,
    recommend_questions,
    recommend_schema_questions,
)
from sqlmate.sql_safety import validate_sql_safety
from sqlmate.viz_utils import pii_report_frame, render_results

# Load environment variables from a local .env file when present.
load_dotenv_file(os.getenv("DOTENV_PATH", ".env"))


def wants_chart(question: str) -> bool:
    """Heuristic for chart requests in the user's question."""
    return bool(
        re.search(
            r"\b(plot|chart|graph|visuali[sz]e|trend|line|bar|histogram|scatter|pie|draw|diagram)\b",
            question,
            re.I,
        )
    )


def render_sql_button(sql: str) -> None:
    """Show SQL without triggering a rerun that cancels in-flight work."""
    with st.expander("Show SQL"):
        st.code(sql, wrap_lines=True, language="sql")


# One storage handle per process, closed with the Streamlit server.
@st.cache_resource(show_spinner=False)
def get_storage(db_url: str) -> StorageEngine:
    """Open and cache the embedded store."""
    ensure_sqlite_dir(db_url)
    return StorageEngine(db_url).open()


@st.cache_resource(show_spinner=False)
def get_generator(model_name: str, base_url: Optional[str]) -> SQLGenerator:
    return SQLGenerator(model_name, base_url=base_url, fallback_models=get_fallback_models())


DEFAULT_GREETING = {
    "role": "assistant",
    "content": (
        "Hi! Upload CSV files (or a schema) and ask questions in plain language. "
        "Sensitive columns are detected on upload so you can drop, mask or hash them. "
        "Use the \"Show SQL\" button to see the query behind each answer."
    ),
}


def review_pii(index: int, upload) -> Optional[UploadItem]:
    """Parse one upload and let the user choose an action per PII column."""
    try:
        parsed = read_csv_records(upload, filename=upload.name)
        preview = preview_upload(parsed)
    except SQLMateError as exc:
        st.error(f"{upload.name}: {exc}")
        return None

    st.subheader(upload.name)
    st.caption(f"{preview.total_rows} rows, {len(preview.columns)} columns")
    st.dataframe(preview.preview, use_container_width=True)
    if not preview.pii_report.columns:
        st.success("No PII columns detected.")
        return UploadItem(parsed=parsed, pii_report=preview.pii_report, actions={})

    st.warning("Possible PII columns detected. Choose how each should be stored.")
    st.dataframe(pii_report_frame(preview.pii_report), use_container_width=True)
    actions = {}
    for column in preview.pii_report.columns:
        actions[column.name] = st.selectbox(
            f"Action for {column.name}",
            ACTIONS,
            index=ACTIONS.index(column.suggested_action),
            key=f"pii_{index}_{column.name}",
        )
    return UploadItem(parsed=parsed, pii_report=preview.pii_report, actions=actions)


st.set_page_config(page_title="SQLMate", initial_sidebar_state="expanded", layout="wide")

# Model settings.
OLLAMA_MODEL = get_setting("OLLAMA_MODEL")
OLLAMA_BASE_URL = get_setting("OLLAMA_BASE_URL") or get_setting("OLLAMA_HOST")

if not OLLAMA_MODEL:
    st.error("OLLAMA_MODEL is missing. Set it in .env or .streamlit/secrets.toml.")
    st.stop()

db_url = build_db_url()
try:
    storage = get_storage(db_url)
except SQLMateError as exc:
    st.error(f"Could not open the database: {exc}")
    st.stop()
generator = get_generator(OLLAMA_MODEL, OLLAMA_BASE_URL)

st.sidebar.title("SQLMate")
st.sidebar.caption(f"Model: {OLLAMA_MODEL}")
mode = st.sidebar.radio("Track", ["CSV", "Schema"], horizontal=True)

if "messages" not in st.session_state:
    st.session_state.messages = [DEFAULT_GREETING]
if st.sidebar.button("Clear chat", use_container_width=True):
    st.session_state.messages = [DEFAULT_GREETING]
    st.rerun()

datasets: List[Dataset] = []
schema_prompt = ""

if mode == "CSV":
    with st.sidebar.expander("Upload CSV", expanded=not storage.list_datasets()):
        uploads = st.file_uploader("CSV files", type=["csv"], accept_multiple_files=True)
        items = [item for item in (review_pii(i, upload) for i, upload in enumerate(uploads or [])) if item]
        if items and st.button("Store datasets", use_container_width=True):
            try:
                if len(items) == 1:
                    dataset = commit_dataset(storage, items[0].parsed, items[0].pii_report, items[0].actions)
                    st.session_state.selected = {"dataset_id": dataset.id}
                else:
                    group = commit_dataset_group(storage, items)
                    st.session_state.selected = {"group_id": group.id}
                    st.success(f"{len(items)} files are ready. JOIN queries are available.")
            except SQLMateError as exc:
                st.error(str(exc))

    all_datasets = storage.list_datasets()
    selected = st.session_state.get("selected", {})
    if selected.get("group_id"):
        datasets = storage.get_group_datasets(selected["group_id"])
        st.sidebar.caption("Dataset group: " + ", ".join(dataset.display_name for dataset in datasets))
    elif all_datasets:
        labels = {dataset.id: f"{dataset.display_name} ({dataset.storage_table_name})" for dataset in all_datasets}
        ids = list(labels)
        default_id = selected.get("dataset_id")
        chosen = st.sidebar.selectbox(
            "Dataset",
            ids,
            index=ids.index(default_id) if default_id in ids else len(ids) - 1,
            format_func=labels.get,
        )
        datasets = [storage.get_dataset(chosen)]

    if datasets:
        columns = columns_by_id(storage, datasets)
        schema_prompt = generate_dataset_prompt(datasets, columns)
        st.sidebar.header("Try asking")
        for question in recommend_questions([c["name"] for c in columns[datasets[0].id]]):
            st.sidebar.markdown(f"- {question}")
else:
    with st.sidebar.expander("Upload schema JSON", expanded=True):
        schema_name = st.text_input("Schema name", value="Untitled Schema")
        schema_file = st.file_uploader("Schema file", type=["json"])
        if schema_file is not None and st.button("Store schema", use_container_width=True):
            try:
                record = register_schema(storage, json.load(schema_file), name=schema_name)
                st.session_state.schema_id = record.id
            except (json.JSONDecodeError, SQLMateError) as exc:
                st.error(f"Invalid schema: {exc}")
    if st.session_state.get("schema_id"):
        record = storage.get_schema(st.session_state.schema_id)
        schema_prompt = generate_schema_prompt(record.schema)
        st.sidebar.header("Schema")
        for table in record.schema.tables:
            with st.sidebar.expander(table.name):
                st.markdown("\n".join(f"- {col.name} ({col.type})" for col in table.columns))
        # One model call per stored schema; reruns reuse the cached questions.
        cached = st.session_state.get("schema_questions", {})
        if record.id not in cached:
            with st.sidebar:
                with st.spinner("Suggesting questions..."):
                    cached[record.id] = recommend_schema_questions(generator, record.schema)
            st.session_state.schema_questions = cached
        st.sidebar.header("Try asking")
        for question in cached[record.id]:
            st.sidebar.markdown(f"- {question}")

# Re-render chat history.
for message in st.session_state.messages:
    with st.chat_message(message["role"]):
        st.markdown(message["content"])
        if message["role"] == "assistant":
            if message.get("rows") is not None:
                render_results(message["rows"], show_chart=message.get("show_chart", False))
            if message.get("error"):
                st.error(message["error"])
            if message.get("sql"):
                render_sql_button(message["sql"])

user_prompt = st.chat_input("Ask about your data", disabled=not schema_prompt)
if user_prompt:
    st.session_state.messages.append({"role": "user", "content": user_prompt})
    with st.chat_message("user"):
        st.markdown(user_prompt)

    with st.chat_message("assistant"):
        # Schema track: generate and validate only, there is no data to run against.
        if mode == "Schema":
            with st.spinner("Generating SQL..."):
                try:
                    response = generate_sql_with_retry(generator, schema_prompt, user_prompt)
                except LLMError as exc:
                    st.error(str(exc))
                    st.stop()
            check = validate_sql_safety(response.sql)
            sql = check.sanitized or response.sql
            error = None if check.safe else check.error
            st.markdown(response.explanation or "Here is the generated SQL.")
            for warning in response.warnings:
                st.warning(warning)
            if error:
                st.error(error)
            render_sql_button(sql)
            st.session_state.messages.append(
                {"role": "assistant", "content": response.explanation or "Generated SQL.", "sql": sql, "error": error}
            )
            st.stop()

        with st.spinner("Generating SQL..."):
            try:
                outcome = answer_question(user_prompt, schema_prompt, datasets, storage, generator)
            except LLMError as exc:
                st.error(str(exc))
                st.stop()

        for warning in outcome.warnings:
            st.warning(warning)
        if not outcome.ok:
            st.error(outcome.error)
            if outcome.suggestion:
                st.info(f"Only the first statement can be used: {outcome.suggestion}")
            if outcome.sql:
                render_sql_button(outcome.sql)
            st.session_state.messages.append(
                {
                    "role": "assistant",
                    "content": "I ran into an error while answering that.",
                    "error": outcome.error,
                    "sql": outcome.sql,
                }
            )
            st.stop()

        plot_requested = wants_chart(user_prompt)
        content = outcome.explanation or f"Returned {len(outcome.rows)} rows."
        st.markdown(content)
        render_results(outcome.rows, show_chart=plot_requested)
        render_sql_button(outcome.sql)
        st.session_state.messages.append(
            {
                "role": "assistant",
                "content": content,
                "sql": outcome.sql,
                "rows": outcome.rows,
                "show_chart": plot_requested,
            }
        )

# Let users edit and re-run the last SQL through the same guardrails.
if mode == "CSV" and datasets:
    with st.expander("Run SQL"):
        manual_sql = st.text_area("SQL", key="manual_sql")
        if manual_sql and st.button("Execute"):
            try:
                result = execute_sql(storage, manual_sql, datasets)
                render_results(result["rows"])
                render_sql_button(result["sql"])
            except SafetyViolation as exc:
                st.error(exc.reason)
            except ExecutionError as exc:
                st.error(exc.message)
                if exc.sql:
                    render_sql_button(exc.sql)
