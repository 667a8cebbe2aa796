"""Upload processing: CSV parsing, PII preview and committing datasets."""

import uuid
from dataclasses import dataclass, field
from typing import IO, Any, Dict, List, Mapping, Optional, Sequence, Union

import pandas as pd

from sqlmate.db_utils import StorageEngine
from sqlmate.errors import ValidationError
from sqlmate.log_utils import get_logger
from sqlmate.models import Dataset, DatasetGroup, SchemaData, SchemaRecord
from sqlmate.pii_detect import PIIReport, generate_pii_report
from sqlmate.pii_redact import ACTION_DROP, ActionSpec, process_pii, resolve_action_map, summarize_pii_actions
from sqlmate.schema_prompt import generate_schema_prompt
from sqlmate.table_name import build_storage_table_name, display_name_from_filename

logger = get_logger(__name__)

PREVIEW_ROWS = 20


@dataclass
class ParsedCSV:
    filename: str
    columns: List[str]
    rows: List[Dict[str, str]]


@dataclass
class UploadPreview:
    filename: str
    columns: List[str]
    preview: List[Dict[str, str]]
    total_rows: int
    pii_report: PIIReport


@dataclass
class UploadItem:
    """One file of a batch, with the PII decisions made for it."""

    parsed: ParsedCSV
    pii_report: PIIReport
    actions: ActionSpec = field(default_factory=dict)


# Every value is read as text; empty cells stay empty strings, not NaN.
def read_csv_records(source: Union[str, IO[Any]], filename: Optional[str] = None) -> ParsedCSV:
    """Parse a CSV upload into a header list and string-valued rows."""
    try:
        frame = pd.read_csv(source, dtype=str, keep_default_na=False, skip_blank_lines=True)
    except pd.errors.EmptyDataError as exc:
        raise ValidationError("The CSV file is empty.") from exc
    frame.columns = [str(column).strip() for column in frame.columns]
    for column in frame.columns:
        frame[column] = frame[column].str.strip()
    name = filename or getattr(source, "name", None) or str(source)
    return ParsedCSV(filename=name, columns=list(frame.columns), rows=frame.to_dict(orient="records"))


def preview_upload(parsed: ParsedCSV) -> UploadPreview:
    """Return the first rows and a PII report for user review."""
    if not parsed.rows:
        raise ValidationError("The CSV file has no data rows.")
    return UploadPreview(
        filename=parsed.filename,
        columns=parsed.columns,
        preview=parsed.rows[:PREVIEW_ROWS],
        total_rows=len(parsed.rows),
        pii_report=generate_pii_report(parsed.columns, parsed.rows),
    )


def kept_columns(parsed: ParsedCSV, action_map: Mapping[str, str]) -> List[str]:
    """Columns that survive redaction; raises ValidationError when none do."""
    columns = [column for column in parsed.columns if action_map.get(column) != ACTION_DROP]
    if not columns:
        raise ValidationError(f"{parsed.filename}: every column would be dropped, nothing is left to store.")
    return columns


def commit_dataset(
    storage: StorageEngine,
    parsed: ParsedCSV,
    pii_report: PIIReport,
    actions: Optional[ActionSpec] = None,
    dataset_id: Optional[str] = None,
) -> Dataset:
    """Redact, store and register one uploaded CSV."""
    actions = {} if actions is None else actions
    action_map = resolve_action_map(pii_report, actions)
    processed = process_pii(parsed.rows, pii_report, action_map)

    dataset_id = dataset_id or str(uuid.uuid4())
    storage_table_name = build_storage_table_name(parsed.filename, dataset_id)
    columns = kept_columns(parsed, action_map)
    storage.create_table(storage_table_name, columns)
    storage.insert_rows(storage_table_name, columns, processed)

    pii_action, pii_columns = summarize_pii_actions(action_map)
    dataset = Dataset(
        id=dataset_id,
        display_name=display_name_from_filename(parsed.filename),
        storage_table_name=storage_table_name,
        pii_action=pii_action,
        pii_columns=pii_columns,
    )
    storage.save_dataset(dataset)
    logger.info(
        "Stored dataset %s as %s (%d rows, pii=%s)",
        dataset.display_name,
        storage_table_name,
        len(processed),
        pii_action,
    )
    return dataset


def commit_dataset_group(storage: StorageEngine, items: Sequence[UploadItem]) -> DatasetGroup:
    """Store several files together so they can be queried with JOINs."""
    if not items:
        raise ValidationError("No files were provided.")
    # Check every file first so a bad one does not leave a partial group behind.
    for item in items:
        kept_columns(item.parsed, resolve_action_map(item.pii_report, item.actions))
    display_names = [display_name_from_filename(item.parsed.filename) for item in items]
    datasets = [commit_dataset(storage, item.parsed, item.pii_report, item.actions) for item in items]
    group = DatasetGroup(
        id=str(uuid.uuid4()),
        name="Group_" + "_".join(display_names),
        dataset_ids=[dataset.id for dataset in datasets],
    )
    storage.save_group(group)
    return group


def register_schema(storage: StorageEngine, raw_schema: Mapping[str, Any], name: Optional[str] = None) -> SchemaRecord:
    """Validate and store a declared schema, returning it with its prompt."""
    schema = SchemaData.from_dict(raw_schema)
    record = SchemaRecord(
        id=str(uuid.uuid4()),
        name=name or "Untitled Schema",
        schema=schema,
        prompt=generate_schema_prompt(schema),
    )
    storage.save_schema(record)
    return record
