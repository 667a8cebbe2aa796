import json
from typing import Any, Dict, List, Mapping, Optional, Sequence

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from sqlmate.errors import ExecutionError, StorageError, ValidationError
from sqlmate.log_utils import get_logger
from sqlmate.models import Dataset, DatasetGroup, SchemaData, SchemaRecord
from sqlmate.sql_safety import MAX_RESULT_ROWS
from sqlmate.table_name import is_valid_table_name
from sqlmate.table_rewrite import quote_identifier

logger = get_logger(__name__)

METADATA_DDL = (
    """
    CREATE TABLE IF NOT EXISTS datasets (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS schemas (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        schema_json TEXT NOT NULL,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS dataset_groups (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS dataset_group_members (
        group_id TEXT NOT NULL,
        dataset_id TEXT NOT NULL,
        position INTEGER NOT NULL DEFAULT 0,
        PRIMARY KEY (group_id, dataset_id),
        FOREIGN KEY (group_id) REFERENCES dataset_groups(id),
        FOREIGN KEY (dataset_id) REFERENCES datasets(id)
    )
    """,
)

# Columns added to the datasets table after its first release.
DATASET_MIGRATIONS = {
    "table_name": "ALTER TABLE datasets ADD COLUMN table_name TEXT",
    "pii_action": "ALTER TABLE datasets ADD COLUMN pii_action TEXT",
    "pii_columns": "ALTER TABLE datasets ADD COLUMN pii_columns TEXT",
}


class StorageEngine:
    """Handle to the embedded SQLite store holding datasets and metadata.

    Construct one per process and pass it to the functions that need it;
    call ``open()`` before use and ``close()`` when done (or use it as a
    context manager).
    """

    def __init__(self, db_url: str):
        self.db_url = db_url
        self._engine: Optional[Engine] = None

    def __enter__(self) -> "StorageEngine":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise RuntimeError("StorageEngine is not open.")
        return self._engine

    def open(self) -> "StorageEngine":
        """Create the SQLAlchemy engine and the metadata tables."""
        if self._engine is not None:
            return self
        try:
            self._engine = create_engine(self.db_url, pool_pre_ping=True)
            self.bootstrap()
        except SQLAlchemyError as exc:
            self.close()
            logger.error("Could not open storage at %s: %s", self.db_url, exc)
            raise StorageError(f"Could not open the database: {exc}") from exc
        return self

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None

    def bootstrap(self) -> None:
        """Create metadata tables and apply additive column migrations."""
        with self.engine.begin() as conn:
            for ddl in METADATA_DDL:
                conn.exec_driver_sql(ddl)
        existing = {column["name"] for column in inspect(self.engine).get_columns("datasets")}
        with self.engine.begin() as conn:
            for column, ddl in DATASET_MIGRATIONS.items():
                if column not in existing:
                    logger.info("Migrating datasets table: adding %s", column)
                    conn.exec_driver_sql(ddl)

    # Physical dataset tables.

    def create_table(self, name: str, columns: Sequence[str]) -> None:
        """Create a table with every column typed TEXT."""
        if not is_valid_table_name(name):
            raise ValidationError(f'Invalid storage table name "{name}".')
        column_defs = [f"{quote_identifier(column)} TEXT" for column in columns]
        # Keep a surrogate key unless the CSV already brings an id column.
        if "id" not in {column.lower() for column in columns}:
            column_defs.insert(0, "id INTEGER PRIMARY KEY AUTOINCREMENT")
        ddl = f"CREATE TABLE IF NOT EXISTS {quote_identifier(name)} ({', '.join(column_defs)})"
        with self.engine.begin() as conn:
            conn.exec_driver_sql(ddl)
        logger.info("Created table %s with %d columns", name, len(columns))

    def insert_rows(self, name: str, columns: Sequence[str], rows: Sequence[Mapping[str, Any]]) -> int:
        """Insert rows as text values; missing values become empty strings."""
        if not rows:
            return 0
        column_list = ", ".join(quote_identifier(column) for column in columns)
        placeholders = ", ".join("?" for _ in columns)
        statement = f"INSERT INTO {quote_identifier(name)} ({column_list}) VALUES ({placeholders})"
        params = [
            tuple("" if row.get(column) is None else str(row.get(column)) for column in columns)
            for row in rows
        ]
        with self.engine.begin() as conn:
            conn.exec_driver_sql(statement, params)
        return len(params)

    def execute(self, sql: str, max_rows: int = MAX_RESULT_ROWS) -> List[Dict[str, Any]]:
        """Execute SQL and return at most max_rows row dicts."""
        try:
            with self.engine.connect() as conn:
                # Driver-level execution so ":" in literals isn't read as a bind parameter.
                result = conn.exec_driver_sql(sql)
                return [dict(row) for row in result.mappings().fetchmany(max_rows)]
        except SQLAlchemyError as exc:
            message = str(getattr(exc, "orig", None) or exc)
            logger.warning("Query failed: %s", message)
            raise ExecutionError(message, sql=sql) from exc

    def introspect_columns(self, name: str) -> List[Dict[str, str]]:
        """Return [{name, type}] for a stored table, or [] if it was never created."""
        if not self.table_exists(name):
            return []
        return [
            {"name": column["name"], "type": str(column["type"])}
            for column in inspect(self.engine).get_columns(name)
        ]

    def table_exists(self, name: str) -> bool:
        return inspect(self.engine).has_table(name)

    # Metadata records.

    def save_dataset(self, dataset: Dataset) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                text(
                    "INSERT INTO datasets (id, name, table_name, pii_action, pii_columns) "
                    "VALUES (:id, :name, :table_name, :pii_action, :pii_columns)"
                ),
                {
                    "id": dataset.id,
                    "name": dataset.display_name,
                    "table_name": dataset.storage_table_name,
                    "pii_action": dataset.pii_action,
                    "pii_columns": json.dumps(dataset.pii_columns, ensure_ascii=False),
                },
            )

    def get_dataset(self, dataset_id: str) -> Dataset:
        """Load one dataset or raise ValidationError if it is unknown."""
        with self.engine.connect() as conn:
            row = conn.execute(
                text("SELECT id, name, table_name, pii_action, pii_columns FROM datasets WHERE id = :id"),
                {"id": dataset_id},
            ).mappings().first()
        if row is None or not row["table_name"]:
            raise ValidationError(f'Dataset "{dataset_id}" was not found.')
        return Dataset.from_row(row)

    def list_datasets(self) -> List[Dataset]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                text(
                    "SELECT id, name, table_name, pii_action, pii_columns FROM datasets "
                    "WHERE table_name IS NOT NULL ORDER BY rowid"
                )
            ).mappings().all()
        return [Dataset.from_row(row) for row in rows]

    def save_group(self, group: DatasetGroup) -> None:
        """Store a group; every member must already be a saved dataset."""
        for dataset_id in group.dataset_ids:
            self.get_dataset(dataset_id)
        with self.engine.begin() as conn:
            conn.execute(
                text("INSERT INTO dataset_groups (id, name) VALUES (:id, :name)"),
                {"id": group.id, "name": group.name},
            )
            for position, dataset_id in enumerate(group.dataset_ids):
                conn.execute(
                    text(
                        "INSERT INTO dataset_group_members (group_id, dataset_id, position) "
                        "VALUES (:group_id, :dataset_id, :position)"
                    ),
                    {"group_id": group.id, "dataset_id": dataset_id, "position": position},
                )

    def get_group(self, group_id: str) -> DatasetGroup:
        with self.engine.connect() as conn:
            row = conn.execute(
                text("SELECT id, name FROM dataset_groups WHERE id = :id"), {"id": group_id}
            ).mappings().first()
            if row is None:
                raise ValidationError(f'Dataset group "{group_id}" was not found.')
            member_ids = conn.execute(
                text(
                    "SELECT dataset_id FROM dataset_group_members "
                    "WHERE group_id = :id ORDER BY position"
                ),
                {"id": group_id},
            ).scalars().all()
        return DatasetGroup(id=row["id"], name=row["name"], dataset_ids=list(member_ids))

    def get_group_datasets(self, group_id: str) -> List[Dataset]:
        return [self.get_dataset(dataset_id) for dataset_id in self.get_group(group_id).dataset_ids]

    def save_schema(self, record: SchemaRecord) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                text("INSERT INTO schemas (id, name, schema_json) VALUES (:id, :name, :schema_json)"),
                {
                    "id": record.id,
                    "name": record.name,
                    "schema_json": json.dumps(record.schema.to_dict(), ensure_ascii=False),
                },
            )

    def get_schema(self, schema_id: str) -> SchemaRecord:
        with self.engine.connect() as conn:
            row = conn.execute(
                text("SELECT id, name, schema_json FROM schemas WHERE id = :id"), {"id": schema_id}
            ).mappings().first()
        if row is None:
            raise ValidationError(f'Schema "{schema_id}" was not found.')
        return SchemaRecord(
            id=row["id"], name=row["name"], schema=SchemaData.from_dict(json.loads(row["schema_json"]))
        )
