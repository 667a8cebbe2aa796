import json
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from sqlmate.errors import ValidationError


@dataclass(frozen=True)
class Dataset:
    """Metadata for one uploaded CSV stored as a table."""

    id: str
    display_name: str
    storage_table_name: str
    pii_action: str = "none"
    pii_columns: List[str] = field(default_factory=list)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Dataset":
        """Build a dataset from a row of the datasets metadata table."""
        pii_columns = row.get("pii_columns")
        return cls(
            id=row["id"],
            display_name=row["name"],
            storage_table_name=row["table_name"],
            pii_action=row.get("pii_action") or "none",
            pii_columns=json.loads(pii_columns) if pii_columns else [],
        )


@dataclass(frozen=True)
class DatasetGroup:
    """Datasets uploaded together so they can be joined."""

    id: str
    name: str
    dataset_ids: List[str] = field(default_factory=list)


@dataclass
class ForeignKey:
    column: str
    references_table: str
    references_column: str


@dataclass
class SchemaColumn:
    name: str
    type: str
    nullable: bool = True


@dataclass
class SchemaTable:
    name: str
    columns: List[SchemaColumn]
    primary_key: List[str] = field(default_factory=list)
    foreign_keys: List[ForeignKey] = field(default_factory=list)


def is_foreign_key(raw: Any) -> bool:
    """True for {"column": str, "references": {"table": str, "column": str}}."""
    if not isinstance(raw, Mapping):
        return False
    references = raw.get("references")
    return (
        isinstance(raw.get("column"), str)
        and isinstance(references, Mapping)
        and isinstance(references.get("table"), str)
        and isinstance(references.get("column"), str)
    )


@dataclass
class SchemaData:
    """A declared schema used to build prompts; never executed against."""

    tables: List[SchemaTable]

    @classmethod
    def from_dict(cls, data: Any) -> "SchemaData":
        """Parse and validate the uploaded schema JSON structure."""
        if not isinstance(data, Mapping) or not isinstance(data.get("tables"), list):
            raise ValidationError('Schema JSON must contain a "tables" list.')
        tables = []
        for raw_table in data["tables"]:
            if not isinstance(raw_table, Mapping):
                raise ValidationError("Each table must be a JSON object.")
            name = raw_table.get("name")
            raw_columns = raw_table.get("columns")
            if not name or not isinstance(raw_columns, list):
                raise ValidationError(f'Table "{name}" is malformed: it needs a name and a columns list.')
            if not all(isinstance(column, Mapping) and column.get("name") for column in raw_columns):
                raise ValidationError(f'Every column of table "{name}" needs a name.')
            columns = [
                SchemaColumn(
                    name=column["name"],
                    type=column.get("type", "TEXT"),
                    nullable=column.get("nullable", True) is not False,
                )
                for column in raw_columns
            ]
            raw_primary_key = raw_table.get("primaryKey") or []
            if not isinstance(raw_primary_key, list) or not all(isinstance(key, str) for key in raw_primary_key):
                raise ValidationError(f'The primaryKey of table "{name}" must be a list of column names.')
            raw_foreign_keys = raw_table.get("foreignKeys") or []
            if not isinstance(raw_foreign_keys, list) or not all(is_foreign_key(fk) for fk in raw_foreign_keys):
                raise ValidationError(
                    f'Every foreign key of table "{name}" needs a column and references {{table, column}}.'
                )
            foreign_keys = [
                ForeignKey(
                    column=fk["column"],
                    references_table=fk["references"]["table"],
                    references_column=fk["references"]["column"],
                )
                for fk in raw_foreign_keys
            ]
            tables.append(
                SchemaTable(
                    name=name,
                    columns=columns,
                    primary_key=list(raw_primary_key),
                    foreign_keys=foreign_keys,
                )
            )
        return cls(tables=tables)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize back to the uploaded JSON shape."""
        tables = []
        for table in self.tables:
            entry: Dict[str, Any] = {
                "name": table.name,
                "columns": [asdict(column) for column in table.columns],
            }
            if table.primary_key:
                entry["primaryKey"] = table.primary_key
            if table.foreign_keys:
                entry["foreignKeys"] = [
                    {
                        "column": fk.column,
                        "references": {"table": fk.references_table, "column": fk.references_column},
                    }
                    for fk in table.foreign_keys
                ]
            tables.append(entry)
        return {"tables": tables}


@dataclass(frozen=True)
class SchemaRecord:
    id: str
    name: str
    schema: SchemaData
    prompt: Optional[str] = None
