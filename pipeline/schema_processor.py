"""
Schema Processor Module

Introspects a live database into structured table descriptions for the
LLM prompt: tables, columns, and one sample row per table.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from exceptions import ConnectivityError, IntrospectionError, ValidationError


logger = logging.getLogger(__name__)

PRIMARY_KEY_ROLES = {"pri", "primary", "primary key"}


@dataclass(frozen=True)
class ColumnDescriptor:
    """Represents one column of a table."""
    name: str
    declared_type: str
    nullable: bool = True
    key_role: Optional[str] = None
    default_value: Optional[str] = None
    extra: Optional[str] = None

    @property
    def is_primary_key(self) -> bool:
        return (self.key_role or "").strip().lower() in PRIMARY_KEY_ROLES

    def to_dict(self) -> Dict:
        return {
            "name": self.name,
            "type": self.declared_type,
            "nullable": "YES" if self.nullable else "NO",
            "key": self.key_role or "",
            "default": self.default_value,
            "extra": self.extra or "",
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "ColumnDescriptor":
        """Build a column from catalog rows or request JSON."""
        if not isinstance(data, dict) or not data.get("name"):
            raise ValidationError("Every column needs a name")
        return cls(
            name=str(data["name"]),
            declared_type=str(data.get("type") or ""),
            nullable=_parse_nullable(data.get("nullable", True)),
            key_role=data.get("key") or None,
            default_value=None if data.get("default") is None else str(data["default"]),
            extra=data.get("extra") or None,
        )


@dataclass
class TableSchema:
    """Represents a database table as the LLM sees it."""
    table_name: str
    columns: List[ColumnDescriptor] = field(default_factory=list)
    sample_row: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict:
        data = {
            "tableName": self.table_name,
            "columns": [column.to_dict() for column in self.columns],
        }
        if self.sample_row is not None:
            data["sampleData"] = self.sample_row
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> "TableSchema":
        if not isinstance(data, dict) or not data.get("tableName"):
            raise ValidationError("Every schema entry needs a tableName")
        columns = data.get("columns") or []
        if not isinstance(columns, list):
            raise ValidationError(f"Columns of {data['tableName']} must be a list")
        sample = data.get("sampleData")
        return cls(
            table_name=str(data["tableName"]),
            columns=[ColumnDescriptor.from_dict(column) for column in columns],
            sample_row=sample if isinstance(sample, dict) and sample else None,
        )


def _parse_nullable(value) -> bool:
    if isinstance(value, str):
        return value.strip().upper() in ("YES", "TRUE", "1")
    return bool(value)


def parse_schema(payload) -> List[TableSchema]:
    """
    Parse a JSON schema list (as returned by describe_schema) back into
    TableSchema objects.

    Args:
        payload: List of {"tableName", "columns", "sampleData"} dicts

    Returns:
        List of TableSchema objects

    Raises:
        ValidationError: If the payload is not a list of tables
    """
    if payload is None:
        return []
    if not isinstance(payload, list):
        raise ValidationError("Schema must be a list of tables")
    return [TableSchema.from_dict(table) for table in payload]


def describe_schema(backend) -> List[TableSchema]:
    """
    Enumerate the tables of a live database.

    A failed sample-row fetch for one table is logged and leaves that
    table's sample_row empty; it never stops the other tables.

    Args:
        backend: DatabaseBackend (or anything with ping, list_tables,
            describe_columns and sample_row)

    Returns:
        List of TableSchema objects, in catalog order

    Raises:
        ConnectivityError: If the database cannot be reached
        IntrospectionError: If table or column metadata cannot be read
    """
    backend.ping()

    try:
        tables = backend.list_tables()
    except ConnectivityError:
        raise
    except Exception as e:
        raise IntrospectionError(f"Could not list tables: {e}") from e

    logger.info("Introspecting %d tables", len(tables))

    schema = []
    for table_name in tables:
        try:
            columns = [
                ColumnDescriptor.from_dict(row)
                for row in backend.describe_columns(table_name)
            ]
        except ConnectivityError:
            raise
        except Exception as e:
            raise IntrospectionError(
                f"Could not read columns of {table_name}: {e}"
            ) from e

        schema.append(TableSchema(
            table_name=table_name,
            columns=columns,
            sample_row=_fetch_sample_row(backend, table_name),
        ))

    return schema


def _fetch_sample_row(backend, table_name: str) -> Optional[Dict[str, Any]]:
    try:
        row = backend.sample_row(table_name)
    except ConnectivityError:
        raise
    except Exception as e:
        logger.warning("Error fetching sample data from %s: %s", table_name, e)
        return None
    if not row:
        return None
    return {
        key: f"<binary {len(value)} bytes>" if isinstance(value, (bytes, bytearray)) else value
        for key, value in dict(row).items()
    }
