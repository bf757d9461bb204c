"""
Database Connection Configuration

Parses and validates the connection settings sent by callers. Two forms
are accepted:
- standard:           host, port, user, password, database
- connection-string:  a single URL (MySQL) or ODBC string (SQL Server)

The dialect is always named explicitly (payload "dbType", else DB_TYPE).
"""

from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlsplit, unquote

from config import (
    DB_TYPE,
    DB_CS,
    DB_HOST,
    DB_PORT,
    DB_USER,
    DB_PASSWORD,
    DB_NAME,
)
from exceptions import ValidationError


SUPPORTED_DB_TYPES = ("mysql", "mssql")

# Aliases seen in older clients
_DB_TYPE_ALIASES = {
    "mysql2": "mysql",
    "sqlserver": "mssql",
}


@dataclass
class DatabaseConfig:
    """Connection settings for one database."""
    type: str
    db_type: str
    host: str = ""
    port: Optional[int] = None
    user: str = ""
    password: str = ""
    database: str = ""
    url: str = ""
    # Only the server-side demo database is pooled; caller-supplied
    # configs get a fresh connection per request
    pooled: bool = False

    @property
    def is_connection_string(self) -> bool:
        return self.type == "connection-string"

    @property
    def database_name(self) -> str:
        """Database name, taken from the URL path for MySQL connection strings."""
        if self.is_connection_string and self.db_type == "mysql":
            return unquote(urlsplit(self.url).path.lstrip("/"))
        return self.database


def normalize_db_type(db_type: Optional[str]) -> str:
    value = (db_type or DB_TYPE or "mysql").strip().lower()
    value = _DB_TYPE_ALIASES.get(value, value)
    if value not in SUPPORTED_DB_TYPES:
        raise ValidationError(f"Unsupported database type: {db_type}")
    return value


def parse_config(payload: dict) -> DatabaseConfig:
    """
    Build a DatabaseConfig from a request payload.

    Args:
        payload: Dict with "type" plus the fields of that form

    Returns:
        Validated DatabaseConfig

    Raises:
        ValidationError: If the payload is missing or incomplete
    """
    if not payload or not isinstance(payload, dict):
        raise ValidationError("Database configuration is required")

    port = payload.get("port")
    try:
        port = int(port) if port not in (None, "") else None
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid database port: {port}")

    config = DatabaseConfig(
        type=payload.get("type", ""),
        db_type=normalize_db_type(payload.get("dbType")),
        host=payload.get("host") or "",
        port=port,
        user=payload.get("user") or "",
        password=payload.get("password") or "",
        database=payload.get("database") or "",
        url=payload.get("url") or "",
    )
    validate_config(config)
    return config


def validate_config(config: DatabaseConfig) -> None:
    """Raise ValidationError unless every field the form needs is present."""
    if config.type == "standard":
        if not config.host or not config.user or not config.password or not config.database:
            raise ValidationError(
                "Missing required DB Config fields: host, user, password, or database."
            )
    elif config.type == "connection-string":
        if not config.url:
            raise ValidationError("Missing required database connection string.")
    else:
        raise ValidationError("Invalid database configuration type.")


def get_dummy_config() -> DatabaseConfig:
    """
    Build the config of the environment-provided demo database.

    Raises:
        ValidationError: If no demo database is configured
    """
    db_type = normalize_db_type(DB_TYPE)
    if DB_CS:
        return DatabaseConfig(
            type="connection-string", db_type=db_type, url=DB_CS, pooled=True
        )
    if DB_PASSWORD:
        default_port = 1433 if db_type == "mssql" else 3306
        return DatabaseConfig(
            type="standard",
            db_type=db_type,
            host=DB_HOST,
            port=int(DB_PORT or default_port),
            user=DB_USER,
            password=DB_PASSWORD,
            database=DB_NAME,
            pooled=True,
        )
    raise ValidationError("DB DUMMY environment variable is not set")


def resolve_config(payload: dict) -> DatabaseConfig:
    """Use the demo database when asked to, otherwise parse payload["config"]."""
    payload = payload or {}
    if payload.get("useDummyDB"):
        return get_dummy_config()
    config = payload.get("config")
    if config is None and "type" in payload:
        # /api/schema posts the config itself as the body
        config = payload
    return parse_config(config)
