"""
Database Backends

One implementation per SQL dialect behind a common capability:

    ping, list_tables, describe_columns, sample_row, execute, close

The backend is chosen once, from DatabaseConfig.db_type, when it is
created. Callers never inspect which driver sits underneath.
"""

import hashlib
import logging
from typing import Dict, List, Optional, Tuple
from urllib.parse import urlsplit, unquote

import mysql.connector
from mysql.connector import errorcode

from config import CONNECT_TIMEOUT_SECONDS, QUERY_TIMEOUT_SECONDS, DB_POOL_SIZE
from database.connection import DatabaseConfig
from exceptions import ConnectivityError, ValidationError


logger = logging.getLogger(__name__)


class DatabaseBackend:
    """
    Base class for a dialect-specific database handle.

    A backend owns at most one connection, opened lazily and released by
    close(). Use it as a context manager so the connection is returned on
    every exit path.
    """

    dialect = "SQL"

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self._connection = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    @property
    def driver_errors(self) -> Tuple[type, ...]:
        """Exception types raised by the driver for rejected statements."""
        raise NotImplementedError

    @property
    def connection(self):
        if self._connection is None:
            try:
                self._connection = self._connect()
            except self.driver_errors as e:
                raise self._connectivity_error(e) from e
        return self._connection

    def ping(self) -> None:
        """
        Run a trivial query to prove the database is reachable.

        Raises:
            ConnectivityError: If the connection or the probe fails
        """
        try:
            self._fetch_all("SELECT 1")
        except ConnectivityError:
            raise
        except self.driver_errors as e:
            self.close()
            raise self._connectivity_error(e) from e

    def list_tables(self) -> List[str]:
        raise NotImplementedError

    def describe_columns(self, table: str) -> List[Dict]:
        raise NotImplementedError

    def sample_row(self, table: str) -> Optional[Dict]:
        raise NotImplementedError

    def execute(self, sql: str) -> List[Dict]:
        """
        Run one statement and return its rows as dicts.

        Statements without a result set are committed and return [].
        Driver errors propagate unchanged.
        """
        return self._fetch_all(sql, commit=True)

    def close(self) -> None:
        if self._connection is not None:
            connection, self._connection = self._connection, None
            try:
                connection.close()
            except self.driver_errors as e:
                logger.warning("Error closing %s connection: %s", self.dialect, e)

    def _connect(self):
        raise NotImplementedError

    def _fetch_all(self, sql: str, params=None, commit: bool = False) -> List[Dict]:
        raise NotImplementedError

    def _connectivity_error(self, error: Exception) -> ConnectivityError:
        return ConnectivityError(f"Failed to connect to database: {error}")


def pool_name_for(kwargs: Dict) -> str:
    """Pool name derived from every connection argument, password included."""
    key = "\0".join(f"{name}={kwargs[name]}" for name in sorted(kwargs))
    # mysql.connector limits pool names to 64 characters
    return "nl2sql_" + hashlib.sha256(key.encode("utf-8")).hexdigest()[:32]


class MySQLBackend(DatabaseBackend):
    """MySQL via mysql-connector-python; the demo database uses its built-in pool."""

    dialect = "MySQL"

    @property
    def driver_errors(self) -> Tuple[type, ...]:
        return (mysql.connector.Error,)

    def connection_kwargs(self) -> Dict:
        config = self.config
        if config.is_connection_string:
            parts = urlsplit(config.url)
            kwargs = {
                "host": parts.hostname or "localhost",
                "port": parts.port or 3306,
                "user": unquote(parts.username or ""),
                "password": unquote(parts.password or ""),
                "database": config.database_name,
            }
        else:
            kwargs = {
                "host": config.host,
                "port": config.port or 3306,
                "user": config.user,
                "password": config.password,
                "database": config.database,
            }

        if config.pooled:
            # connect() hands out any connection of a named pool without
            # re-checking credentials, so the name covers all of them
            kwargs.update(
                pool_name=pool_name_for(kwargs),
                pool_size=DB_POOL_SIZE,
            )
        kwargs.update(
            connection_timeout=CONNECT_TIMEOUT_SECONDS,
            charset="utf8mb4",
            use_pure=True,
        )
        return kwargs

    def _connect(self):
        connection = mysql.connector.connect(**self.connection_kwargs())
        cursor = connection.cursor()
        try:
            cursor.execute(
                "SET SESSION max_execution_time = %s",
                (QUERY_TIMEOUT_SECONDS * 1000,)
            )
        except mysql.connector.Error as e:
            # MariaDB and old servers lack max_execution_time
            logger.warning("Statement timeout not applied: %s", e)
        finally:
            cursor.close()
        return connection

    def _fetch_all(self, sql: str, params=None, commit: bool = False) -> List[Dict]:
        cursor = self.connection.cursor(dictionary=True)
        try:
            cursor.execute(sql, params)
            if cursor.with_rows:
                return cursor.fetchall()
            if commit:
                self.connection.commit()
            return []
        finally:
            cursor.close()

    def list_tables(self) -> List[str]:
        rows = self._fetch_all(
            "SELECT TABLE_NAME AS name FROM information_schema.TABLES "
            "WHERE TABLE_SCHEMA = %s ORDER BY TABLE_NAME",
            (self.config.database_name,)
        )
        return [row["name"] for row in rows]

    def describe_columns(self, table: str) -> List[Dict]:
        return self._fetch_all(
            """SELECT
                COLUMN_NAME AS name,
                COLUMN_TYPE AS type,
                IS_NULLABLE AS nullable,
                COLUMN_KEY AS `key`,
                COLUMN_DEFAULT AS `default`,
                EXTRA AS extra
            FROM information_schema.COLUMNS
            WHERE TABLE_SCHEMA = %s AND TABLE_NAME = %s
            ORDER BY ORDINAL_POSITION""",
            (self.config.database_name, table)
        )

    def sample_row(self, table: str) -> Optional[Dict]:
        quoted = "`" + table.replace("`", "``") + "`"
        rows = self._fetch_all(f"SELECT * FROM {quoted} LIMIT 1")
        return rows[0] if rows else None

    def _connectivity_error(self, error: Exception) -> ConnectivityError:
        errno = getattr(error, "errno", None)
        if errno == errorcode.ER_ACCESS_DENIED_ERROR:
            return ConnectivityError(
                "Access denied. Check username and password.", status_code=401
            )
        if errno == errorcode.ER_BAD_DB_ERROR:
            return ConnectivityError(
                "Database not found. Check database name.", status_code=404
            )
        if errno in (errorcode.CR_CONN_HOST_ERROR, errorcode.CR_CONNECTION_ERROR,
                     errorcode.CR_SERVER_LOST, errorcode.CR_UNKNOWN_HOST):
            return ConnectivityError(
                "Database connection timed out. Check accessibility and credentials.",
                status_code=504
            )
        return super()._connectivity_error(error)


class SQLServerBackend(DatabaseBackend):
    """Microsoft SQL Server via pyodbc (ODBC Driver 18)."""

    dialect = "SQL Server"

    @property
    def driver_errors(self) -> Tuple[type, ...]:
        import pyodbc
        return (pyodbc.Error,)

    def connection_string(self) -> str:
        config = self.config
        if config.is_connection_string:
            return config.url
        return (
            "DRIVER={ODBC Driver 18 for SQL Server};"
            f"SERVER={config.host},{config.port or 1433};"
            f"DATABASE={config.database};"
            f"UID={config.user};"
            f"PWD={{{config.password.replace('}', '}}')}}};"
            "TrustServerCertificate=yes;"
        )

    def _connect(self):
        import pyodbc
        connection = pyodbc.connect(self.connection_string(), timeout=CONNECT_TIMEOUT_SECONDS)
        connection.timeout = QUERY_TIMEOUT_SECONDS
        return connection

    def _fetch_all(self, sql: str, params=None, commit: bool = False) -> List[Dict]:
        cursor = self.connection.cursor()
        try:
            if params:
                cursor.execute(sql, *params)
            else:
                cursor.execute(sql)
            if cursor.description is None:
                if commit:
                    self.connection.commit()
                return []
            columns = [column[0] for column in cursor.description]
            return [dict(zip(columns, row)) for row in cursor.fetchall()]
        finally:
            cursor.close()

    def list_tables(self) -> List[str]:
        rows = self._fetch_all(
            "SELECT SCHEMA_NAME(schema_id) + '.' + name AS name "
            "FROM sys.tables ORDER BY schema_id, name"
        )
        return [row["name"] for row in rows]

    def describe_columns(self, table: str) -> List[Dict]:
        rows = self._fetch_all(
            """SELECT
                c.name AS name,
                t.name AS type,
                c.is_nullable AS nullable,
                CASE WHEN pk.column_id IS NOT NULL THEN 'PRI' ELSE '' END AS [key],
                dc.definition AS [default],
                CASE WHEN c.is_identity = 1 THEN 'identity' ELSE '' END AS extra
            FROM sys.columns c
            INNER JOIN sys.types t ON c.user_type_id = t.user_type_id
            LEFT JOIN sys.default_constraints dc ON dc.object_id = c.default_object_id
            LEFT JOIN (
                SELECT ic.object_id, ic.column_id
                FROM sys.index_columns ic
                INNER JOIN sys.indexes i
                    ON i.object_id = ic.object_id AND i.index_id = ic.index_id
                WHERE i.is_primary_key = 1
            ) pk ON pk.object_id = c.object_id AND pk.column_id = c.column_id
            WHERE c.object_id = OBJECT_ID(?, 'U')
            ORDER BY c.column_id""",
            (table,)
        )
        return rows

    def sample_row(self, table: str) -> Optional[Dict]:
        quoted = ".".join(
            "[" + part.replace("]", "]]") + "]" for part in table.split(".", 1)
        )
        rows = self._fetch_all(f"SELECT TOP 1 * FROM {quoted}")
        return rows[0] if rows else None

    def _connectivity_error(self, error: Exception) -> ConnectivityError:
        sqlstate = error.args[0] if getattr(error, "args", None) else ""
        if sqlstate == "28000":
            return ConnectivityError(
                "Access denied. Check username and password.", status_code=401
            )
        if sqlstate in ("HYT00", "HYT01", "08001"):
            return ConnectivityError(
                "Database connection timed out. Check accessibility and credentials.",
                status_code=504
            )
        if "Cannot open database" in str(error):
            return ConnectivityError(
                "Database not found. Check database name.", status_code=404
            )
        return super()._connectivity_error(error)


BACKENDS = {
    "mysql": MySQLBackend,
    "mssql": SQLServerBackend,
}


def dialect_for(db_type: str) -> str:
    """Human-readable SQL dialect name used in prompts."""
    backend_class = BACKENDS.get(db_type)
    return backend_class.dialect if backend_class else DatabaseBackend.dialect


def create_backend(config: DatabaseConfig) -> DatabaseBackend:
    """
    Create the backend for config.db_type.

    Raises:
        ValidationError: If the dialect is not supported
    """
    try:
        backend_class = BACKENDS[config.db_type]
    except KeyError:
        raise ValidationError(f"Unsupported database type: {config.db_type}")
    return backend_class(config)
