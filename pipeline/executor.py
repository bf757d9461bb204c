"""
Query Executor Module

Runs one SQL statement against a database backend. No retries here: a
failed statement is reported, and repairing it is the pipeline's job.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Union

from exceptions import ConnectivityError, ExecutionError


logger = logging.getLogger(__name__)


@dataclass
class ExecutionSuccess:
    rows: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class ExecutionFailure:
    error_message: str


ExecutionOutcome = Union[ExecutionSuccess, ExecutionFailure]


def execute_query(backend, sql: str) -> List[Dict[str, Any]]:
    """
    Execute SQL and return the rows.

    Args:
        backend: DatabaseBackend to run against
        sql: Statement to execute

    Returns:
        List of row dicts

    Raises:
        ExecutionError: The database rejected the statement; the message
            is the driver's own text, unchanged
        ConnectivityError: The database could not be reached
    """
    try:
        rows = backend.execute(sql)
    except ConnectivityError:
        raise
    except backend.driver_errors as e:
        logger.warning("Query execution error: %s", e)
        raise ExecutionError(str(e)) from e

    logger.info("Query executed successfully: %d rows", len(rows))
    return rows


def run_query(backend, sql: str) -> ExecutionOutcome:
    """Execute SQL and report the outcome as a value instead of raising."""
    try:
        return ExecutionSuccess(rows=execute_query(backend, sql))
    except ExecutionError as e:
        return ExecutionFailure(error_message=e.message)
