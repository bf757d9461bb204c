"""
Error Taxonomy

Every failure the assistant can report to a caller. Each error carries the
original message text verbatim, a short machine-readable code, and the HTTP
status the web layer answers with.
"""

from typing import Optional


class NL2SQLError(Exception):
    """Base class for all assistant errors."""

    code = "error"
    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        return {"error": self.message, "errorType": self.code}


class ValidationError(NL2SQLError):
    """Bad caller input: missing schema or question, unknown chart type."""

    code = "validation"
    status_code = 400


class ProviderError(NL2SQLError):
    """The LLM call itself failed."""

    code = "provider"
    status_code = 502


class ParseError(NL2SQLError):
    """The LLM reply was not valid JSON."""

    code = "parse"
    status_code = 502


class SchemaViolationError(NL2SQLError):
    """The LLM reply was JSON but not a well-formed query result."""

    code = "schema_violation"
    status_code = 502


class UnsafeOperationError(NL2SQLError):
    """A data-modifying query was refused by policy."""

    code = "unsafe"
    status_code = 403


class ExecutionError(NL2SQLError):
    """The database rejected the SQL. The message is the driver's text."""

    code = "execution"
    status_code = 500


class ConnectivityError(NL2SQLError):
    """The database could not be reached at all."""

    code = "connectivity"
    status_code = 503


class IntrospectionError(NL2SQLError):
    """The database was reachable but its catalog could not be read."""

    code = "introspection"
    status_code = 500


class DocumentError(NL2SQLError):
    """A reference document could not be read."""

    code = "document"
    status_code = 400
