"""
NL2SQL Core Pipeline

Generate -> check -> execute, and on an execution error regenerate once
with the error attached, check again and execute again. There is never a
third attempt. Used by every HTTP endpoint that runs SQL so the protocol
is identical everywhere.
"""

import logging
from dataclasses import dataclass, replace
from typing import List, Optional

from config import ALLOW_UNSAFE_QUERIES, MAX_REGENERATION_ATTEMPTS
from exceptions import NL2SQLError, ExecutionError
from pipeline.executor import ExecutionSuccess, run_query
from pipeline.prompt_builder import ChartDirective, GenerationRequest
from pipeline.schema_processor import describe_schema
from pipeline.sql_generator import QueryGenerator, QueryResult
from security import SafetyGate, contains_unsafe_operation


logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    """Terminal outcome of one orchestrated request."""
    success: bool
    rows: list = None
    sql: str = ""
    explanation: str = ""
    chart_directive: Optional[ChartDirective] = None
    regenerated_query: Optional[QueryResult] = None
    original_error: str = ""
    error: str = ""
    error_type: str = ""
    status_code: int = 200
    attempts: int = 0

    def __post_init__(self):
        if self.rows is None:
            self.rows = []

    def to_dict(self) -> dict:
        if self.success:
            data = {
                "success": True,
                "results": self.rows,
                "sql": self.sql,
                "explanation": self.explanation,
            }
            if self.chart_directive is not None:
                data["chartConfig"] = self.chart_directive.to_dict()
        else:
            data = {
                "success": False,
                "error": self.error,
                "errorType": self.error_type,
            }
        if self.regenerated_query is not None:
            data["regeneratedQuery"] = {
                "sql": self.regenerated_query.sql,
                "explanation": self.regenerated_query.explanation,
            }
        if self.original_error:
            data["originalError"] = self.original_error
        return data


class RegenerationPipeline:
    """
    Coordinates generation, the safety gate and execution.

    Holds no per-request state; one instance can serve concurrent requests.
    """

    def __init__(
        self,
        generator: QueryGenerator = None,
        allow_unsafe: bool = ALLOW_UNSAFE_QUERIES,
        safety_gate: SafetyGate = None
    ):
        self.generator = generator or QueryGenerator()
        self.safety_gate = safety_gate or SafetyGate(allow_unsafe=allow_unsafe)

    def generate(self, request: GenerationRequest) -> QueryResult:
        """Single generation attempt, no execution."""
        return self.generator.generate(request)

    def run(self, backend, request: GenerationRequest) -> PipelineResult:
        """
        Run the full protocol for a question.

        Args:
            backend: DatabaseBackend to execute against
            request: Initial GenerationRequest (prior_error unset)

        Returns:
            PipelineResult; failures are reported, not raised
        """
        request = replace(request, prior_error=None, prior_sql=None)
        try:
            query = self.generator.generate(request)
        except NL2SQLError as e:
            logger.warning("Generation failed: %s", e.message)
            return _failure(e, attempts=1)

        return self._execute_with_regeneration(backend, query, request, attempts=1)

    def execute(
        self,
        backend,
        sql: str,
        is_unsafe: bool,
        request: Optional[GenerationRequest] = None
    ) -> PipelineResult:
        """
        Execute a caller-supplied query.

        When request carries the schema and question the query came from,
        an execution error triggers the single regeneration attempt.
        Without it the error is reported as is.
        """
        query = QueryResult(
            sql=sql,
            is_unsafe=bool(is_unsafe) or contains_unsafe_operation(sql),
            explanation="",
            chart_directive=request.chart_directive if request else None,
        )
        return self._execute_with_regeneration(backend, query, request, attempts=0)

    def answer(self, backend, request: GenerationRequest) -> PipelineResult:
        """
        Introspect the schema, then run the protocol.

        The schema in request is replaced with the live one.
        """
        try:
            schema = describe_schema(backend)
        except NL2SQLError as e:
            logger.warning("Schema introspection failed: %s", e.message)
            return _failure(e, attempts=0)

        return self.run(backend, replace(request, schema=schema, dialect=backend.dialect))

    def _execute_with_regeneration(
        self,
        backend,
        query: QueryResult,
        request: Optional[GenerationRequest],
        attempts: int
    ) -> PipelineResult:
        original_error = ""
        regenerations = 0

        while True:
            regenerated = query if regenerations else None
            try:
                self.safety_gate.check(query.is_unsafe, query.sql)
                outcome = run_query(backend, query.sql)
            except NL2SQLError as e:
                # Unsafe or unreachable: never regenerated
                return _failure(
                    e, attempts=attempts,
                    original_error=original_error,
                    regenerated_query=regenerated,
                )

            if isinstance(outcome, ExecutionSuccess):
                logger.info(
                    "Query succeeded after %d attempt(s)%s",
                    attempts, " with regeneration" if regenerated else ""
                )
                return PipelineResult(
                    success=True,
                    rows=outcome.rows,
                    sql=query.sql,
                    explanation=query.explanation,
                    chart_directive=query.chart_directive,
                    regenerated_query=regenerated,
                    original_error=original_error,
                    attempts=attempts,
                )

            error = ExecutionError(outcome.error_message)
            can_regenerate = (
                request is not None
                and bool(request.schema)
                and bool(request.question and request.question.strip())
                and regenerations < MAX_REGENERATION_ATTEMPTS
            )
            if not can_regenerate:
                return _failure(
                    error, attempts=attempts,
                    original_error=original_error,
                    regenerated_query=regenerated,
                )

            logger.warning("Execution failed, regenerating once: %s", error.message)
            original_error = error.message
            regenerations += 1
            attempts += 1
            try:
                query = self.generator.generate(replace(
                    request, prior_error=error.message, prior_sql=query.sql
                ))
            except NL2SQLError as regeneration_error:
                return _failure(
                    regeneration_error, attempts=attempts,
                    original_error=original_error,
                )


def _failure(
    error: NL2SQLError,
    attempts: int,
    original_error: str = "",
    regenerated_query: Optional[QueryResult] = None
) -> PipelineResult:
    return PipelineResult(
        success=False,
        error=error.message,
        error_type=error.code,
        status_code=error.status_code,
        original_error=original_error,
        regenerated_query=regenerated_query,
        attempts=attempts,
    )


# Singleton instance for convenience
_default_pipeline = None


def get_pipeline() -> RegenerationPipeline:
    """Get the pipeline instance."""
    global _default_pipeline
    if _default_pipeline is None:
        _default_pipeline = RegenerationPipeline()
    return _default_pipeline
