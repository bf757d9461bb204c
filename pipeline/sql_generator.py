"""
SQL Generator Module

Generates SQL queries from natural language questions using the LLM and
decodes the reply into a validated QueryResult.
"""

import re
import json
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from config import CHART_TYPES
from exceptions import ValidationError, ParseError, SchemaViolationError
from pipeline.prompt_builder import ChartDirective, GenerationRequest, build_prompt
from pipeline.schema_processor import TableSchema
from security import UnsafeOperationDetector
from utils.openai_client import get_client


logger = logging.getLogger(__name__)


@dataclass
class QueryResult:
    """Structured reply of the LLM."""
    sql: str
    is_unsafe: bool
    explanation: str
    chart_directive: Optional[ChartDirective] = None

    def to_dict(self) -> Dict:
        data = {
            "sql": self.sql,
            "isUnsafe": self.is_unsafe,
            "explanation": self.explanation,
        }
        if self.chart_directive is not None:
            data["chartConfig"] = self.chart_directive.to_dict()
        return data


class QueryGenerator:
    """
    Owns one LLM round trip: prompt, call, decode, validate.

    The model's own isUnsafe flag is never trusted alone; it is OR-ed with
    a static keyword check over the returned SQL.
    """

    def __init__(self, client=None):
        self._client = client
        self.detector = UnsafeOperationDetector()

    @property
    def client(self):
        if self._client is None:
            self._client = get_client()
        return self._client

    def generate(self, request: GenerationRequest) -> QueryResult:
        """
        Generate a query for a request.

        Args:
            request: GenerationRequest for this attempt

        Returns:
            Validated QueryResult

        Raises:
            ValidationError: Empty schema or blank question (no LLM call made)
            ProviderError: The LLM call failed
            ParseError: The reply is not JSON
            SchemaViolationError: The JSON is not a valid query result
        """
        validate_request(request.schema, request.question)

        prompt = build_prompt(request)
        logger.info(
            "Generating SQL (%s) for question: %s",
            "regeneration" if request.prior_error else "initial",
            request.question[:100]
        )
        logger.debug("Prompt:\n%s", prompt)

        response = self.client.generate_text(prompt)

        result = parse_query_result(response)

        is_unsafe, matched = self.detector.detect(result.sql)
        if is_unsafe and not result.is_unsafe:
            logger.warning(
                "Model marked query as safe but it contains %s; marking unsafe",
                ", ".join(matched)
            )
        result.is_unsafe = result.is_unsafe or is_unsafe

        logger.debug("Generated SQL: %s", result.sql)
        return result

    def generate_query(
        self,
        schema: List[TableSchema],
        question: str,
        prior_error: Optional[str] = None,
        reference_text: Optional[str] = None,
        chart_directive: Optional[ChartDirective] = None,
        prior_sql: Optional[str] = None,
        dialect: str = "MySQL"
    ) -> QueryResult:
        """Keyword-argument form of generate()."""
        return self.generate(GenerationRequest(
            schema=schema,
            question=question,
            prior_error=prior_error,
            reference_text=reference_text,
            chart_directive=chart_directive,
            prior_sql=prior_sql,
            dialect=dialect,
        ))


def validate_request(schema, question) -> None:
    if not schema:
        raise ValidationError("Database schema is required")
    if not question or not str(question).strip():
        raise ValidationError("Question is required")


def strip_line_comments(text: str) -> str:
    """Remove // comments that sit outside JSON string literals."""
    output = []
    in_string = False
    escaped = False
    i = 0
    while i < len(text):
        char = text[i]
        if in_string:
            output.append(char)
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
        elif char == '"':
            in_string = True
            output.append(char)
        elif text.startswith("//", i):
            newline = text.find("\n", i)
            if newline == -1:
                break
            i = newline
            continue
        else:
            output.append(char)
        i += 1
    return "".join(output)


def clean_response(response: str) -> str:
    """
    Strip markdown code fences and // comments from an LLM reply.

    Handles various formats like:
    - Raw JSON
    - JSON in ```json code blocks
    - JSON with inline // comments
    """
    text = (response or "").strip()

    code_block_pattern = r'```(?:json)?\s*(.*?)```'
    matches = re.findall(code_block_pattern, text, re.DOTALL | re.IGNORECASE)
    if matches:
        text = matches[0]
    else:
        text = re.sub(r'^```(?:json)?\s*', '', text, flags=re.IGNORECASE)
        text = re.sub(r'\s*```$', '', text)

    return strip_line_comments(text).strip()


def parse_query_result(response: str) -> QueryResult:
    """
    Decode and validate an LLM reply.

    Raises:
        ParseError: If the cleaned reply is not JSON
        SchemaViolationError: If required fields are missing or mistyped,
            or chartConfig.type is not a recognised chart kind
    """
    cleaned = clean_response(response)
    try:
        payload = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise ParseError(f"LLM reply is not valid JSON: {e}") from e

    if not isinstance(payload, dict):
        raise SchemaViolationError("LLM reply must be a JSON object")

    sql = payload.get("sql")
    if not isinstance(sql, str) or not sql.strip():
        raise SchemaViolationError("LLM reply is missing a non-empty 'sql' string")

    is_unsafe = payload.get("isUnsafe")
    if not isinstance(is_unsafe, bool):
        raise SchemaViolationError("LLM reply is missing a boolean 'isUnsafe'")

    explanation = payload.get("explanation")
    if not isinstance(explanation, str) or not explanation.strip():
        raise SchemaViolationError("LLM reply is missing a non-empty 'explanation' string")

    chart = payload.get("chartConfig", payload.get("chartDirective"))

    return QueryResult(
        sql=sql.strip(),
        is_unsafe=is_unsafe,
        explanation=explanation.strip(),
        chart_directive=parse_chart_directive(chart) if chart is not None else None,
    )


def parse_chart_directive(data) -> ChartDirective:
    """
    Decode a chartConfig object from an LLM reply.

    Raises:
        SchemaViolationError: On unknown kinds or mistyped column fields
    """
    if not isinstance(data, dict):
        raise SchemaViolationError("chartConfig must be a JSON object")

    kind = data.get("type")
    if kind not in CHART_TYPES:
        raise SchemaViolationError(f"Invalid chart type: {kind}")

    columns = {}
    for key in ("labelColumn", "valueColumn", "categoryColumn", "timeColumn"):
        value = data.get(key)
        if value is not None and not isinstance(value, str):
            raise SchemaViolationError(f"chartConfig.{key} must be a string")
        columns[key] = value

    series = data.get("seriesColumns")
    if series is not None:
        if not isinstance(series, list) or not all(isinstance(s, str) for s in series):
            raise SchemaViolationError("chartConfig.seriesColumns must be a list of strings")

    return ChartDirective(
        kind=kind,
        label_column=columns["labelColumn"],
        value_column=columns["valueColumn"],
        category_column=columns["categoryColumn"],
        series_columns=series,
        time_column=columns["timeColumn"],
    )
