"""
Prompt Builder Module

Renders a database schema and a user question into the single prompt sent
to the LLM. Optional parts are only emitted when present:
- reference document text
- chart instructions and an example chart payload
- the error (and SQL) of a failed previous attempt, with a corrective hint

The prompt always ends with the strict JSON output contract.
"""

import json
import datetime
import decimal
from dataclasses import dataclass, field
from typing import Dict, List, NamedTuple, Optional, Sequence

import sqlparse

from config import (
    CHART_TYPES,
    QUERY_GENERATION_PROMPT,
    REFERENCE_SECTION,
    CORRECTION_SECTION,
    FAILED_SQL_SECTION,
    OUTPUT_FORMAT,
    MAX_REFERENCE_CHARS,
)
from exceptions import ValidationError
from pipeline.schema_processor import TableSchema


@dataclass
class ChartDirective:
    """Which result columns play which visual role in a chart."""
    kind: str
    label_column: Optional[str] = None
    value_column: Optional[str] = None
    category_column: Optional[str] = None
    series_columns: Optional[List[str]] = None
    time_column: Optional[str] = None

    def to_dict(self) -> Dict:
        data = {"type": self.kind}
        optional = {
            "labelColumn": self.label_column,
            "valueColumn": self.value_column,
            "categoryColumn": self.category_column,
            "seriesColumns": self.series_columns,
            "timeColumn": self.time_column,
        }
        data.update({key: value for key, value in optional.items() if value is not None})
        return data


@dataclass
class GenerationRequest:
    """Everything needed to build one prompt. Rebuilt for every attempt."""
    schema: List[TableSchema]
    question: str
    prior_error: Optional[str] = None
    reference_text: Optional[str] = None
    chart_directive: Optional[ChartDirective] = None
    prior_sql: Optional[str] = None
    dialect: str = "MySQL"


def parse_chart_type(chart_type: Optional[str]) -> Optional[ChartDirective]:
    """
    Turn a requested chart type into a ChartDirective.

    Raises:
        ValidationError: If the chart type is not recognised
    """
    if chart_type is None or chart_type == "":
        return None
    if chart_type not in CHART_TYPES:
        raise ValidationError(f"Chart type {chart_type} is not supported")
    return ChartDirective(kind=chart_type)


# Example chartConfig payloads, one per chart kind
CHART_EXAMPLES = {
    "pie": {"type": "pie", "labelColumn": "category_name", "valueColumn": "total_count"},
    "line": {"type": "line", "timeColumn": "date", "seriesColumns": ["sales", "profit"]},
    "bar": {"type": "bar", "categoryColumn": "product_category", "seriesColumns": ["revenue", "cost"]},
    "doughnut": {"type": "doughnut", "labelColumn": "category_name", "valueColumn": "total_count"},
    "polarArea": {"type": "polarArea", "labelColumn": "category_name", "valueColumn": "total_count"},
    "radar": {"type": "radar", "seriesColumns": ["metric1", "metric2", "metric3"]},
    "scatter": {"type": "scatter", "seriesColumns": ["x_value", "y_value"]},
    "bubble": {"type": "bubble", "seriesColumns": ["x_value", "y_value", "radius"]},
    "mixed": {"type": "mixed", "seriesColumns": ["bar_data", "line_data", "area_data"]},
    "any": {
        "type": "any",
        "categoryColumn": "category_name",
        "labelColumn": "label",
        "valueColumn": "value",
        "seriesColumns": ["series1", "series2"],
        "timeColumn": "timestamp",
    },
}

ANY_CHART_CONTEXT = (
    "The results should be visualized as a chart. Choose an appropriate chart type "
    "(pie, line, bar, doughnut, polarArea, radar, scatter, bubble or mixed) based on "
    "the query results, put it in chartConfig.type, and return only the column roles "
    "that apply: labelColumn+valueColumn for pie/doughnut/polarArea, "
    "categoryColumn+seriesColumns for bar, timeColumn+seriesColumns for line."
)


def get_chart_details(chart_directive: Optional[ChartDirective]):
    """
    Pick the example payload and the one-line instruction for a chart kind.

    Returns:
        Tuple of (example JSON text or None, context sentence)
    """
    if chart_directive is None:
        return None, "The results will not be visualized."

    kind = chart_directive.kind
    example = json.dumps(CHART_EXAMPLES[kind], indent=2)
    if kind == "any":
        return example, ANY_CHART_CONTEXT
    return example, (
        f"The results should be visualized as a {kind} chart. "
        "Make sure the SQL query returns data in a format suitable for this chart type."
    )


class ErrorCategory(NamedTuple):
    key: str
    label: str
    patterns: Sequence[str]
    instruction: str


# Checked in order; the first category with a matching substring wins.
ERROR_CATEGORIES = (
    ErrorCategory(
        "syntax", "SQL syntax error",
        ("syntax error", "error in your sql syntax", "incorrect syntax"),
        "Rewrite the query with valid syntax for the target database: check keywords, "
        "commas, parentheses, quoting and clause order.",
    ),
    ErrorCategory(
        "ambiguous_column", "Ambiguous column",
        ("ambiguous",),
        "A column name exists in more than one joined table. Qualify every column "
        "with its table name or alias.",
    ),
    ErrorCategory(
        "invalid_column", "Invalid column",
        ("unknown column", "invalid column"),
        "The query references a column that does not exist. Use only column names "
        "listed in the schema above, on the table they belong to.",
    ),
    ErrorCategory(
        "table_not_found", "Table not found",
        ("invalid object name", "no such table", "unknown table", "table not found",
         "doesn't exist"),
        "The query references a table that does not exist. Use only table names "
        "listed in the schema above, spelled exactly as shown.",
    ),
    ErrorCategory(
        "group_by", "GROUP BY misuse",
        ("group by", "only_full_group_by", "not in aggregate",
         "not contained in either an aggregate function"),
        "Every non-aggregated column in SELECT must appear in GROUP BY, or be "
        "wrapped in an aggregate function.",
    ),
    ErrorCategory(
        "argument_count", "Wrong argument count",
        ("incorrect parameter count", "wrong number of arguments", "argument(s)"),
        "A function was called with the wrong number of arguments. Check the "
        "signature of each function for the target database.",
    ),
    ErrorCategory(
        "does_not_exist", "Object does not exist",
        ("does not exist",),
        "The query uses a function, table or column that does not exist in this "
        "database. Replace it with one that does.",
    ),
)

GENERIC_ERROR_CATEGORY = ErrorCategory(
    "generic", "Unrecognised error",
    (),
    "Analyze this error message carefully, find the part of the query that caused it, "
    "and fix it.",
)


def classify_error(error_message: str) -> ErrorCategory:
    """
    Classify a database error message by substring match.

    Best-effort: the first category in ERROR_CATEGORIES with any matching
    substring wins; messages that match nothing get the generic category.
    """
    message = (error_message or "").lower()
    for category in ERROR_CATEGORIES:
        if any(pattern in message for pattern in category.patterns):
            return category
    return GENERIC_ERROR_CATEGORY


def format_sample_value(value) -> str:
    """NULL for None, JSON for everything else."""
    if value is None:
        return "NULL"
    if isinstance(value, decimal.Decimal):
        return str(value)
    if isinstance(value, (datetime.date, datetime.time)):
        return json.dumps(value.isoformat())
    return json.dumps(value, default=str)


def format_column(column) -> str:
    key_info = " PRIMARY KEY" if column.is_primary_key else ""
    return f"{column.name} ({column.declared_type}){key_info}"


def format_table_schema(table: TableSchema) -> str:
    """
    Render one table for the prompt.

    Example:
        Table orders: id (INT) PRIMARY KEY, total (DECIMAL)
        Sample Data: { id: 1, total: 9.99 }
    """
    columns = ", ".join(format_column(column) for column in table.columns)
    text = f"Table {table.table_name}: {columns}"

    if table.sample_row:
        sample = ", ".join(
            f"{key}: {format_sample_value(value)}"
            for key, value in table.sample_row.items()
        )
        text += f"\nSample Data: {{ {sample} }}"

    return text


def format_schema(schema: List[TableSchema]) -> str:
    return "\n".join(format_table_schema(table) for table in schema)


def format_sql(sql: str) -> str:
    """
    Format SQL for readability inside the prompt.

    Only whitespace and keyword case change; identifiers are left alone.
    """
    return sqlparse.format(sql, reindent=True, keyword_case='upper').strip()


def build_output_contract(chart_directive: Optional[ChartDirective]) -> str:
    """The FORMAT/RULES block the reply parser relies on."""
    example, chart_context = get_chart_details(chart_directive)

    if example is None:
        format_text = (
            '{\n'
            '  "sql": "query",\n'
            '  "isUnsafe": false,\n'
            '  "explanation": "brief"\n'
            '}'
        )
        chart_rule = ""
    else:
        chart_example = example.replace("\n", "\n  ")
        format_text = (
            '{\n'
            '  "sql": "query",\n'
            '  "isUnsafe": false,\n'
            '  "explanation": "brief",\n'
            f'  "chartConfig": {chart_example}\n'
            '}'
        )
        chart_rule = (
            "\n6. Query results must be suitable for the requested chart type. "
            + chart_context
        )

    return OUTPUT_FORMAT.format(format=format_text, chart_rule=chart_rule)


def build_correction_section(prior_error: Optional[str], prior_sql: Optional[str] = None) -> str:
    if not prior_error:
        return ""
    category = classify_error(prior_error)
    failed_sql = FAILED_SQL_SECTION.format(sql=format_sql(prior_sql)) if prior_sql else ""
    return CORRECTION_SECTION.format(
        error=prior_error,
        failed_sql=failed_sql,
        category=category.label,
        instruction=category.instruction,
    )


def build_reference_section(reference_text: Optional[str]) -> str:
    if not reference_text or not reference_text.strip():
        return ""
    return REFERENCE_SECTION.format(reference_text=reference_text[:MAX_REFERENCE_CHARS])


def build_prompt(request: GenerationRequest) -> str:
    """
    Build the full prompt for one generation attempt.

    Args:
        request: Schema, question and optional extras

    Returns:
        Prompt text
    """
    _, chart_context = get_chart_details(request.chart_directive)

    return QUERY_GENERATION_PROMPT.format(
        dialect=request.dialect,
        schema=format_schema(request.schema),
        reference=build_reference_section(request.reference_text),
        question=request.question.strip(),
        chart_context=chart_context,
        correction=build_correction_section(request.prior_error, request.prior_sql),
        rules=build_output_contract(request.chart_directive),
    )
