"""
NL-to-SQL Assistant - Flask Web Application

Turns plain-language questions into SQL for a live MySQL or SQL Server
database, runs the SQL, and repairs it once when the database rejects it.

Safety features:
- Data-modifying queries are refused unless ALLOW_UNSAFE_QUERIES is set
- The model's own safety flag is re-checked against the SQL text
- Regenerated queries pass the same safety gate again
"""

import base64
import datetime
import logging

from flask import Flask, request, jsonify
from flask.json.provider import DefaultJSONProvider
from werkzeug.exceptions import HTTPException

from config import LOG_LEVEL, PORT, ALLOW_UNSAFE_QUERIES, MAX_UPLOAD_BYTES
from database.backends import create_backend, dialect_for
from database.connection import normalize_db_type, resolve_config
from exceptions import NL2SQLError, ValidationError
from pipeline.core import get_pipeline
from pipeline.prompt_builder import GenerationRequest, parse_chart_type
from pipeline.schema_processor import describe_schema, parse_schema
from utils.document_processor import extract_text


logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)


class JSONProvider(DefaultJSONProvider):
    """Serialises the value types database drivers return in rows."""

    @staticmethod
    def default(o):
        if isinstance(o, (bytes, bytearray)):
            return base64.b64encode(bytes(o)).decode("ascii")
        if isinstance(o, datetime.timedelta):
            return str(o)
        if isinstance(o, datetime.time):
            return o.isoformat()
        return DefaultJSONProvider.default(o)


app = Flask(__name__)
app.json = JSONProvider(app)
# Multipart overhead on top of the document itself
app.config["MAX_CONTENT_LENGTH"] = MAX_UPLOAD_BYTES + 64 * 1024


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        raise ValidationError("Invalid JSON payload")
    if not isinstance(data, dict):
        raise ValidationError("JSON payload must be an object")
    return data


def _generation_request(data: dict, dialect: str) -> GenerationRequest:
    return GenerationRequest(
        schema=parse_schema(data.get("schema")),
        question=(data.get("question") or "").strip(),
        prior_error=data.get("error") or None,
        reference_text=data.get("referenceText") or None,
        chart_directive=parse_chart_type(data.get("chartType")),
        dialect=dialect,
    )


@app.errorhandler(NL2SQLError)
def handle_assistant_error(e: NL2SQLError):
    """Expected errors: validation, provider, safety, database."""
    logger.warning("%s error: %s", e.code, e.message)
    return jsonify(e.to_dict()), e.status_code


@app.errorhandler(Exception)
def handle_unexpected_error(e: Exception):
    """Unexpected errors."""
    if isinstance(e, HTTPException):
        return jsonify({"error": e.description}), e.code
    logger.exception("Unexpected error")
    return jsonify({"error": f"An unexpected error occurred: {str(e)}"}), 500


@app.route('/api/schema', methods=['POST'])
def schema():
    """
    Introspect a database.

    Expects JSON body with a database config (or "useDummyDB": true).

    Returns JSON with:
    - schema: list of {tableName, columns, sampleData}
    """
    config = resolve_config(_json_body())
    with create_backend(config) as backend:
        tables = describe_schema(backend)
    return jsonify({"schema": [table.to_dict() for table in tables]})


@app.route('/api/test-dummy-db', methods=['GET'])
def test_dummy_db():
    """Introspect the demo database configured in the environment."""
    config = resolve_config({"useDummyDB": True})
    with create_backend(config) as backend:
        tables = describe_schema(backend)
    return jsonify({"schema": [table.to_dict() for table in tables]})


@app.route('/api/generate-query', methods=['POST'])
def generate_query():
    """
    Generate SQL from a natural language question.

    Expects JSON body with:
    - schema: list of tables as returned by /api/schema
    - question: Natural language question
    - error: Optional error from a previous attempt
    - referenceText: Optional reference document text
    - chartType: Optional chart kind

    Returns JSON with:
    - sql, isUnsafe, explanation, chartConfig (optional)
    - error: Error message if failed
    """
    data = _json_body()
    dialect = dialect_for(normalize_db_type(data.get("dbType")))
    result = get_pipeline().generate(_generation_request(data, dialect))
    logger.debug("Generated result: %s", result.to_dict())
    return jsonify(result.to_dict())


@app.route('/api/execute-query', methods=['POST'])
def execute_query():
    """
    Execute SQL against a database.

    Expects JSON body with:
    - config: database config (or "useDummyDB": true)
    - query: SQL to execute
    - isUnsafe: whether the query modifies data
    - schema, question: Optional; when both are present a failing query
      is regenerated once
    - referenceText, chartType: Optional, used by the regeneration

    Returns JSON with:
    - success, results
    - regeneratedQuery, originalError when the query was regenerated
    - error: Error message if failed
    """
    data = _json_body()
    config = resolve_config(data)

    sql = (data.get("query") or "").strip()
    if not sql:
        raise ValidationError("Query is required")

    context = None
    if data.get("schema") and (data.get("question") or "").strip():
        context = _generation_request(data, dialect_for(config.db_type))

    with create_backend(config) as backend:
        result = get_pipeline().execute(
            backend, sql, bool(data.get("isUnsafe", False)), context
        )

    return jsonify(result.to_dict()), result.status_code


@app.route('/api/ask', methods=['POST'])
def ask():
    """
    Answer a question end to end: introspect, generate, check, execute,
    and regenerate once if the database rejects the query.

    Expects JSON body with:
    - config: database config (or "useDummyDB": true)
    - question: Natural language question
    - referenceText, chartType: Optional
    """
    data = _json_body()
    config = resolve_config(data)

    question = (data.get("question") or "").strip()
    if not question:
        raise ValidationError("Question is required")

    initial = GenerationRequest(
        schema=[],
        question=question,
        reference_text=data.get("referenceText") or None,
        chart_directive=parse_chart_type(data.get("chartType")),
    )

    with create_backend(config) as backend:
        result = get_pipeline().answer(backend, initial)

    return jsonify(result.to_dict()), result.status_code


@app.route('/api/upload-document', methods=['POST'])
def upload_document():
    """
    Extract reference text from an uploaded document.

    The text is returned to the caller, who sends it back as
    "referenceText" with later questions.
    """
    upload = request.files.get('file')
    if upload is None or not upload.filename:
        raise ValidationError("No file uploaded")

    text = extract_text(upload.read(), upload.filename)

    return jsonify({
        'success': True,
        'message': 'Document processed successfully',
        'referenceText': text
    })


@app.route('/health')
def health():
    """Health check endpoint."""
    return jsonify({'status': 'ok'})


if __name__ == '__main__':
    logger.info("NL-to-SQL Assistant starting on port %d", PORT)
    logger.info("Unsafe queries: %s", "allowed" if ALLOW_UNSAFE_QUERIES else "blocked")
    app.run(debug=False, port=PORT)
