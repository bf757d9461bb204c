# NL-to-SQL Assistant Configuration

import os
from dotenv import load_dotenv


load_dotenv()


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# LLM Provider Configuration

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL") or None

# Model Configuration

MODEL_NAME = os.getenv("MODEL_NAME", "gpt-4o-mini")



# Generation Parameters
MAX_NEW_TOKENS = int(os.getenv("MAX_NEW_TOKENS", "1024"))
TEMPERATURE = float(os.getenv("TEMPERATURE", "0.1"))  # Low temperature for deterministic SQL
LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "60"))

# Regeneration Settings
# One corrective attempt after an execution failure, never more.
MAX_REGENERATION_ATTEMPTS = 1

# Database Configuration
DB_TYPE = os.getenv("DB_TYPE", "mysql")
DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "5"))
CONNECT_TIMEOUT_SECONDS = int(os.getenv("CONNECT_TIMEOUT_SECONDS", "10"))
QUERY_TIMEOUT_SECONDS = int(os.getenv("QUERY_TIMEOUT_SECONDS", "30"))

# Dummy database used by requests with "useDummyDB"
DB_CS = os.getenv("DB_CS", "")
DB_HOST = os.getenv("DB_HOST", "localhost")
DB_PORT = os.getenv("DB_PORT", "")
DB_USER = os.getenv("DB_USER", "root")
DB_PASSWORD = os.getenv("DB_PASSWORD", "")
DB_NAME = os.getenv("DB_NAME", "test")

# Security Configuration
ALLOW_UNSAFE_QUERIES = _env_flag("ALLOW_UNSAFE_QUERIES")
ENABLE_SECURITY_LOGGING = _env_flag("ENABLE_SECURITY_LOGGING", "true")
UNSAFE_KEYWORDS = ("DROP", "TRUNCATE", "ALTER", "DELETE", "UPDATE")
# Most recent security events kept in memory per SafetyGate
SECURITY_EVENT_LOG_SIZE = int(os.getenv("SECURITY_EVENT_LOG_SIZE", "1000"))

# Reference documents
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))
MAX_REFERENCE_CHARS = 20000

# Server
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
PORT = int(os.getenv("PORT", "3000"))

# Chart kinds the model may be asked for (and may answer with)
CHART_TYPES = (
    "pie",
    "line",
    "bar",
    "doughnut",
    "polarArea",
    "radar",
    "scatter",
    "bubble",
    "mixed",
    "any",
)

# Prompt Templates
QUERY_GENERATION_PROMPT = """You are a Data Analyst with {dialect} expertise.
Given the following database schema and user question,
generate an SQL query that answers the user's question.
SQL must return data from the database provided.
Use the given reference document for additional context.
Return ONLY a valid JSON object.

Database Schema:
{schema}

{reference}User Question: {question}
{chart_context}
{correction}{rules}"""

REFERENCE_SECTION = """REFERENCE DOCUMENT:
{reference_text}

"""

CORRECTION_SECTION = """PREVIOUS ATTEMPT FAILED
The previous SQL query produced this error: {error}
{failed_sql}Error category: {category}
{instruction}
Avoid getting into the same error again.

"""

FAILED_SQL_SECTION = """Faulty SQL:
{sql}
"""

OUTPUT_FORMAT = """FORMAT:
{format}

RULES:
1. No markdown/code blocks
2. Double quotes in JSON
3. isUnsafe=true for UPDATE/DELETE/DROP/ALTER/TRUNCATE or any other data-modifying statement
4. Efficient JOINs
5. Valid SQL syntax{chart_rule}"""
