"""
Incident RCA - Configuration Module
====================================

Centralized configuration for the RCA pipeline.
All other modules import from here to ensure consistency.

Values come from the environment (a local .env file is loaded first), with
defaults that work for local development.
"""

import logging
import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


# =============================================================================
# ENVIRONMENT VARIABLES
# =============================================================================

MONGO_DB_URL = os.getenv("MONGO_DB_URL")
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")

LOG_PARSER_URL = os.getenv("LOG_PARSER_URL", "http://localhost:8000")
"""Base URL of the external log clustering service (POST /parse/<vendor>)"""

APP_ENV = os.getenv("APP_ENV", "development")
"""Deployment environment, recorded on every run context"""

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


# =============================================================================
# MONGODB CONFIGURATION
# =============================================================================

DB_NAME = os.getenv("DB_NAME", "incident_rca")
"""MongoDB database holding organizations, integrations and indexes"""

ORGANIZATIONS_COLLECTION = "organizations"
INDEXES_COLLECTION = "indexes"
INTEGRATIONS_COLLECTION = "integrations"
VENDORS_COLLECTION = "vendors"
SECRETS_COLLECTION = "secrets"

VECTOR_INDEX_NAME = "vector_index"
"""MongoDB Atlas Vector Search index name inside each knowledge-base collection"""


# =============================================================================
# EMBEDDING CONFIGURATION
# =============================================================================

EMBEDDING_MODEL = "text-embedding-3-small"
"""
OpenAI embedding model used to query the knowledge base.

Must match the model the knowledge base was embedded with.
"""


# =============================================================================
# LLM CONFIGURATION
# =============================================================================

GENERATION_MODEL = os.getenv("GENERATION_MODEL", "gpt-4o-mini")
"""
LLM used for every completion in the pipeline (queries, verification,
log structure extraction and the final summary).
"""

GENERATION_TEMPERATURE = float(os.getenv("GENERATION_TEMPERATURE", "0"))
"""
LLM temperature.

Verification answers are parsed as literal booleans and query lists as JSON,
so 0 keeps the outputs parseable and repeatable.
"""


# =============================================================================
# RAG CONFIGURATION
# =============================================================================

DEFAULT_N_QUERIES = 3
"""Number of search queries generated from the incident text"""

RETRIEVAL_TOP_K = 3
"""Documents fetched from the vector store per query"""

RANK_TOP_N = 3
"""Documents kept after relevance filtering and ranking"""


# =============================================================================
# LOG ANALYSIS CONFIGURATION
# =============================================================================

LOG_SAMPLE_SIZE = 2
"""Log rows shown to the LLM to infer the severity/message keys"""

LOG_FETCH_LIMIT = int(os.getenv("LOG_FETCH_LIMIT", "1000"))
"""Maximum log rows fetched from the vendor for clustering"""

MAX_RAW_LOG_CHARS = int(os.getenv("MAX_RAW_LOG_CHARS", "10000"))
"""
Size limit for the raw-log fallback text.

When clustering fails the raw logs are passed to the summary prompt instead,
so they must stay well inside the model's context window.
"""


# =============================================================================
# NETWORK CONFIGURATION
# =============================================================================

REQUEST_TIMEOUT_SECONDS = float(os.getenv("REQUEST_TIMEOUT_SECONDS", "60"))
"""Timeout applied to every external call made during a run"""

HTTP_TIMEOUT_SECONDS = 30.0
"""HTTP client timeout used when the caller sets no limit of its own"""


# =============================================================================
# VALIDATION
# =============================================================================

def validate_config() -> dict:
    """
    Validate that required configuration is present.

    Returns:
        dict with validation status and any errors
    """
    errors = []
    warnings = []

    if not MONGO_DB_URL:
        errors.append("MONGO_DB_URL not set in environment")

    if not OPENAI_API_KEY:
        errors.append("OPENAI_API_KEY not set in environment")

    if not os.getenv("LOG_PARSER_URL"):
        warnings.append(f"LOG_PARSER_URL not set, using {LOG_PARSER_URL}")

    return {
        "valid": len(errors) == 0,
        "errors": errors,
        "warnings": warnings
    }


def configure_logging(level: str = LOG_LEVEL) -> None:
    """Configure root logging for command-line runs."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def print_config():
    """Print current configuration for debugging."""
    print("=" * 60)
    print("INCIDENT RCA CONFIGURATION")
    print("=" * 60)
    print(f"\n📁 Environment: {APP_ENV}")

    print(f"\n🗄️ MongoDB:")
    print(f"   Database: {DB_NAME}")
    print(f"   Vector Index: {VECTOR_INDEX_NAME}")

    print(f"\n🤖 LLM:")
    print(f"   Generation: {GENERATION_MODEL}")
    print(f"   Temperature: {GENERATION_TEMPERATURE}")
    print(f"   Embeddings: {EMBEDDING_MODEL}")

    print(f"\n🔍 Retrieval:")
    print(f"   Queries: {DEFAULT_N_QUERIES}")
    print(f"   Top K per query: {RETRIEVAL_TOP_K}")
    print(f"   Ranked documents kept: {RANK_TOP_N}")

    print(f"\n📜 Logs:")
    print(f"   Log parser: {LOG_PARSER_URL}")
    print(f"   Fetch limit: {LOG_FETCH_LIMIT} rows")
    print(f"   Raw log fallback limit: {MAX_RAW_LOG_CHARS} chars")

    print(f"\n⏱️ Timeout: {REQUEST_TIMEOUT_SECONDS}s per call")

    validation = validate_config()
    if validation["errors"]:
        print(f"\n❌ Errors:")
        for e in validation["errors"]:
            print(f"   - {e}")
    if validation["warnings"]:
        print(f"\n⚠️ Warnings:")
        for w in validation["warnings"]:
            print(f"   - {w}")

    print()


if __name__ == "__main__":
    print_config()
