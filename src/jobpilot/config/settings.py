# ---------- SETTINGS ----------

"""
Runtime settings for jobpilot.

All values come from environment variables (optionally loaded from a .env file)
and are exposed as module-level constants. Services take their tunables as
constructor arguments that default to these constants.
"""

import os

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).lower() == "true"


# ----- STORAGE -----

# "memory" keeps everything in-process (local development, tests)
# "dynamodb" uses one DynamoDB table per entity kind
STORE_BACKEND = os.environ.get("STORE_BACKEND", "memory").lower()
DYNAMODB_TABLE_PREFIX = os.environ.get("DYNAMODB_TABLE_PREFIX", "jobpilot")

# Unset means rendered artifacts are written under paths.ARTIFACT_PATH
S3_DOCUMENTS_BUCKET = os.environ.get("S3_DOCUMENTS_BUCKET", None)

# ----- QUEUES -----

# "memory" uses queue.Queue per stage, "sqs" uses one SQS queue per stage
QUEUE_BACKEND = os.environ.get("QUEUE_BACKEND", "memory").lower()
SQS_QUEUE_URLS = {
    "discovery": os.environ.get("SQS_QUEUE_URL_DISCOVERY", ""),
    "analysis": os.environ.get("SQS_QUEUE_URL_ANALYSIS", ""),
    "generation": os.environ.get("SQS_QUEUE_URL_GENERATION", ""),
    "dispatch": os.environ.get("SQS_QUEUE_URL_DISPATCH", ""),
}

# Worker threads per stage
DISCOVERY_WORKERS = int(os.environ.get("DISCOVERY_WORKERS", "2"))
ANALYSIS_WORKERS = int(os.environ.get("ANALYSIS_WORKERS", "4"))
GENERATION_WORKERS = int(os.environ.get("GENERATION_WORKERS", "2"))
DISPATCH_WORKERS = int(os.environ.get("DISPATCH_WORKERS", "2"))

# ----- SCHEDULING -----

DISCOVERY_INTERVAL_SECONDS = int(os.environ.get("DISCOVERY_INTERVAL_SECONDS", "3600"))
SCHEDULER_TICK_SECONDS = int(os.environ.get("SCHEDULER_TICK_SECONDS", "60"))
# A claimed entity untouched for longer than this is recovered by the scheduler
CLAIM_LEASE_SECONDS = int(os.environ.get("CLAIM_LEASE_SECONDS", "1800"))

# ----- LLM PROVIDERS -----

OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY")
OPENAI_MODEL = os.environ.get("OPENAI_MODEL", "gpt-4o-mini")
OPENAI_EMBEDDING_MODEL = os.environ.get(
    "OPENAI_EMBEDDING_MODEL", "text-embedding-3-small"
)

# Bounded concurrency per provider (backpressure)
EMBEDDING_MAX_CONCURRENCY = int(os.environ.get("EMBEDDING_MAX_CONCURRENCY", "4"))
REASONING_MAX_CONCURRENCY = int(os.environ.get("REASONING_MAX_CONCURRENCY", "2"))

# ----- MATCHING -----

# Postings below this cosine similarity never reach the reasoning provider
MATCH_PREFILTER_FLOOR = float(os.environ.get("MATCH_PREFILTER_FLOOR", "0.25"))
DEFAULT_MATCH_THRESHOLD = int(os.environ.get("DEFAULT_MATCH_THRESHOLD", "60"))
DEFAULT_SALARY_CURRENCY = os.environ.get("DEFAULT_SALARY_CURRENCY", "EUR")

# ----- SUBMISSION -----

EMAIL_ENABLED = _env_bool("EMAIL_ENABLED")
SES_REGION = os.environ.get("SES_REGION", "eu-north-1")
SES_FROM_EMAIL = os.environ.get("SES_FROM_EMAIL", "")

FORM_AUTOMATION_ENABLED = _env_bool("FORM_AUTOMATION_ENABLED")

# Caps on real (non-test) submissions per user
MAX_APPLICATIONS_PER_DAY = int(os.environ.get("MAX_APPLICATIONS_PER_DAY", "20"))
MAX_APPLICATIONS_PER_WEEK = int(os.environ.get("MAX_APPLICATIONS_PER_WEEK", "100"))

HTTP_TIMEOUT_SECONDS = int(os.environ.get("HTTP_TIMEOUT_SECONDS", "20"))
USER_AGENT = os.environ.get("USER_AGENT", "jobpilot-discovery/1.0")

# ----- SOURCES -----

ENABLE_MOCK_JOBS = _env_bool("ENABLE_MOCK_JOBS")

# ----- API -----

FRONTEND_URL = os.environ.get("FRONTEND_URL", "")
