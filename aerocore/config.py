import os


def _env_float(name: str, default: str) -> float:
    return float(os.getenv(name, default))


def parse_csv_env(s: str) -> list[str]:
    parts = [p.strip() for p in (s or "").split(",")]
    return [p for p in parts if p]


LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# CORS
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "*")
CORS_ALLOW_METHODS = os.getenv("CORS_ALLOW_METHODS", "*")
CORS_ALLOW_HEADERS = os.getenv("CORS_ALLOW_HEADERS", "*")
CORS_ALLOW_CREDENTIALS = os.getenv("CORS_ALLOW_CREDENTIALS", "true").lower() in ("1", "true", "yes")

# Scan quota per calendar month
PLAN_CEILINGS = {
    "BASIC": 5,
    "PILOT": 25,
    "MAINTENANCE_PRO": 100,
    "FLEET_AI": 500,
}
DEFAULT_PLAN = os.getenv("DEFAULT_PLAN", "BASIC").upper()

# Reference status: share of an interval after which an item shows "warning"
COMPLIANCE_WARNING_RATIO = _env_float("COMPLIANCE_WARNING_RATIO", "0.9")

# External calls
EXTRACTION_TIMEOUT_SECONDS = _env_float("EXTRACTION_TIMEOUT_SECONDS", "60")
RECORD_STORE_TIMEOUT_SECONDS = _env_float("RECORD_STORE_TIMEOUT_SECONDS", "5")
MAX_IMAGE_BYTES = int(os.getenv("MAX_IMAGE_BYTES", str(10 * 1024 * 1024)))

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "").strip()
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o")


def plan_ceiling(plan: str) -> int:
    return PLAN_CEILINGS.get((plan or "").upper(), PLAN_CEILINGS[DEFAULT_PLAN])
