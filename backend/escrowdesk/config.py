import os


def _normalize_database_url(url: str) -> str:
    # Render/Heroku sometimes provide postgres:// which SQLAlchemy expects as postgresql://
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql://", 1)
    return url


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "y", "on")


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    try:
        return int(raw) if raw else default
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    try:
        return float(raw) if raw else default
    except ValueError:
        return default


class Config:
    # Base directory of the backend (one level above this `escrowdesk` package)
    BACKEND_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
    INSTANCE_DIR = os.path.join(BACKEND_DIR, "instance")

    ENV = (os.getenv("ESCROWDESK_ENV", "dev") or "dev").strip().lower()
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret")
    LOG_LEVEL = (os.getenv("LOG_LEVEL") or "INFO").strip().upper()

    _default_sqlite_path = os.path.join(INSTANCE_DIR, "escrowdesk.db").replace("\\", "/")
    _db_url = os.getenv("SQLALCHEMY_DATABASE_URI") or os.getenv("DATABASE_URL") or f"sqlite:///{_default_sqlite_path}"
    SQLALCHEMY_DATABASE_URI = _normalize_database_url(_db_url)
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # CORS: comma-separated origins for web builds
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")

    WALLET_CURRENCY = os.getenv("WALLET_CURRENCY", "USD")

    # Order lifecycle
    AUTO_CONFIRM_HOURS = _env_int("AUTO_CONFIRM_HOURS", 72)
    DEFAULT_REVISIONS = _env_int("DEFAULT_REVISIONS", 2)
    DEFAULT_DELIVERY_DAYS = _env_int("DEFAULT_DELIVERY_DAYS", 3)

    # Buyer risk scoring; weights apply to the dispute and cancel ratios.
    RISK_DISPUTE_WEIGHT = _env_float("RISK_DISPUTE_WEIGHT", 0.7)
    RISK_CANCEL_WEIGHT = _env_float("RISK_CANCEL_WEIGHT", 0.3)
    RISK_HIGH_THRESHOLD = _env_float("RISK_HIGH_THRESHOLD", 50.0)
    NEW_ACCOUNT_DAYS = _env_int("NEW_ACCOUNT_DAYS", 7)

    # Escrow sweep (auto-confirm + confirmation windows)
    ESCROW_SWEEP_ON_REQUEST = _env_bool("ESCROW_SWEEP_ON_REQUEST", False)
    ESCROW_SWEEP_INTERVAL_SECONDS = _env_int("ESCROW_SWEEP_INTERVAL_SECONDS", 30)
    ESCROW_SWEEP_LIMIT = _env_int("ESCROW_SWEEP_LIMIT", 200)
