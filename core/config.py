import os
from dotenv import load_dotenv
from dataclasses import dataclass, field

load_dotenv()

_PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))


def _resolve_db_path(raw_path: str) -> str:
    candidate = (raw_path or "").strip() or "./prep_engine.db"
    candidate = os.path.expanduser(candidate)
    if os.path.isabs(candidate):
        return os.path.abspath(candidate)
    return os.path.abspath(os.path.join(_PROJECT_ROOT, candidate))


def _join_webhook_url(base_url: str, path: str) -> str:
    clean_base = (base_url or "").strip().rstrip("/")
    clean_path = (path or "").strip()
    if not clean_base:
        return ""
    if not clean_path.startswith("/"):
        clean_path = "/" + clean_path
    return clean_base + clean_path


def _parse_ladder(raw: str) -> tuple[int, ...]:
    parts = [p.strip() for p in (raw or "").split(",") if p.strip()]
    return tuple(int(p) for p in parts)


@dataclass(frozen=True)
class Config:
    bot_token: str = os.getenv("BOT_TOKEN", "")
    admin_id: int = int(os.getenv("ADMIN_ID", "0"))
    db_backend: str = os.getenv("DB_BACKEND", "sqlite").strip().lower()
    database_url: str = os.getenv("DATABASE_URL", "").strip()
    db_pool_min_size: int = int(os.getenv("DB_POOL_MIN_SIZE", "1"))
    db_pool_max_size: int = int(os.getenv("DB_POOL_MAX_SIZE", "20"))
    db_path: str = _resolve_db_path(os.getenv("DB_PATH", "./prep_engine.db"))

    # Weak section detection
    weak_threshold: float = float(os.getenv("WEAK_THRESHOLD", "0.6"))
    recovery_threshold: float = float(os.getenv("RECOVERY_THRESHOLD", "0.75"))
    weak_min_samples: int = int(os.getenv("WEAK_MIN_SAMPLES", "5"))
    weak_window_size: int = int(os.getenv("WEAK_WINDOW_SIZE", "10"))

    # Revision ladder (days)
    revision_ladder: tuple[int, ...] = field(
        default_factory=lambda: _parse_ladder(os.getenv("REVISION_LADDER", "1,3,7,14,30"))
    )
    revision_batch_size: int = int(os.getenv("REVISION_BATCH_SIZE", "3"))

    # Free tier quotas
    mock_test_cap: int = int(os.getenv("MOCK_TEST_CAP", "5"))
    practice_question_cap: int = int(os.getenv("PRACTICE_QUESTION_CAP", "50"))

    # Follow-up queue
    followup_max_attempts: int = int(os.getenv("FOLLOWUP_MAX_ATTEMPTS", "5"))

    delivery_mode: str = os.getenv("DELIVERY_MODE", "polling").strip().lower()
    webhook_host: str = os.getenv("WEBHOOK_HOST", "0.0.0.0").strip()
    webhook_port: int = int(os.getenv("PORT", os.getenv("WEBHOOK_PORT", "8080")))
    webhook_path: str = os.getenv("WEBHOOK_PATH", "/telegram/webhook").strip()
    webhook_secret_token: str = os.getenv("WEBHOOK_SECRET_TOKEN", "").strip()
    webhook_url: str = (
        os.getenv("WEBHOOK_URL", "").strip()
        or _join_webhook_url(os.getenv("WEBHOOK_BASE_URL", "").strip(), os.getenv("WEBHOOK_PATH", "/telegram/webhook").strip())
    )

    def validate(self) -> "Config":
        """Raises ValueError on settings the engine cannot run with."""
        if not 0.0 <= self.weak_threshold < self.recovery_threshold <= 1.0:
            raise ValueError(
                f"Expected 0 <= WEAK_THRESHOLD < RECOVERY_THRESHOLD <= 1, "
                f"got {self.weak_threshold} / {self.recovery_threshold}"
            )
        if self.weak_min_samples < 1 or self.weak_window_size < self.weak_min_samples:
            raise ValueError("WEAK_WINDOW_SIZE must be >= WEAK_MIN_SAMPLES >= 1")
        if not self.revision_ladder or self.revision_ladder[0] < 1:
            raise ValueError("REVISION_LADDER must start with a positive day count")
        if any(b <= a for a, b in zip(self.revision_ladder, self.revision_ladder[1:])):
            raise ValueError(f"REVISION_LADDER must be strictly increasing: {self.revision_ladder}")
        if self.revision_batch_size < 1:
            raise ValueError("REVISION_BATCH_SIZE must be >= 1")
        if self.mock_test_cap < 1 or self.practice_question_cap < 1:
            raise ValueError("Quota caps must be >= 1")
        if self.db_backend not in ("sqlite", "postgres"):
            raise ValueError(f"Unknown DB_BACKEND: {self.db_backend}")
        return self

# Global Instance
settings = Config()
