import os
from functools import lru_cache
from pathlib import Path

AMOUNT_MODES = ("integer", "decimal")
LOCALES = ("en", "ru")


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        amount_mode: str,
        request_timeout_secs: float,
        shutdown_grace_secs: float,
        scheduler_tick_secs: float,
        scheduler_enabled: bool,
        locale: str = "en",
    ) -> None:
        if amount_mode not in AMOUNT_MODES:
            raise ValueError(f"Unsupported amount mode: {amount_mode}")
        if locale not in LOCALES:
            raise ValueError(f"Unsupported locale: {locale}")
        if request_timeout_secs <= 0:
            raise ValueError("Request timeout must be positive")
        if scheduler_tick_secs <= 0:
            raise ValueError("Scheduler tick must be positive")
        self.database_url = database_url
        self.timezone = timezone
        self.amount_mode = amount_mode
        self.request_timeout_secs = request_timeout_secs
        self.shutdown_grace_secs = shutdown_grace_secs
        self.scheduler_tick_secs = scheduler_tick_secs
        self.scheduler_enabled = scheduler_enabled
        self.locale = locale


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("LEDGER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    database_url = os.getenv("LEDGER_DATABASE_URL")
    if not database_url:
        database_url = f"sqlite:///{_ensure_data_dir() / 'ledger.db'}"
    timezone = os.getenv("LEDGER_TIMEZONE", "Europe/Moscow")
    amount_mode = os.getenv("LEDGER_AMOUNT_MODE", "integer").strip().lower()
    request_timeout_secs = float(os.getenv("LEDGER_REQUEST_TIMEOUT_SECS", "15"))
    shutdown_grace_secs = float(os.getenv("LEDGER_SHUTDOWN_GRACE_SECS", "5"))
    scheduler_tick_secs = float(os.getenv("LEDGER_SCHEDULER_TICK_SECS", "30"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        amount_mode=amount_mode,
        request_timeout_secs=request_timeout_secs,
        shutdown_grace_secs=shutdown_grace_secs,
        scheduler_tick_secs=scheduler_tick_secs,
        scheduler_enabled=_env_flag("LEDGER_SCHEDULER_ENABLED", "1"),
        locale=os.getenv("LEDGER_LOCALE", "en").strip().lower(),
    )
