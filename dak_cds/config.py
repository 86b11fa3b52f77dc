"""Configuration for the DAK clinical decision support core."""

import os
from pathlib import Path

from dotenv import load_dotenv

# Find and load .env file
_env_candidates = [
    Path(__file__).parent.parent / ".env",
    Path(__file__).parent.parent / ".env.template",
]

for env_path in _env_candidates:
    if env_path.exists():
        load_dotenv(env_path)
        break


class Config:
    """DAK decision support configuration."""

    # --- Decision Cache ---
    # Seconds an active-rule lookup stays valid
    CACHE_TTL_SECONDS: int = int(os.getenv("DAK_CACHE_TTL_SECONDS", "1800"))
    # Smaller cache for clinical rules; oldest slot evicted on overflow
    CACHE_MAX_ENTRIES: int = int(os.getenv("DAK_CACHE_MAX_ENTRIES", "50"))
    # Comma-separated module codes warmed when no explicit list is given
    WARM_MODULES: str = os.getenv("DAK_WARM_MODULES", "ANC,ART,PHARMACOVIGILANCE,PREP")

    # --- Rule Import ---
    # Rows written per locked batch during bulk CSV import
    IMPORT_BATCH_SIZE: int = int(os.getenv("DAK_IMPORT_BATCH_SIZE", "100"))

    # --- Database ---
    DB_PATH: str = os.getenv(
        "DAK_DB_PATH",
        str(Path.home() / ".dak_cds" / "dak_rules.db"),
    )

    # --- API ---
    API_KEY: str = os.getenv("DAK_API_KEY", "")
    # Default number of alerts surfaced when callers ask for the top N
    TOP_ALERTS: int = int(os.getenv("DAK_TOP_ALERTS", "5"))

    @classmethod
    def get_warm_modules(cls) -> list[str]:
        """Get the default module set for cache warm-up."""
        return [m.strip().upper() for m in cls.WARM_MODULES.split(",") if m.strip()]


# Module-level convenience instance
config = Config()
