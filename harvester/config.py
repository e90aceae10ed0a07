"""Centralised settings for the Harvester crawler.

All runtime configuration is resolved here in one place.  Values can be
overridden via environment variables or a `.env` file in the project root
(loaded automatically when this module is imported).  Crawl job files and CLI
flags take precedence over these defaults.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

# Load .env from the project root (one level up from this package)
_env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_env_path, override=False)


@dataclass
class Settings:
    # ------------------------------------------------------------------
    # Politeness
    # ------------------------------------------------------------------
    delay_min: float = field(
        default_factory=lambda: float(os.environ.get("HARVEST_DELAY_MIN", "10.0"))
    )
    delay_max: float = field(
        default_factory=lambda: float(os.environ.get("HARVEST_DELAY_MAX", "30.0"))
    )
    max_leaf_count: int = field(
        default_factory=lambda: int(os.environ.get("HARVEST_MAX_LEAF_COUNT", "20"))
    )

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------
    request_timeout: float = field(
        default_factory=lambda: float(os.environ.get("HARVEST_REQUEST_TIMEOUT", "30.0"))
    )
    user_agent: str = field(
        default_factory=lambda: os.environ.get(
            "HARVEST_USER_AGENT",
            "Mozilla/5.0 (compatible; Harvester/1.0; +https://github.com/harvester)",
        )
    )

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------
    output_dir: Path = field(
        default_factory=lambda: Path(os.environ.get("HARVEST_OUTPUT_DIR", "output"))
    )

    @property
    def delay_range(self) -> tuple[float, float]:
        """The default ``(min_seconds, max_seconds)`` leaf-fetch delay."""
        return (self.delay_min, self.delay_max)

    def ensure_output_dir(self) -> None:
        """Create the output directory if it does not exist."""
        self.output_dir.mkdir(parents=True, exist_ok=True)


# Module-level singleton — import this everywhere:
#   from harvester.config import settings
settings = Settings()
