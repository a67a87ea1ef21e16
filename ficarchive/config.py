"""Runtime configuration for the export service.

Service level settings come from environment variables, read once at
import time. Fetch pacing lives in ``SchedulerConfig`` so that every
delay the scheduler observes is an explicit, validated value instead of
a literal buried in control flow.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

from pydantic import BaseModel, Field, model_validator

# Default user agent for HTTP requests. The host serves a trimmed page to
# clients it does not recognise as a browser.
DEFAULT_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/90.0.4430.212 Safari/537.36"
    )
}


class SchedulerConfig(BaseModel):
    """Politeness and retry timings for one fetch batch (seconds)."""

    pass1_delay_min: float = Field(default=0.2, ge=0)
    pass1_delay_max: float = Field(default=0.2, ge=0)
    cooldown: float = Field(default=5.0, ge=0)
    pass2_delay: float = Field(default=3.0, ge=0)
    fetch_timeout: Optional[float] = Field(default=60.0, gt=0)

    @model_validator(mode="after")
    def validate_delay_window(self) -> "SchedulerConfig":
        if self.pass1_delay_max < self.pass1_delay_min:
            raise ValueError("pass1_delay_max must be >= pass1_delay_min")
        return self

    @classmethod
    def light(cls) -> "SchedulerConfig":
        """Fixed short delay, for cheap fetches such as private documents."""
        return cls(pass1_delay_min=0.2, pass1_delay_max=0.2)

    @classmethod
    def heavy(cls) -> "SchedulerConfig":
        """Randomised 1.5-3s window, for full chapter pages."""
        return cls(pass1_delay_min=1.5, pass1_delay_max=3.0)


@dataclass
class Settings:
    base_url: str = "https://www.fanfiction.net"
    cookie: Optional[str] = None
    output_dir: Path = Path("exports")
    log_level: str = "INFO"
    http_timeout: float = 30.0
    story_schedule: SchedulerConfig = field(default_factory=SchedulerConfig.heavy)
    document_schedule: SchedulerConfig = field(default_factory=SchedulerConfig.light)

    @property
    def headers(self) -> Dict[str, str]:
        headers = dict(DEFAULT_HEADERS)
        if self.cookie:
            headers["Cookie"] = self.cookie
        return headers

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            base_url=os.environ.get("FICARCHIVE_BASE_URL", "https://www.fanfiction.net").rstrip("/"),
            cookie=os.environ.get("FICARCHIVE_COOKIE") or None,
            output_dir=Path(os.environ.get("FICARCHIVE_OUTPUT_DIR", "exports")),
            log_level=os.environ.get("FICARCHIVE_LOG_LEVEL", "INFO").upper(),
            http_timeout=float(os.environ.get("FICARCHIVE_HTTP_TIMEOUT", "30")),
        )
