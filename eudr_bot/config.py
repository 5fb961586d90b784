"""Application settings, loaded from environment variables or a .env file."""

from __future__ import annotations

from typing import List

from pydantic_settings import BaseSettings

from eudr_bot.geo import MB, UploadLimits, build_checker, GeoComplianceChecker
from eudr_bot.wizard import EU_COUNTRIES


def _split(raw: str) -> List[str]:
    return [x.strip() for x in raw.split(",") if x.strip()]


class Settings(BaseSettings):
    # Telegram
    BOT_TOKEN: str

    # Declarations service
    API_BASE_URL: str = "http://localhost:5000/api"
    API_TOKEN: str | None = None
    API_TIMEOUT_SECONDS: float = 15

    # Logging
    LOG_LEVEL: str = "INFO"

    # Geo compliance check
    GEO_POLICY: str = "by-type"
    GEO_GEOMETRY_DELAY_SECONDS: float = 1.5
    GEO_SATELLITE_DELAY_SECONDS: float = 2.0
    GEO_CHECK_TIMEOUT_SECONDS: float = 30

    # Uploads
    MAX_UPLOAD_MB: int = 10
    GEO_EXTENSIONS: str = ".geojson,.json"
    EVIDENCE_EXTENSIONS: str = ".pdf,.jpg,.jpeg,.png,.doc,.docx,.txt,.geojson,.json"

    # Comma-separated countries whose counterparties need upstream EUDR references
    REFERENCE_NUMBER_COUNTRIES: str = ",".join(sorted(EU_COUNTRIES))

    # Wizard sessions idle longer than this are dropped
    SESSION_IDLE_SECONDS: int = 3600

    @property
    def geo_limits(self) -> UploadLimits:
        return UploadLimits(_split(self.GEO_EXTENSIONS), self.MAX_UPLOAD_MB * MB)

    @property
    def evidence_limits(self) -> UploadLimits:
        return UploadLimits(_split(self.EVIDENCE_EXTENSIONS), self.MAX_UPLOAD_MB * MB)

    @property
    def reference_countries(self) -> List[str]:
        return _split(self.REFERENCE_NUMBER_COUNTRIES)

    def geo_checker(self) -> GeoComplianceChecker:
        return build_checker(
            self.GEO_POLICY,
            self.GEO_GEOMETRY_DELAY_SECONDS,
            self.GEO_SATELLITE_DELAY_SECONDS,
        )

    model_config = {"env_file": ".env", "extra": "ignore"}


settings = Settings()
