from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class RuntimeSettings:
    """Runtime settings loaded from environment with fail-fast validation."""

    store_root: str = "signage_data"
    thumbnail_width: int = 400
    thumbnail_quality: float = 0.8
    csv_renderer_url: str = "https://csv-renderer.onrender.com"
    weather_api_url: str = ""
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env_path: Path | None = None) -> "RuntimeSettings":
        """Build settings from ``SIGNAGE_*`` variables.

        A ``.env`` file (``env_path`` or the one in the working directory) is
        loaded first; variables already set in the environment win.
        """
        dotenv_path = env_path if env_path is not None else Path.cwd() / ".env"
        if dotenv_path.is_file():
            load_dotenv(dotenv_path, override=False)
        return cls(
            store_root=os.getenv("SIGNAGE_STORE_ROOT", "signage_data"),
            thumbnail_width=_get_env_int("SIGNAGE_THUMBNAIL_WIDTH", default=400, minimum=16, maximum=4096),
            thumbnail_quality=_get_env_float("SIGNAGE_THUMBNAIL_QUALITY", default=0.8),
            csv_renderer_url=os.getenv("SIGNAGE_CSV_RENDERER_URL", "https://csv-renderer.onrender.com"),
            weather_api_url=os.getenv("SIGNAGE_WEATHER_API_URL", ""),
            log_level=os.getenv("SIGNAGE_LOG_LEVEL", "INFO"),
        ).normalized()

    def normalized(self) -> "RuntimeSettings":
        """Validate and normalize all fields. Raises ValueError on invalid configuration."""
        store_root = self.store_root.strip()
        if not store_root:
            raise ValueError("SIGNAGE_STORE_ROOT must be non-empty")

        # -- Numeric bounds validation --
        if not 16 <= self.thumbnail_width <= 4096:
            raise ValueError(f"SIGNAGE_THUMBNAIL_WIDTH must be within [16, 4096], got: {self.thumbnail_width}")
        if not 0 < self.thumbnail_quality <= 1:
            raise ValueError(f"SIGNAGE_THUMBNAIL_QUALITY must be within (0, 1], got: {self.thumbnail_quality}")

        # -- URL validation --
        csv_renderer_url = self.csv_renderer_url.strip().rstrip("/")
        if not csv_renderer_url.startswith(("http://", "https://")):
            raise ValueError(f"SIGNAGE_CSV_RENDERER_URL must be an http(s) URL, got: {self.csv_renderer_url!r}")
        weather_api_url = self.weather_api_url.strip()
        if weather_api_url and not weather_api_url.startswith(("http://", "https://")):
            raise ValueError(f"SIGNAGE_WEATHER_API_URL must be an http(s) URL, got: {self.weather_api_url!r}")

        log_level = self.log_level.strip().upper()
        if log_level not in LOG_LEVELS:
            raise ValueError(f"SIGNAGE_LOG_LEVEL must be one of: {', '.join(LOG_LEVELS)}")
        return RuntimeSettings(
            store_root=store_root,
            thumbnail_width=self.thumbnail_width,
            thumbnail_quality=self.thumbnail_quality,
            csv_renderer_url=csv_renderer_url,
            weather_api_url=weather_api_url,
            log_level=log_level,
        )

    def store_path(self, base: Path | None = None) -> Path:
        path = Path(self.store_root)
        if path.is_absolute():
            return path
        return (base if base is not None else Path.cwd()) / path


def _get_env_int(name: str, default: int, minimum: int, maximum: int = 10_000_000) -> int:
    """Parse an integer from an environment variable with bounds checking.

    Args:
        name: Environment variable name.
        default: Value to return if the variable is unset.
        minimum: Inclusive lower bound.
        maximum: Inclusive upper bound (default 10M, prevents absurd values).

    Returns:
        The parsed integer, guaranteed to be within [minimum, maximum].

    Raises:
        ValueError: If the value is not an integer or is outside bounds.
    """
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        parsed = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got: {raw!r}") from exc
    if parsed < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got: {parsed}")
    if parsed > maximum:
        raise ValueError(f"{name} must be <= {maximum}, got: {parsed}")
    return parsed


def _get_env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got: {raw!r}") from exc
