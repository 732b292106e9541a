"""
Configuration

Run settings resolved with the precedence: CLI flag > environment variable
(a ``.env`` file is loaded first) > default.
"""

import logging
import os
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Mapping, Optional, Tuple

from dotenv import load_dotenv

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

SUPPORTED_EXPORT_FORMATS = ("json", "csv", "xlsx")

# Environment variable for each ScraperConfig field
ENV_VARS = {
    "query": "QUERY",
    "countries": "COUNTRIES",
    "include_cities": "INCLUDE_CITIES",
    "localize": "LOCALIZE",
    "parallel": "PARALLEL",
    "min_delay_ms": "MIN_DELAY",
    "max_delay_ms": "MAX_DELAY",
    "retry_count": "RETRY_COUNT",
    "retry_delay": "RETRY_DELAY",
    "export_formats": "EXPORT_FORMATS",
    "output_dir": "OUTPUT_DIR",
    "allowed_categories_file": "ALLOWED_CATEGORIES_FILE",
    "csc_api_key": "CSC_API_KEY",
    "shuffle": "SHUFFLE",
    "log_level": "LOG_LEVEL",
}

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


@dataclass
class ScraperConfig:
    """Settings for one scraping run.

    Args:
        query: Search term, e.g. "Irrigation Equipment".
        countries: ISO-2 country codes to process, in the order given.
        include_cities: Schedule one task per city instead of one per state.
        localize: Translate the query into each country's language.
        parallel: Max concurrent tasks within one country.
        min_delay_ms / max_delay_ms: Window for the random pause after each task.
        retry_count: Retries per task after the first failed attempt.
        retry_delay: Base delay in seconds for the linear retry backoff.
        export_formats: Any of json, csv, xlsx.
        output_dir: Root for progress files and exports.
        allowed_categories_file: Category allow-list; missing file disables filtering.
        csc_api_key: API key for the countrystatecity.in directory.
        shuffle: Randomize state and city order before scheduling.
        log_level: Logging level name.
    """

    query: str = ""
    countries: List[str] = field(default_factory=list)
    include_cities: bool = False
    localize: bool = False
    parallel: int = 1
    min_delay_ms: int = 10
    max_delay_ms: int = 100
    retry_count: int = 0
    retry_delay: float = 1.0
    export_formats: List[str] = field(default_factory=lambda: ["json"])
    output_dir: str = "output"
    allowed_categories_file: str = "allowed_categories.txt"
    csc_api_key: str = ""
    shuffle: bool = False
    log_level: str = "INFO"

    @property
    def delay_range(self) -> Tuple[float, float]:
        """Inter-task pause window in seconds."""
        return self.min_delay_ms / 1000.0, self.max_delay_ms / 1000.0

    def validate(self) -> "ScraperConfig":
        """Raise ConfigurationError for unusable settings, return self otherwise."""
        if not self.query.strip():
            raise ConfigurationError("A search query is required (--query or QUERY)")
        if not self.countries:
            raise ConfigurationError("At least one country code is required (--countries or COUNTRIES)")
        if self.parallel < 1:
            raise ConfigurationError(f"parallel must be >= 1, got {self.parallel}")
        if self.min_delay_ms < 0 or self.max_delay_ms < self.min_delay_ms:
            raise ConfigurationError(
                f"Invalid delay window: min={self.min_delay_ms}ms max={self.max_delay_ms}ms"
            )
        if self.retry_count < 0:
            raise ConfigurationError(f"retry must be >= 0, got {self.retry_count}")
        if self.retry_delay < 0:
            raise ConfigurationError(f"retry delay must be >= 0, got {self.retry_delay}")
        unknown = [f for f in self.export_formats if f not in SUPPORTED_EXPORT_FORMATS]
        if unknown or not self.export_formats:
            raise ConfigurationError(
                f"Unsupported export format(s): {', '.join(unknown) or '(none)'}; "
                f"choose from {', '.join(SUPPORTED_EXPORT_FORMATS)}"
            )
        if not self.csc_api_key:
            logger.warning("CSC_API_KEY is not set; the location directory will reject requests.")
        return self


def split_list(value: str, upper: bool = False, lower: bool = False) -> List[str]:
    """Split a comma-separated value, dropping blanks."""
    items = [item.strip() for item in value.split(",") if item.strip()]
    if upper:
        items = [item.upper() for item in items]
    if lower:
        items = [item.lower() for item in items]
    return items


def parse_bool(name: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"{name} must be a boolean (true/false), got {value!r}")


def _convert(name: str, raw: str) -> Any:
    """Convert a raw environment string to the type of the named field."""
    try:
        if name == "countries":
            return split_list(raw, upper=True)
        if name == "export_formats":
            return split_list(raw, lower=True)
        if name in ("include_cities", "localize", "shuffle"):
            return parse_bool(ENV_VARS[name], raw)
        if name in ("parallel", "min_delay_ms", "max_delay_ms", "retry_count"):
            return int(raw)
        if name == "retry_delay":
            return float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{ENV_VARS[name]} has an invalid value {raw!r}") from exc
    return raw


def load_config(
    overrides: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
    dotenv: bool = True,
) -> ScraperConfig:
    """
    Resolve and validate the run configuration.

    Args:
        overrides: Values from the command line; ``None`` entries are ignored
        environ: Environment mapping (defaults to ``os.environ``)
        dotenv: Load a ``.env`` file into the process environment first

    Returns:
        Validated ScraperConfig

    Raises:
        ConfigurationError: If a value is malformed or a required one is missing
    """
    if dotenv:
        load_dotenv()
    if environ is None:
        environ = os.environ

    values: Dict[str, Any] = {}
    for f in fields(ScraperConfig):
        raw = environ.get(ENV_VARS[f.name])
        if raw is not None:
            values[f.name] = _convert(f.name, raw)

    for name, value in (overrides or {}).items():
        if value is not None:
            values[name] = value

    return ScraperConfig(**values).validate()
