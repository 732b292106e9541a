"""
Maps Scraper

Resumable, bounded-concurrency business scraper over a country → state →
city hierarchy.

Quick start (library usage):
    from maps_scraper import Orchestrator, ScraperConfig
    from maps_scraper.geo import CountryStateCityDirectory
    from maps_scraper.extraction import NominatimBusinessFetcher

    config = ScraperConfig(query="irrigation", countries=["MK"], csc_api_key="...").validate()
    summary = Orchestrator(config, CountryStateCityDirectory(config.csc_api_key),
                           NominatimBusinessFetcher()).run()
    print(summary.total_businesses)
"""

from .config import ScraperConfig, load_config
from .exceptions import (
    ConfigurationError,
    DirectoryError,
    FetchError,
    PersistenceError,
    ScraperError,
    TranslationError,
)
from .models import LocationKind, LocationNode, Task

__version__ = "1.0.0"
__all__ = [
    "ScraperConfig",
    "load_config",
    "LocationKind",
    "LocationNode",
    "Task",
    "Orchestrator",
    "RunSummary",
    "ScraperError",
    "ConfigurationError",
    "DirectoryError",
    "FetchError",
    "PersistenceError",
    "TranslationError",
]


def __getattr__(name):
    """Lazy imports for the orchestrator.

    The orchestration package pulls in pandas for XLSX export; deferring it
    keeps ``import maps_scraper`` cheap for config and model users.
    """
    if name == "Orchestrator":
        from .orchestration.orchestrator import Orchestrator
        return Orchestrator
    if name == "RunSummary":
        from .orchestration.orchestrator import RunSummary
        return RunSummary
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
