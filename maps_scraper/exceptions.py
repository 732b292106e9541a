"""Custom exceptions for the maps-scraper package."""


class ScraperError(Exception):
    """Base exception for all maps-scraper errors."""
    pass


class ConfigurationError(ScraperError):
    """Raised when configuration is invalid or incomplete."""
    pass


class DirectoryError(ScraperError):
    """Raised when countries, states or cities cannot be listed."""
    pass


class FetchError(ScraperError):
    """Raised when a business search fails."""
    pass


class TranslationError(ScraperError):
    """Raised when a query cannot be translated."""
    pass


class PersistenceError(ScraperError):
    """Raised when progress or exports cannot be written."""
    pass
