"""
Extraction module for collecting business data.

- fetcher.py: Business search (Nominatim by default)
- categories.py: Category allow-list filtering
"""

from .categories import CategoryFilter
from .fetcher import BusinessFetcher, NominatimBusinessFetcher, parse_nominatim_result
