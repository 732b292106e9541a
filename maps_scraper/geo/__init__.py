"""
Geographic module.

- directory.py: Country / state / city listing (countrystatecity.in)
- locale.py: Country language lookup and query translation
"""

from .directory import CountryStateCityDirectory, LocationDirectory
from .locale import GoogleQueryTranslator, Translator, language_for_country, localize_query
