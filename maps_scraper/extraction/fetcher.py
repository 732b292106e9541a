"""
Business Fetching

The orchestrator only needs something that turns a rendered search query
and a country code into raw business records. The default implementation
searches OpenStreetMap Nominatim.

Raw record fields:
    source_id, name, category, formatted_address, phone_number,
    website, latitude, longitude
"""

import logging
from typing import Any, Dict, List, Optional, Protocol

import httpx

from ..exceptions import FetchError

logger = logging.getLogger(__name__)

NOMINATIM_SEARCH_URL = "https://nominatim.openstreetmap.org/search"
USER_AGENT = "maps-scraper/1.0"


class BusinessFetcher(Protocol):
    """Anything that can search for businesses."""

    source_name: str

    def fetch(self, search_query: str, country_code: str) -> List[Dict]:
        ...


def _first(mapping: Dict[str, Any], *keys: str) -> str:
    for key in keys:
        value = mapping.get(key)
        if value:
            return str(value)
    return ""


def parse_nominatim_result(result: Dict) -> Optional[Dict]:
    """
    Convert one Nominatim search hit to a raw business record.

    Returns None for hits without a name, or with neither an address nor
    a phone number.
    """
    extratags = result.get("extratags") or {}
    namedetails = result.get("namedetails") or {}

    name = result.get("name") or namedetails.get("name") or ""
    if not name:
        return None

    address = result.get("display_name") or ""
    phone = _first(extratags, "phone", "contact:phone", "contact:mobile")
    if not address and not phone:
        return None

    try:
        latitude = float(result["lat"])
        longitude = float(result["lon"])
    except (KeyError, TypeError, ValueError):
        latitude = longitude = None

    osm_type = result.get("osm_type", "")
    osm_id = result.get("osm_id", "")
    return {
        "source_id": f"{osm_type}/{osm_id}" if osm_id else "",
        "name": name,
        "category": result.get("type") or result.get("category") or "",
        "formatted_address": address,
        "phone_number": phone,
        "website": _first(extratags, "website", "contact:website", "url"),
        "latitude": latitude,
        "longitude": longitude,
    }


class NominatimBusinessFetcher:
    """
    Business search backed by the Nominatim search API.

    Args:
        limit: Max hits per query (Nominatim caps this at 50)
        timeout: Request timeout in seconds
        user_agent: Nominatim requires an identifying User-Agent
        transport: Optional httpx transport (tests use ``httpx.MockTransport``)
    """

    source_name = "openstreetmap"

    def __init__(
        self,
        limit: int = 50,
        timeout: float = 30.0,
        user_agent: str = USER_AGENT,
        base_url: str = NOMINATIM_SEARCH_URL,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.limit = limit
        self.timeout = timeout
        self.user_agent = user_agent
        self.base_url = base_url
        self.transport = transport

    def fetch(self, search_query: str, country_code: str) -> List[Dict]:
        """
        Search for businesses.

        Raises:
            FetchError: On network, HTTP or decoding errors
        """
        params = {
            "q": search_query,
            "format": "jsonv2",
            "limit": self.limit,
            "countrycodes": country_code.lower(),
            "addressdetails": 1,
            "extratags": 1,
            "namedetails": 1,
        }
        headers = {"User-Agent": self.user_agent}

        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.get(self.base_url, params=params, headers=headers)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            raise FetchError(f"Search failed for {search_query!r}: {e}") from e
        except ValueError as e:
            raise FetchError(f"Invalid JSON for {search_query!r}: {e}") from e

        if not isinstance(data, list):
            raise FetchError(f"Unexpected search response for {search_query!r}: {str(data)[:200]}")

        businesses = []
        seen_ids = set()
        for result in data:
            if not isinstance(result, dict):
                continue
            business = parse_nominatim_result(result)
            if business is None:
                continue
            if business["source_id"] and business["source_id"] in seen_ids:
                continue
            seen_ids.add(business["source_id"])
            businesses.append(business)

        logger.debug("Search %r returned %d hits, %d businesses", search_query, len(data), len(businesses))
        return businesses
