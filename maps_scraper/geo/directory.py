"""
Location Directory

Lists countries, states and cities from the countrystatecity.in REST API.
"""

import logging
from typing import Dict, List, Optional, Protocol

import httpx

from ..exceptions import DirectoryError
from ..models import LocationKind, LocationNode

logger = logging.getLogger(__name__)

CSC_API_BASE_URL = "https://api.countrystatecity.in/v1"


class LocationDirectory(Protocol):
    """Source of the country → state → city hierarchy."""

    def countries(self) -> List[LocationNode]:
        ...

    def states(self, country_code: str) -> List[LocationNode]:
        ...

    def cities(self, country_code: str, state_code: str) -> List[LocationNode]:
        ...


class CountryStateCityDirectory:
    """
    countrystatecity.in client.

    Args:
        api_key: Value for the ``X-CSCAPI-KEY`` header
        base_url: API root
        timeout: Per-request timeout in seconds
        transport: Optional httpx transport (tests use ``httpx.MockTransport``)
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = CSC_API_BASE_URL,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def _get(self, path: str) -> List[Dict]:
        url = f"{self.base_url}{path}"
        headers = {"X-CSCAPI-KEY": self.api_key}
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.get(url, headers=headers)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            raise DirectoryError(f"Request to {url} failed: {e}") from e
        except ValueError as e:
            raise DirectoryError(f"Invalid JSON from {url}: {e}") from e

        if not isinstance(data, list):
            # The API answers errors as {"error": "..."} with a 200 on some endpoints
            raise DirectoryError(f"Unexpected response from {url}: {str(data)[:200]}")
        return [item for item in data if isinstance(item, dict)]

    def countries(self) -> List[LocationNode]:
        nodes = [
            LocationNode(code=item["iso2"], name=item.get("name") or item["iso2"], kind=LocationKind.COUNTRY)
            for item in self._get("/countries")
            if item.get("iso2")
        ]
        logger.debug("Directory listed %d countries", len(nodes))
        return nodes

    def states(self, country_code: str) -> List[LocationNode]:
        return [
            LocationNode(
                code=item.get("iso2") or str(item.get("id", "")),
                name=item["name"],
                kind=LocationKind.STATE,
                parent_code=country_code,
            )
            for item in self._get(f"/countries/{country_code}/states")
            if item.get("name")
        ]

    def cities(self, country_code: str, state_code: str) -> List[LocationNode]:
        return [
            LocationNode(
                code=str(item.get("id") or item["name"]),
                name=item["name"],
                kind=LocationKind.CITY,
                parent_code=state_code,
            )
            for item in self._get(f"/countries/{country_code}/states/{state_code}/cities")
            if item.get("name")
        ]
