import threading
from typing import Callable, Dict, List, Optional

import pytest

from maps_scraper.config import ScraperConfig
from maps_scraper.models import LocationKind, LocationNode


def country(code="MK", name="North Macedonia"):
    return LocationNode(code=code, name=name, kind=LocationKind.COUNTRY)


def state(code, name, country_code="MK"):
    return LocationNode(code=code, name=name, kind=LocationKind.STATE, parent_code=country_code)


def city(name, state_code, code=None):
    return LocationNode(code=code or name, name=name, kind=LocationKind.CITY, parent_code=state_code)


def record(name, address="", phone="", **extra):
    biz = {"name": name, "formatted_address": address, "phone_number": phone}
    biz.update(extra)
    return biz


class FakeDirectory:
    """In-memory location directory. Values that are exceptions are raised."""

    def __init__(self, countries: List[LocationNode], states: Dict, cities: Optional[Dict] = None):
        self._countries = countries
        self._states = states
        self._cities = cities or {}
        self.state_calls = []
        self.city_calls = []

    def countries(self):
        if isinstance(self._countries, Exception):
            raise self._countries
        return list(self._countries)

    def states(self, country_code):
        self.state_calls.append(country_code)
        value = self._states.get(country_code, [])
        if isinstance(value, Exception):
            raise value
        return list(value)

    def cities(self, country_code, state_code):
        self.city_calls.append((country_code, state_code))
        value = self._cities.get((country_code, state_code), [])
        if isinstance(value, Exception):
            raise value
        return list(value)


class FakeFetcher:
    """Answers searches through ``handler(search_query, country_code)``; records every call."""

    source_name = "fake"

    def __init__(self, handler: Callable[[str, str], List[Dict]]):
        self.handler = handler
        self.calls = []
        self._lock = threading.Lock()

    def fetch(self, search_query, country_code):
        with self._lock:
            self.calls.append(search_query)
        return self.handler(search_query, country_code)


@pytest.fixture
def make_config(tmp_path):
    def _make(**overrides):
        values = {
            "query": "irrigation",
            "countries": ["MK"],
            "output_dir": str(tmp_path / "output"),
            "min_delay_ms": 0,
            "max_delay_ms": 0,
            "csc_api_key": "test-key",
        }
        values.update(overrides)
        return ScraperConfig(**values)
    return _make
