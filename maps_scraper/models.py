"""
Data Models

Location hierarchy nodes, scheduled tasks and helpers for business records.

Business records are plain dictionaries, exactly as returned by the
fetcher, plus provenance fields added by ``tag_records``.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional


class LocationKind(Enum):
    COUNTRY = "country"
    STATE = "state"
    CITY = "city"


@dataclass(frozen=True)
class LocationNode:
    """A country, state or city as listed by the location directory"""
    code: str
    name: str
    kind: LocationKind
    parent_code: Optional[str] = None


@dataclass(frozen=True)
class Task:
    """One unit of scheduled work: a city, or a whole state in state mode"""
    query: str
    country: LocationNode
    state: LocationNode
    city: Optional[LocationNode] = None

    @property
    def label(self) -> str:
        parts = [self.city.name if self.city else None, self.state.name, self.country.name]
        return ", ".join(p for p in parts if p)


def render_search_query(task: Task) -> str:
    """
    Build the free-text search sent to the fetcher.

    Args:
        task: Task being executed

    Returns:
        e.g. "irrigation near Skopje Skopje Region North Macedonia"
    """
    if task.city is not None:
        return f"{task.query} near {task.city.name} {task.state.name} {task.country.name}"
    return f"{task.query} near {task.state.name} {task.country.name}"


def tag_records(records: List[Dict], task: Task, source_name: str = "") -> List[Dict]:
    """Return copies of raw fetcher records with provenance fields added."""
    tagged = []
    for record in records:
        biz = dict(record)
        biz["source_name"] = source_name
        biz["source_query"] = task.query
        biz["source_country"] = task.country.code
        biz["country"] = task.country.name
        biz["state"] = task.state.name
        biz["city"] = task.city.name if task.city else ""
        tagged.append(biz)
    return tagged


_UNSAFE_PATH_CHARS = re.compile(r'[\\/:*?"<>|\x00-\x1f]')


def safe_path_component(text: str) -> str:
    """Make a query or country code usable as a single directory name."""
    cleaned = _UNSAFE_PATH_CHARS.sub("_", text.strip())
    return cleaned or "_"


def scope_file_stem(scope_name: str) -> str:
    """File name (without extension) for an export scope: spaces become underscores."""
    return safe_path_component(re.sub(r"\s+", "_", scope_name.strip()))
