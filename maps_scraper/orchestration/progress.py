"""
Progress Persistence

Tracks which countries, states and cities are finished for a query so an
interrupted run can resume without repeating work.

File layout: ``{output_dir}/{query}/{country}/progress.json``::

    {"completed": {"countries": {"MK": true},
                   "states":    {"MK-Skopje Region": true},
                   "cities":    {"MK-85-Skopje": true}}}

Entries are only ever added. Deleting an entry (or the file) is the way to
re-scrape a leaf.
"""

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Union

from ..exceptions import PersistenceError
from ..models import safe_path_component

logger = logging.getLogger(__name__)

PROGRESS_FILENAME = "progress.json"


def country_key(country_code: str) -> str:
    return country_code


def state_key(country_code: str, state_name: str) -> str:
    return f"{country_code}-{state_name}"


def city_key(country_code: str, state_code: str, city_name: str) -> str:
    return f"{country_code}-{state_code}-{city_name}"


@dataclass
class ProgressTree:
    """Completion flags for one (query, country) pair."""

    countries: Dict[str, bool] = field(default_factory=dict)
    states: Dict[str, bool] = field(default_factory=dict)
    cities: Dict[str, bool] = field(default_factory=dict)

    # Mutations

    def mark_city_complete(self, country_code: str, state_code: str, city_name: str):
        self.cities[city_key(country_code, state_code, city_name)] = True

    def mark_state_complete(self, country_code: str, state_name: str):
        self.states[state_key(country_code, state_name)] = True

    def mark_country_complete(self, country_code: str):
        self.countries[country_key(country_code)] = True

    # Predicates

    def is_city_done(self, country_code: str, state_code: str, city_name: str) -> bool:
        return self.cities.get(city_key(country_code, state_code, city_name)) is True

    def is_state_done(self, country_code: str, state_name: str) -> bool:
        return self.states.get(state_key(country_code, state_name)) is True

    def is_country_done(self, country_code: str) -> bool:
        return self.countries.get(country_key(country_code)) is True

    # Serialization

    def to_dict(self) -> Dict:
        return {
            "completed": {
                "countries": dict(self.countries),
                "states": dict(self.states),
                "cities": dict(self.cities),
            }
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "ProgressTree":
        """Build a tree from parsed JSON. Raises ValueError on a wrong shape."""
        if not isinstance(data, dict):
            raise ValueError("progress data must be an object")
        completed = data.get("completed", {})
        if not isinstance(completed, dict):
            raise ValueError("'completed' must be an object")

        sections = {}
        for name in ("countries", "states", "cities"):
            section = completed.get(name) or {}
            if not isinstance(section, dict):
                raise ValueError(f"'completed.{name}' must be an object")
            # Only literal true counts as done
            sections[name] = {str(k): True for k, v in section.items() if v is True}
        return cls(**sections)


def atomic_write_text(path: Path, data: str, encoding: str = "utf-8", newline: Optional[str] = None):
    """Write text to a temp file in the same directory, then rename it over ``path``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        "w", encoding=encoding, newline=newline, dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp", delete=False
    ) as tmp:
        tmp.write(data)
        tmp.flush()
        os.fsync(tmp.fileno())
        tmp_name = tmp.name
    try:
        os.replace(tmp_name, path)
    except OSError:
        os.unlink(tmp_name)
        raise


class ProgressStore:
    """Loads and saves progress trees under an output directory."""

    def __init__(self, output_dir: Union[str, Path] = "output"):
        self.output_dir = Path(output_dir)

    def path_for(self, query: str, country_code: str) -> Path:
        return (
            self.output_dir
            / safe_path_component(query)
            / safe_path_component(country_code)
            / PROGRESS_FILENAME
        )

    def load(self, query: str, country_code: str) -> ProgressTree:
        """
        Load the tree for a query and country.

        A missing or unreadable file yields an empty tree; corruption is
        logged, never raised.
        """
        path = self.path_for(query, country_code)
        if not path.exists():
            return ProgressTree()
        try:
            with open(path, "r", encoding="utf-8") as f:
                return ProgressTree.from_dict(json.load(f))
        except (OSError, ValueError) as e:
            logger.warning("Could not load progress for %s from %s (%s); starting fresh",
                           country_code, path, e)
            return ProgressTree()

    def save(self, query: str, country_code: str, tree: ProgressTree):
        """
        Atomically write the tree to disk.

        Raises:
            PersistenceError: If the file cannot be written
        """
        path = self.path_for(query, country_code)
        try:
            atomic_write_text(path, json.dumps(tree.to_dict(), indent=2, ensure_ascii=False))
        except OSError as e:
            raise PersistenceError(f"Failed to save progress to {path}: {e}") from e
