"""
Category Filtering

Optional allow-list of category substrings, one per line, matched
case-insensitively against a record's ``category`` field.
"""

import logging
from pathlib import Path
from typing import Dict, Iterable, List, Union

logger = logging.getLogger(__name__)


class CategoryFilter:
    """Keeps records whose category contains an allowed substring."""

    def __init__(self, allowed: Iterable[str] = ()):
        self.allowed = [a.strip().lower() for a in allowed if a.strip()]

    def __bool__(self):
        return bool(self.allowed)

    def accepts(self, record: Dict) -> bool:
        if not self.allowed:
            return True
        category = record.get("category")
        if not category:
            return True
        category = str(category).lower()
        return any(allowed in category for allowed in self.allowed)

    def apply(self, records: List[Dict]) -> List[Dict]:
        if not self.allowed:
            return records
        return [r for r in records if self.accepts(r)]

    @classmethod
    def load(cls, path: Union[str, Path]) -> "CategoryFilter":
        """Read the allow-list; a missing or unreadable file disables filtering."""
        path = Path(path)
        if not path.exists():
            logger.info("No %s found, skipping category filtering", path)
            return cls()
        try:
            lines = path.read_text(encoding="utf-8").splitlines()
        except OSError as e:
            logger.warning("Could not read %s (%s), skipping category filtering", path, e)
            return cls()
        category_filter = cls(lines)
        logger.info("Loaded %d allowed categories", len(category_filter.allowed))
        return category_filter
