"""
Result Export

Writes full snapshots of a record set to
``{output_dir}/{query}/{country}/results/{scope}.{json|csv|xlsx}``.

Each write replaces the previous file for the scope through a temp file
and a rename, so a reader never sees a half-written export.
"""

import csv
import io
import json
import logging
import os
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

import pandas as pd

from ..config import SUPPORTED_EXPORT_FORMATS
from ..models import safe_path_component, scope_file_stem
from .progress import atomic_write_text

logger = logging.getLogger(__name__)

RESULTS_DIRNAME = "results"

# State snapshots are always written in this format; resumed runs read them back
SNAPSHOT_FORMAT = "json"


def collect_columns(records: Iterable[Dict]) -> List[str]:
    """Union of record keys, in first-seen order."""
    columns: Dict[str, None] = {}
    for record in records:
        for key in record:
            columns.setdefault(key, None)
    return list(columns)


def cell_value(value):
    """Flatten a record value for a CSV/XLSX cell."""
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return value


def to_rows(records: List[Dict], columns: List[str]) -> List[List]:
    return [[cell_value(record.get(col)) for col in columns] for record in records]


class ExportManager:
    """Writes record snapshots per (query, country, scope)."""

    def __init__(self, output_dir: Union[str, Path] = "output", formats: Iterable[str] = ("json",)):
        self.output_dir = Path(output_dir)
        self.formats = [f.lower() for f in formats]

    def results_dir(self, query: str, country_code: str) -> Path:
        return (
            self.output_dir
            / safe_path_component(query)
            / safe_path_component(country_code)
            / RESULTS_DIRNAME
        )

    def path_for(self, query: str, country_code: str, scope_name: str, fmt: str) -> Path:
        return self.results_dir(query, country_code) / f"{scope_file_stem(scope_name)}.{fmt}"

    def write(
        self,
        records: List[Dict],
        query: str,
        country_code: str,
        scope_name: str,
        formats: Optional[Iterable[str]] = None,
    ) -> Dict[str, Path]:
        """
        Write ``records`` in every requested format.

        A failing format is logged and skipped; the others are still written.

        Returns:
            Mapping of format to the path written successfully
        """
        written = {}
        for fmt in (formats or self.formats):
            fmt = fmt.lower()
            path = self.path_for(query, country_code, scope_name, fmt)
            try:
                if fmt == "json":
                    self._write_json(records, path)
                elif fmt == "csv":
                    self._write_csv(records, path)
                elif fmt == "xlsx":
                    self._write_xlsx(records, path)
                else:
                    raise ValueError(
                        f"unsupported format {fmt!r} (expected one of {', '.join(SUPPORTED_EXPORT_FORMATS)})"
                    )
            except Exception as e:
                logger.error("Failed to export %s for %s/%s: %s", fmt.upper(), country_code, scope_name, e)
                continue
            written[fmt] = path
            logger.info("Exported %d businesses to %s: %s", len(records), fmt.upper(), path)
        return written

    def read_json(self, query: str, country_code: str, scope_name: str) -> List[Dict]:
        """
        Read back a JSON snapshot written earlier.

        Missing or unreadable snapshots yield an empty list.
        """
        path = self.path_for(query, country_code, scope_name, SNAPSHOT_FORMAT)
        if not path.exists():
            return []
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable snapshot %s: %s", path, e)
            return []
        if not isinstance(data, list):
            logger.warning("Ignoring snapshot %s: expected a list of records", path)
            return []
        return [r for r in data if isinstance(r, dict)]

    # Format writers

    def _write_json(self, records: List[Dict], path: Path):
        atomic_write_text(path, json.dumps(records, indent=2, ensure_ascii=False, default=str))

    def _write_csv(self, records: List[Dict], path: Path):
        columns = collect_columns(records)
        buffer = io.StringIO()
        if columns:
            writer = csv.writer(buffer)
            writer.writerow(columns)
            writer.writerows(to_rows(records, columns))
        atomic_write_text(path, buffer.getvalue(), newline="")

    def _write_xlsx(self, records: List[Dict], path: Path):
        columns = collect_columns(records)
        frame = pd.DataFrame(to_rows(records, columns), columns=columns)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(f".{path.name}.tmp")
        try:
            frame.to_excel(tmp_path, index=False, sheet_name="Businesses", engine="openpyxl")
            os.replace(tmp_path, path)
        finally:
            if tmp_path.exists():
                tmp_path.unlink()
