"""
Local ZIP code table

Reads a GeoNames-style postal CSV once and keeps it in memory. The packaged
file is a small sample; point ZIP_DATA_PATH at the full US export in production.
"""

import csv
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

from ..logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_ZIP_DATA_PATH = Path(__file__).resolve().parents[1] / "data" / "us_zips.csv"
ZIP_DATA_PATH = os.getenv("ZIP_DATA_PATH", str(DEFAULT_ZIP_DATA_PATH))


@dataclass
class ZipInfo:
    zip: str
    city: str
    state: str
    state_code: str
    county: str
    latitude: float
    longitude: float


_zip_cache: Optional[Dict[str, ZipInfo]] = None
_lock = threading.Lock()


def load_zip_table(path: str = None) -> Dict[str, ZipInfo]:
    """Parse the CSV into {zip: ZipInfo}. Rows without coordinates are skipped."""
    table: Dict[str, ZipInfo] = {}
    with open(path or ZIP_DATA_PATH, newline="", encoding="utf-8") as f:
        for row in csv.DictReader(f):
            code = (row.get("postal code") or "").strip()
            if not code:
                continue
            try:
                latitude = float(row["latitude"])
                longitude = float(row["longitude"])
            except (KeyError, TypeError, ValueError):
                continue
            table[code] = ZipInfo(
                zip=code,
                city=row.get("place name", ""),
                state=row.get("admin name1", ""),
                state_code=row.get("admin code1", ""),
                county=row.get("admin name2", ""),
                latitude=latitude,
                longitude=longitude,
            )
    logger.info(f"Loaded {len(table)} ZIP codes from {path or ZIP_DATA_PATH}")
    return table


def get_zip_table() -> Dict[str, ZipInfo]:
    global _zip_cache
    if _zip_cache is None:
        with _lock:
            if _zip_cache is None:
                _zip_cache = load_zip_table()
    return _zip_cache


def lookup_zip(zip_code: str) -> Optional[ZipInfo]:
    """Look up a 5-digit ZIP (ZIP+4 is truncated)."""
    if not zip_code:
        return None
    return get_zip_table().get(zip_code.strip()[:5])
