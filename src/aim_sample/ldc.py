"""Download point records from the Landscape Data Commons (LDC) API.

The LDC serves the national AIM and LMF tables as JSON. Large tables are paged:
each request returns at most ``take`` rows and the next page starts after the
``rid`` of the last row received.

Example
-------
    headers = fetch_headers(take=10000, delay=500)
"""
from __future__ import annotations

import time
from typing import Dict, List, Optional

import pandas as pd
import requests
from loguru import logger

from .errors import InputReadFailure

LDC_API_URL = "https://api.landscapedatacommons.org/api/v1/"

# Short names → API endpoints
DATA_TYPES: Dict[str, str] = {
    "header": "dataHeader",
    "indicators": "geoIndicators",
    "species": "geoSpecies",
    "gap": "dataGap",
    "height": "dataHeight",
    "lpi": "dataLPI",
    "soilstability": "dataSoilStability",
    "speciesinventory": "dataSpeciesInventory",
}

CURSOR_FIELD = "rid"


def endpoint_url(data_type: str, base_url: str = LDC_API_URL) -> str:
    try:
        endpoint = DATA_TYPES[data_type]
    except KeyError:
        raise ValueError(
            f"Unknown LDC data_type {data_type!r}; choose from {sorted(DATA_TYPES)}"
        ) from None
    return base_url.rstrip("/") + "/" + endpoint


def _get_page(session, url: str, params: Dict[str, object], timeout: float) -> List[dict]:
    try:
        resp = session.get(url, params=params, timeout=timeout)
        resp.raise_for_status()
        payload = resp.json()
    except (requests.RequestException, ValueError) as exc:
        raise InputReadFailure(f"LDC request {url} {params} failed: {exc}") from exc
    if not isinstance(payload, list):
        raise InputReadFailure(f"LDC returned {type(payload).__name__}, expected a list of records")
    return payload


def fetch_ldc(
    data_type: str = "header",
    *,
    base_url: str = LDC_API_URL,
    take: int = 10000,
    timeout: float = 60,
    delay: int = 500,
    session: Optional[requests.Session] = None,
) -> pd.DataFrame:
    """Return every record of *data_type* as a DataFrame.

    Parameters
    ----------
    take : int, default 10000
        Page size.
    timeout : float, default 60
        Seconds allowed per request.
    delay : int, default 500
        Milliseconds to wait between page requests.
    session : requests.Session, optional
        Reused for all pages; a new one is opened if omitted.
    """
    if take < 1:
        raise ValueError(f"take must be >= 1, got {take}")
    url = endpoint_url(data_type, base_url)
    own_session = session is None
    session = session or requests.Session()

    records: List[dict] = []
    cursor = None
    try:
        while True:
            params: Dict[str, object] = {"take": take}
            if cursor is not None:
                params["cursor"] = cursor
            page = _get_page(session, url, params, timeout)
            records.extend(page)
            logger.info(f"LDC {data_type}: {len(records)} records so far")
            if len(page) < take:
                break
            cursor = page[-1].get(CURSOR_FIELD)
            if cursor is None:
                raise InputReadFailure(f"LDC page has no {CURSOR_FIELD!r} to continue from")
            time.sleep(delay / 1000)
    finally:
        if own_session:
            session.close()

    logger.success(f"Fetched {len(records)} {data_type} records from the LDC")
    return pd.DataFrame.from_records(records)


def fetch_headers(**kwargs) -> pd.DataFrame:
    """Header table: one row per plot visit with PrimaryKey, coordinates, DateVisited, ProjectKey."""
    return fetch_ldc("header", **kwargs)
