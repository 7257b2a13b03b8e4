"""
Public holidays proxy (Abstract API) with a per-year in-memory cache.
"""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx
from fastapi import HTTPException, status

from core import settings

logger = logging.getLogger(__name__)

ABSTRACT_API_URL = "https://holidays.abstractapi.com/v1/"
CACHE_TTL_S = 24 * 60 * 60
MIN_YEAR = 1900
MAX_YEAR = 2100

# (country, year) -> (fetched_at, holidays)
_cache: dict[tuple[str, int], tuple[float, list[dict]]] = {}


def api_key() -> str:
    return settings.env_str("ABSTRACT_API_KEY")


def country_code() -> str:
    return settings.env_str("HOLIDAYS_COUNTRY", "LT").upper()


def api_url() -> str:
    return settings.env_str("HOLIDAYS_API_URL", ABSTRACT_API_URL)


def clear_cache() -> None:
    _cache.clear()


def normalize_date(item: dict[str, Any]) -> str:
    year = int(item["date_year"])
    month = int(item["date_month"])
    day = int(item["date_day"])
    return f"{year:04d}-{month:02d}-{day:02d}"


def normalize_holidays(payload: list[dict[str, Any]]) -> list[dict]:
    holidays = []
    for item in payload:
        try:
            day = normalize_date(item)
        except (KeyError, TypeError, ValueError):
            logger.warning("holiday_skipped reason=bad_date name=%s", item.get("name"))
            continue
        holidays.append(
            {
                "name": item.get("name"),
                "localName": item.get("name_local") or item.get("name"),
                "date": day,
                "type": item.get("type"),
                "isPublic": item.get("type") == "National",
            }
        )
    return holidays


def parse_year(raw: str | None) -> int:
    try:
        year = int(str(raw or "").strip())
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Valid year parameter is required.") from None
    if year < MIN_YEAR or year > MAX_YEAR:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Valid year parameter is required.")
    return year


async def get_holidays(
    year: int,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    now: float | None = None,
) -> dict:
    key = api_key()
    if not key:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="ABSTRACT_API_KEY environment variable not configured.",
        )

    now = time.time() if now is None else now
    cache_key = (country_code(), year)
    cached = _cache.get(cache_key)
    if cached and now - cached[0] < CACHE_TTL_S:
        return {"holidays": cached[1], "fromCache": True}

    params = {"api_key": key, "country": cache_key[0], "year": year}
    try:
        async with httpx.AsyncClient(timeout=15.0, transport=transport) as client:
            resp = await client.get(api_url(), params=params)
    except httpx.HTTPError as exc:
        logger.error("holidays_request_failed year=%s error=%s", year, exc)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Error fetching holidays.") from exc

    if resp.status_code != 200:
        logger.error("holidays_request_failed year=%s status=%s", year, resp.status_code)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Error fetching holidays.")

    payload = resp.json()
    holidays = normalize_holidays(payload if isinstance(payload, list) else [])
    _cache[cache_key] = (now, holidays)
    return {"holidays": holidays, "fromCache": False}
