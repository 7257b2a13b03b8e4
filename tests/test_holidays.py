"""
Tests for the public holidays proxy.
"""

import httpx
import pytest
from fastapi import HTTPException

from holiday_calendar import service

ABSTRACT_PAYLOAD = [
    {
        "name": "New Year's Day",
        "name_local": "Naujieji metai",
        "type": "National",
        "date_year": "2026",
        "date_month": "1",
        "date_day": "1",
    },
    {"name": "Broken", "type": "Observance", "date_year": "2026"},
    {
        "name": "Mother's Day",
        "type": "Observance",
        "date_year": "2026",
        "date_month": "05",
        "date_day": "03",
    },
]


def _transport(calls, status_code=200, payload=ABSTRACT_PAYLOAD):
    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(status_code, json=payload)

    return httpx.MockTransport(handler)


class TestNormalize:
    def test_holidays_are_flattened_and_bad_rows_dropped(self):
        holidays = service.normalize_holidays(ABSTRACT_PAYLOAD)
        assert holidays == [
            {
                "name": "New Year's Day",
                "localName": "Naujieji metai",
                "date": "2026-01-01",
                "type": "National",
                "isPublic": True,
            },
            {
                "name": "Mother's Day",
                "localName": "Mother's Day",
                "date": "2026-05-03",
                "type": "Observance",
                "isPublic": False,
            },
        ]

    @pytest.mark.parametrize("raw", [None, "", "abc", "1800", "2200"])
    def test_bad_years(self, raw):
        with pytest.raises(HTTPException) as exc_info:
            service.parse_year(raw)
        assert exc_info.value.status_code == 400

    def test_good_year(self):
        assert service.parse_year(" 2026 ") == 2026


class TestGetHolidays:
    async def test_requires_api_key(self, monkeypatch):
        monkeypatch.delenv("ABSTRACT_API_KEY", raising=False)
        with pytest.raises(HTTPException) as exc_info:
            await service.get_holidays(2026)
        assert exc_info.value.status_code == 500

    async def test_fetch_then_serve_from_cache(self, monkeypatch):
        monkeypatch.setenv("ABSTRACT_API_KEY", "key-123")
        calls = []
        transport = _transport(calls)

        first = await service.get_holidays(2026, transport=transport, now=1_000.0)
        second = await service.get_holidays(2026, transport=transport, now=2_000.0)

        assert first["fromCache"] is False
        assert second["fromCache"] is True
        assert second["holidays"] == first["holidays"]
        assert len(calls) == 1
        assert calls[0].url.params["country"] == "LT"
        assert calls[0].url.params["year"] == "2026"
        assert calls[0].url.params["api_key"] == "key-123"

    async def test_cache_expires(self, monkeypatch):
        monkeypatch.setenv("ABSTRACT_API_KEY", "key-123")
        calls = []
        transport = _transport(calls)

        await service.get_holidays(2026, transport=transport, now=0.0)
        result = await service.get_holidays(2026, transport=transport, now=service.CACHE_TTL_S + 1)

        assert result["fromCache"] is False
        assert len(calls) == 2

    async def test_upstream_error_is_bad_gateway(self, monkeypatch):
        monkeypatch.setenv("ABSTRACT_API_KEY", "key-123")
        with pytest.raises(HTTPException) as exc_info:
            await service.get_holidays(2026, transport=_transport([], status_code=429, payload={"error": "quota"}))
        assert exc_info.value.status_code == 502

    async def test_network_error_is_bad_gateway(self, monkeypatch):
        monkeypatch.setenv("ABSTRACT_API_KEY", "key-123")

        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(HTTPException) as exc_info:
            await service.get_holidays(2026, transport=httpx.MockTransport(handler))
        assert exc_info.value.status_code == 502
