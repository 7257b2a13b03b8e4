"""
Holidays endpoint.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from auth import dependencies as auth_dependencies
from core import responses

from . import service

router = APIRouter(prefix="/api/holidays")


@router.get("", dependencies=[Depends(auth_dependencies.get_current_user)])
async def get_holidays(year: str | None = Query(default=None)) -> dict:
    return responses.success(await service.get_holidays(service.parse_year(year)))
