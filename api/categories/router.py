"""
Category endpoints.
"""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from activity.service import audit
from auth import dependencies as auth_dependencies
from core import responses

from . import schemas, service

router = APIRouter(prefix="/api/categories")


@router.get("")
async def list_categories(
    workspace_id: UUID = Query(...),
    current_user: dict = Depends(auth_dependencies.get_current_user),
) -> dict:
    categories = await service.list_categories(workspace_id, user_id=int(current_user["id"]))
    return responses.success({"categories": categories})


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(audit("category.create", "category"))],
)
async def create_category(
    payload: schemas.CategoryCreateRequest,
    current_user: dict = Depends(auth_dependencies.get_current_user),
) -> dict:
    category = await service.create_category(payload, user_id=int(current_user["id"]))
    return responses.success({"category": category}, message="Category created successfully")


@router.patch("/reorder", dependencies=[Depends(audit("category.reorder", "category"))])
async def reorder_categories(
    payload: schemas.CategoryReorderRequest,
    current_user: dict = Depends(auth_dependencies.get_current_user),
) -> dict:
    categories = await service.reorder_categories(payload, user_id=int(current_user["id"]))
    return responses.success({"categories": categories}, message="Categories reordered successfully")


@router.get("/{category_id}")
async def get_category(
    category_id: int,
    current_user: dict = Depends(auth_dependencies.get_current_user),
) -> dict:
    category = await service.get_category(category_id, user_id=int(current_user["id"]))
    return responses.success({"category": category})


@router.put("/{category_id}", dependencies=[Depends(audit("category.update", "category"))])
async def update_category(
    category_id: int,
    payload: schemas.CategoryUpdateRequest,
    current_user: dict = Depends(auth_dependencies.get_current_user),
) -> dict:
    category = await service.update_category(category_id, payload, user_id=int(current_user["id"]))
    return responses.success({"category": category}, message="Category updated successfully")


@router.delete("/{category_id}", dependencies=[Depends(audit("category.delete", "category"))])
async def delete_category(
    category_id: int,
    current_user: dict = Depends(auth_dependencies.get_current_user),
) -> dict:
    await service.delete_category(category_id, user_id=int(current_user["id"]))
    return responses.success(message="Category deleted successfully")
