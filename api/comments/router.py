"""
Comment edit/delete endpoints. Listing and creation live under /api/tasks.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from activity.service import audit
from auth import dependencies as auth_dependencies
from core import responses

from . import schemas, service

router = APIRouter(prefix="/api/comments")


@router.put("/{comment_id}", dependencies=[Depends(audit("comment.update", "comment"))])
async def update_comment(
    comment_id: int,
    payload: schemas.CommentRequest,
    current_user: dict = Depends(auth_dependencies.get_current_user),
) -> dict:
    comment = await service.update_comment(comment_id, payload.content, user_id=int(current_user["id"]))
    return responses.success({"comment": comment}, message="Comment updated successfully")


@router.delete("/{comment_id}", dependencies=[Depends(audit("comment.delete", "comment"))])
async def delete_comment(
    comment_id: int,
    current_user: dict = Depends(auth_dependencies.get_current_user),
) -> dict:
    await service.delete_comment(comment_id, user_id=int(current_user["id"]))
    return responses.success(message="Comment deleted successfully")
