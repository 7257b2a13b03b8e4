"""
Comment API schemas.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

MAX_COMMENT_LENGTH = 5000


class CommentRequest(BaseModel):
    content: str = Field(..., min_length=1, max_length=20000)
