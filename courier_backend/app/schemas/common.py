"""
Shared response schemas.
"""

import math
from pydantic import BaseModel
from typing import Optional
from courier_backend.app.models.enums import UserRole


class UserSummary(BaseModel):
    """Public view of a sender or receiver."""
    id: int
    email: str
    first_name: str
    last_name: str
    phone: Optional[str] = None
    role: UserRole

    class Config:
        from_attributes = True


class Pagination(BaseModel):
    total: int
    page: int
    limit: int
    total_pages: int

    @classmethod
    def build(cls, total: int, page: int, limit: int) -> "Pagination":
        return cls(total=total, page=page, limit=limit, total_pages=math.ceil(total / limit) if limit else 0)


class MessageResponse(BaseModel):
    message: str
