from datetime import datetime
from typing import Any, Optional
from pydantic import BaseModel


class RequestInfo(BaseModel):
    method: str
    path: str
    app_id: int
    client: Optional[str] = None


class Response(BaseModel):
    success: bool = True
    message: str
    data: Any = None
    timestamp: datetime


class ErrorResponse(BaseModel):
    success: bool = False
    message: Any
    error: str
    timestamp: datetime


class Pagination(BaseModel):
    current_page: int
    total_pages: int
    total_items: int
    items_per_page: int
    has_next_page: bool
    has_prev_page: bool
