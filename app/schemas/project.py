from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

Aspect = Literal["9x16", "1x1", "16x9"]


class ProjectCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    aspect: Aspect = "9x16"
    theme: str = "clean"
    listing_url: Optional[str] = None
    # Only honoured for internal (server-to-server) callers
    user_id: Optional[str] = None


class AssetResponse(BaseModel):
    id: str
    url: str
    type: str
    sort_order: Optional[int] = None
    width: Optional[int] = None
    height: Optional[int] = None
    meta: Optional[Dict[str, Any]] = None

    class Config:
        from_attributes = True


class ProjectResponse(BaseModel):
    id: str
    user_id: str
    title: str
    aspect: str
    theme: Optional[str] = None
    listing_url: Optional[str] = None
    status: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ProjectDetailResponse(ProjectResponse):
    assets: List[AssetResponse] = Field(default_factory=list)


class PaginatedProjectsResponse(BaseModel):
    total: int
    page: int
    page_size: int
    total_pages: int
    items: List[ProjectResponse]
    filters_applied: dict
    message: str


class UsageSummary(BaseModel):
    user_id: str
    free_clips_remaining: Optional[int] = None
    usage: Dict[str, int] = Field(default_factory=dict)
    projects_by_status: Dict[str, int] = Field(default_factory=dict)
