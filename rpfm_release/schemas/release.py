"""Pydantic models describing release host responses."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ReleaseResponse(BaseModel):
    id: Optional[int] = None
    tag_name: Optional[str] = None
    html_url: Optional[str] = None
    upload_url: str = Field(..., description="URI template assets are posted to.")

    model_config = ConfigDict(extra="ignore")


class AssetResponse(BaseModel):
    id: Optional[int] = None
    name: str
    size: int = 0
    browser_download_url: Optional[str] = None

    model_config = ConfigDict(extra="ignore")
