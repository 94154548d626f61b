"""
Pydantic request/response models for the FormDesk API.

Usage:
    from api.response_models import RecordResponse, UpsertResponse

    @router.get("/forms/{form_key}/records/{record_id}", response_model=RecordResponse)
    async def get_record(...): ...
"""

from typing import Any

from pydantic import BaseModel, Field

# ==== Records ====


class RecordResponse(BaseModel):
    """One stored record."""

    id: str = Field(description="Stable record id")
    form_key: str = Field(description="Form the record belongs to")
    language: str = Field(description="EN, FR or NL")
    values: dict[str, Any] = Field(default_factory=dict, description="Field id -> value")
    created_at: str | None = Field(default=None, description="ISO creation timestamp")
    updated_at: str | None = Field(default=None, description="ISO update timestamp")
    status: str | None = Field(default=None, description="Follow-up status")
    pdf_url: str | None = Field(default=None, description="Linked document URL")


class RecordListResponse(BaseModel):
    """One page of projected records."""

    items: list[dict[str, Any]] = Field(default_factory=list, description="Projected rows in table order")
    next_page_token: str | None = Field(default=None, description="Token for the next page, absent on the last")
    total_count: int = Field(description="Rows counted, capped at the scan limit")


class RecordWriteRequest(BaseModel):
    """Create or update a record."""

    id: str | None = Field(default=None, description="Existing record id; omitted to create")
    language: str = Field(default="EN", description="EN, FR or NL; anything else is stored as EN")
    values: dict[str, Any] = Field(default_factory=dict, description="Field id -> value")
    status: str | None = Field(default=None, description="Optional status to store")
    pdf_url: str | None = Field(default=None, description="Optional document URL to store")


class UpsertResponse(BaseModel):
    """Write result."""

    success: bool = Field(description="Whether the record was written")
    message: str = Field(description="Saved, or the dedup message")
    record_id: str = Field(description="Id of the written (or rejected) record")
    created_at: str | None = None
    updated_at: str | None = None


class ConflictDetail(BaseModel):
    """Body of a 409 response."""

    message: str
    rule_id: str | None = None
    existing_record_id: str | None = None


# ==== Follow-up ====


class FollowupResponse(BaseModel):
    """Follow-up action result."""

    success: bool
    message: str | None = None
    status: str | None = None
    document_url: str | None = None
    file_id: str | None = None
    updated_at: str | None = None


# ==== Cache ====


class CacheInvalidateRequest(BaseModel):
    reason: str = Field(default="manual", description="Logged with the new cache version")


class CacheInvalidateResponse(BaseModel):
    success: bool
    version: str = Field(description="New cache version; every earlier entry is orphaned")


# ==== Health ====


class HealthResponse(BaseModel):
    """Health check result."""

    status: str = Field(description="healthy")
    version: str = Field(description="Package version")
    forms: list[str] = Field(default_factory=list, description="Configured form keys")
