"""
Forms API Router: records, follow-up actions and cache control.

Endpoints:
- GET  /api/forms/{form_key}/records: one page of projected records
- GET  /api/forms/{form_key}/records/{record_id}: one record
- POST /api/forms/{form_key}/records: create or update (409 on dedup conflict)
- POST /api/forms/{form_key}/records/{record_id}/followup/{action}: CREATE_PDF, SEND_EMAIL, CLOSE_RECORD
- POST /api/cache/invalidate: abandon every cached page and record
"""

import logging

from fastapi import APIRouter, Body, Depends, HTTPException, Query

from formdesk.errors import ValidationConflict
from formdesk.models import Record
from formdesk.services import Services, get_services

from .response_models import (
    CacheInvalidateRequest,
    CacheInvalidateResponse,
    ConflictDetail,
    FollowupResponse,
    RecordListResponse,
    RecordResponse,
    RecordWriteRequest,
    UpsertResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["forms"])


def services() -> Services:
    return get_services()


def _projection(fields: str | None) -> list[str] | None:
    if not fields:
        return None
    parsed = [f.strip() for f in fields.split(",") if f.strip()]
    return parsed or None


@router.get("/forms/{form_key}/records", response_model=RecordListResponse)
async def list_records(
    form_key: str,
    page_size: int = Query(10, description="Rows per page, clamped to 1..10"),
    page_token: str | None = Query(None, description="Token from the previous page"),
    fields: str | None = Query(None, description="Comma-separated field ids to project"),
    svc: Services = Depends(services),
):
    definition = svc.registry.get(form_key)
    page = svc.store.list_page(definition.schema, _projection(fields), page_size, page_token)
    return page.model_dump()


@router.get("/forms/{form_key}/records/{record_id}", response_model=RecordResponse)
async def get_record(form_key: str, record_id: str, svc: Services = Depends(services)):
    definition = svc.registry.get(form_key)
    record = svc.store.get_by_id(definition.schema, record_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Record not found: {record_id}")
    return record.to_dict()


@router.post(
    "/forms/{form_key}/records",
    response_model=UpsertResponse,
    responses={409: {"model": ConflictDetail}},
)
async def save_record(
    form_key: str,
    request: RecordWriteRequest = Body(...),
    svc: Services = Depends(services),
):
    definition = svc.registry.get(form_key)
    record = Record(
        id=request.id or "",
        form_key=form_key,
        language=request.language,
        values=request.values,
        status=request.status,
        pdf_url=request.pdf_url,
    )
    result = svc.store.upsert(definition.schema, record, definition.dedup_rules)
    if not result.success:
        conflict = result.conflict
        raise ValidationConflict(
            result.message,
            rule_id=conflict.rule_id if conflict else None,
            existing_record_id=conflict.existing_record_id if conflict else None,
        )
    return UpsertResponse(
        success=True,
        message=result.message,
        record_id=result.record_id,
        created_at=result.created_at,
        updated_at=result.updated_at,
    )


@router.post("/forms/{form_key}/records/{record_id}/followup/{action}", response_model=FollowupResponse)
async def run_followup(form_key: str, record_id: str, action: str, svc: Services = Depends(services)):
    result = svc.orchestrator.run_action(form_key, record_id, action)
    if not result.success:
        logger.info(f"Follow-up {action} on {form_key}/{record_id} failed: {result.message}")
    return result.to_dict()


@router.post("/cache/invalidate", response_model=CacheInvalidateResponse)
async def invalidate_cache(
    request: CacheInvalidateRequest | None = Body(None),
    svc: Services = Depends(services),
):
    reason = request.reason if request else "manual"
    version = svc.store.invalidate_cache(reason)
    return CacheInvalidateResponse(success=True, version=version)
