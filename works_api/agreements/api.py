from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse

from works_api.agreements.schemas import (
    AgreementAuditRead,
    WorksAgreementCreate,
    WorksAgreementRecord,
    WorksAgreementUpdate,
)
from works_api.agreements.service import AgreementExistsError, agreement_service
from works_api.agreements.store import AgreementStore
from works_api.api.deps import get_agreement_store, get_audit_trail
from works_api.api.errors import error_response
from works_api.audit import AuditTrail
from works_api.core.auth import AuthUser, get_current_user


router = APIRouter(prefix="/agreements", tags=["agreements"])


@router.get("", response_model=list[WorksAgreementRecord])
def list_agreements(store: AgreementStore = Depends(get_agreement_store)) -> list[WorksAgreementRecord]:
    return agreement_service.list_agreements(store)


@router.get("/{job_id}", response_model=WorksAgreementRecord)
def get_agreement(
    request: Request,
    job_id: str,
    store: AgreementStore = Depends(get_agreement_store),
) -> WorksAgreementRecord | JSONResponse:
    try:
        return agreement_service.get_agreement(store, job_id)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="works_agreement_not_found",
            message=str(exc.detail),
            details={"jobId": job_id},
        )


@router.post("", response_model=WorksAgreementRecord, status_code=status.HTTP_201_CREATED)
def create_agreement(
    request: Request,
    dto: WorksAgreementCreate,
    store: AgreementStore = Depends(get_agreement_store),
    audit: AuditTrail = Depends(get_audit_trail),
    user: AuthUser = Depends(get_current_user),
) -> WorksAgreementRecord | JSONResponse:
    try:
        return agreement_service.create_agreement(store, audit, user.sub, dto)
    except AgreementExistsError as exc:
        return error_response(
            request,
            status_code=status.HTTP_409_CONFLICT,
            code="works_agreement_exists",
            message=str(exc),
            details={"existing": exc.existing.model_dump(mode="json", by_alias=True)},
        )
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="works_agreement_below_threshold",
            message=str(exc.detail),
            details={"jobId": dto.job_id, "totalIncGst": str(dto.total_inc_gst)},
        )


@router.patch("/{job_id}", response_model=WorksAgreementRecord)
def update_agreement(
    request: Request,
    job_id: str,
    dto: WorksAgreementUpdate,
    store: AgreementStore = Depends(get_agreement_store),
    audit: AuditTrail = Depends(get_audit_trail),
    user: AuthUser = Depends(get_current_user),
) -> WorksAgreementRecord | JSONResponse:
    try:
        return agreement_service.update_agreement(store, audit, user.sub, job_id, dto)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="works_agreement_update_failed",
            message=str(exc.detail),
            details={"jobId": job_id},
        )


@router.delete("/{job_id}", status_code=status.HTTP_200_OK, response_model=None)
def delete_agreement(
    request: Request,
    job_id: str,
    store: AgreementStore = Depends(get_agreement_store),
    audit: AuditTrail = Depends(get_audit_trail),
    user: AuthUser = Depends(get_current_user),
) -> dict[str, str] | JSONResponse:
    try:
        agreement_service.delete_agreement(store, audit, user.sub, job_id)
    except HTTPException as exc:
        return error_response(
            request,
            status_code=exc.status_code,
            code="works_agreement_delete_failed",
            message=str(exc.detail),
            details={"jobId": job_id},
        )
    return {"status": "deleted"}


@router.get("/{job_id}/audit", response_model=list[AgreementAuditRead])
def list_agreement_audit(
    job_id: str,
    audit: AuditTrail = Depends(get_audit_trail),
) -> list[AgreementAuditRead]:
    return agreement_service.list_audit(audit, job_id)
