from dataclasses import replace
from typing import Optional
from datetime import date
import logging

from fastapi import APIRouter, Depends, Query

from ..auth import AuthContext, ensure_discipline_allowed, get_auth_context
from ..application.services.reconciliation_service import MatchingPolicy, ReconciliationService
from ..core.config import settings
from ..schemas.scheduling.appointment import AppointmentResponse, BatchFailureResponse
from ..schemas.scheduling.reconciliation import (
    AutoResolveRequest,
    AutoResolveResponse,
    MatchedPairResponse,
    MatchingPolicyRequest,
    PendingActionsResponse,
    ReconciliationReportResponse,
    RetroactiveBatchCreate,
    RetroactiveBatchResponse,
    RetroactiveCreate,
    TherapySessionResponse,
)
from .deps import default_matching_policy, get_reconciliation_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reconciliation", tags=["Reconciliation"])


def _policy(overrides: MatchingPolicyRequest) -> MatchingPolicy:
    policy = default_matching_policy()
    values = {k: v for k, v in overrides.model_dump().items() if v is not None}
    return replace(policy, **values)


@router.get("/detect", response_model=ReconciliationReportResponse)
def detect(
    date_from: date,
    date_to: date,
    date_tolerance_days: Optional[int] = Query(default=None, ge=0, le=7),
    require_same_therapist: Optional[bool] = None,
    time_tolerance_minutes: Optional[int] = Query(default=None, ge=0, le=720),
    auth: AuthContext = Depends(get_auth_context),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    policy = _policy(MatchingPolicyRequest(
        date_tolerance_days=date_tolerance_days,
        require_same_therapist=require_same_therapist,
        time_tolerance_minutes=time_tolerance_minutes,
    ))
    report = service.detect(auth.clinic_id, date_from, date_to, policy=policy)
    return ReconciliationReportResponse(
        date_from=date_from,
        date_to=date_to,
        matched=[
            MatchedPairResponse(session=TherapySessionResponse.from_dto(p.session), appointment=AppointmentResponse.from_dto(p.appointment))
            for p in report.matched
        ],
        orphan_sessions=[TherapySessionResponse.from_dto(s) for s in report.orphan_sessions],
        stale_scheduled=[AppointmentResponse.from_dto(a) for a in report.stale_scheduled],
    )


@router.post("/auto-resolve", response_model=AutoResolveResponse)
def auto_resolve(
    data: AutoResolveRequest,
    auth: AuthContext = Depends(get_auth_context),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    policy = _policy(MatchingPolicyRequest(**data.model_dump(exclude={"date_from", "date_to"})))
    batch = service.auto_resolve(auth.clinic_id, data.date_from, data.date_to, policy=policy, acting_user_id=auth.user_id)
    return AutoResolveResponse(
        resolved=[AppointmentResponse.from_dto(a) for a in batch.succeeded],
        resolved_count=batch.success_count,
        errors=[BatchFailureResponse(**f.as_dict()) for f in batch.failed],
    )


@router.post("/retroactive", response_model=AppointmentResponse, status_code=201)
def create_retroactive(
    data: RetroactiveCreate,
    auth: AuthContext = Depends(get_auth_context),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    ensure_discipline_allowed(auth, data.discipline_id)
    appt = service.create_retroactive(
        auth.clinic_id,
        data.session_id,
        discipline_id=data.discipline_id,
        notes=data.notes,
        scheduled_time=data.scheduled_time,
        duration_minutes=data.duration_minutes,
        acting_user_id=auth.user_id,
    )
    return AppointmentResponse.from_dto(appt)


@router.post("/retroactive/batch", response_model=RetroactiveBatchResponse)
def create_retroactive_batch(
    data: RetroactiveBatchCreate,
    auth: AuthContext = Depends(get_auth_context),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    ensure_discipline_allowed(auth, data.discipline_id)
    result = service.create_retroactive_batch(
        auth.clinic_id,
        data.session_ids,
        discipline_id=data.discipline_id,
        notes=data.notes,
        acting_user_id=auth.user_id,
    )
    return RetroactiveBatchResponse(
        created=result.created,
        total=result.total,
        appointments=[AppointmentResponse.from_dto(a) for a in result.appointments],
        errors=[BatchFailureResponse(**f.as_dict()) for f in result.errors],
    )


@router.get("/pending-actions", response_model=PendingActionsResponse)
def pending_actions(
    lookback_days: int = settings.ORPHAN_LOOKBACK_DAYS,
    auth: AuthContext = Depends(get_auth_context),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    pending = service.pending_actions(auth.clinic_id, lookback_days=lookback_days)
    return PendingActionsResponse(
        lookback_days=lookback_days,
        total_pending=pending.total_pending,
        orphan_sessions=[TherapySessionResponse.from_dto(s) for s in pending.orphan_sessions],
        unjustified_missed=[AppointmentResponse.from_dto(a) for a in pending.unjustified_missed],
    )
