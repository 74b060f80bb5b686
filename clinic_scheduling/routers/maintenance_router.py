from typing import Optional
import logging

from fastapi import APIRouter, Depends

from ..auth import AuthContext, require_admin
from ..application.services.maintenance_service import MaintenanceService
from ..application.services.sweeper_service import MissedAppointmentSweeper
from ..core.config import settings
from ..schemas.scheduling.reconciliation import MaintenanceResponse, SweepRequest, SweepResponse
from .deps import get_maintenance_service, get_sweeper

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/maintenance", tags=["Maintenance"])


@router.post("/mark-missed", response_model=SweepResponse)
def mark_missed(
    data: Optional[SweepRequest] = None,
    auth: AuthContext = Depends(require_admin),
    sweeper: MissedAppointmentSweeper = Depends(get_sweeper),
):
    grace_hours = data.grace_hours if data and data.grace_hours is not None else settings.MISSED_GRACE_HOURS
    result = sweeper.sweep(grace_hours, clinic_id=auth.clinic_id)
    logger.info(f"Sweep requested by user {auth.user_id}: {result.count} appointments marked missed")
    return SweepResponse(count=result.count, appointment_ids=result.appointment_ids)


@router.post("/run", response_model=MaintenanceResponse)
def run_maintenance(
    auth: AuthContext = Depends(require_admin),
    service: MaintenanceService = Depends(get_maintenance_service),
):
    return MaintenanceResponse(summary=service.run(auth.clinic_id))
