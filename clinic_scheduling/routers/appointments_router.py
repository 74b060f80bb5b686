from typing import List, Optional
from datetime import date
import logging

from fastapi import APIRouter, Depends

from ..auth import AuthContext, ensure_can_justify, ensure_discipline_allowed, get_auth_context
from ..application.ports.appointments_repo import AppointmentDraft
from ..application.services.lifecycle_service import AppointmentLifecycleService
from ..schemas.scheduling.appointment import (
    AbsenceJustification,
    AppointmentCancel,
    AppointmentComplete,
    AppointmentCreate,
    AppointmentResponse,
    AppointmentUpdate,
)
from .deps import get_lifecycle_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/appointments", tags=["Appointments"])


@router.post("/", response_model=AppointmentResponse, status_code=201)
def book_appointment(
    data: AppointmentCreate,
    auth: AuthContext = Depends(get_auth_context),
    service: AppointmentLifecycleService = Depends(get_lifecycle_service),
):
    ensure_discipline_allowed(auth, data.discipline_id)
    draft = AppointmentDraft(clinic_id=auth.clinic_id, created_by=auth.user_id, **data.model_dump())
    return AppointmentResponse.from_dto(service.create_appointment(draft))


@router.get("/", response_model=List[AppointmentResponse])
def list_appointments(
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    status: Optional[str] = None,
    patient_id: Optional[int] = None,
    therapist_id: Optional[int] = None,
    auth: AuthContext = Depends(get_auth_context),
    service: AppointmentLifecycleService = Depends(get_lifecycle_service),
):
    appts = service.list_appointments(
        auth.clinic_id,
        date_from=date_from,
        date_to=date_to,
        status=status,
        patient_id=patient_id,
        therapist_id=therapist_id,
    )
    return [AppointmentResponse.from_dto(a) for a in appts]


@router.get("/{appointment_id}", response_model=AppointmentResponse)
def get_appointment(
    appointment_id: int,
    auth: AuthContext = Depends(get_auth_context),
    service: AppointmentLifecycleService = Depends(get_lifecycle_service),
):
    return AppointmentResponse.from_dto(service.get_appointment(auth.clinic_id, appointment_id))


@router.put("/{appointment_id}", response_model=AppointmentResponse)
def update_appointment(
    appointment_id: int,
    data: AppointmentUpdate,
    auth: AuthContext = Depends(get_auth_context),
    service: AppointmentLifecycleService = Depends(get_lifecycle_service),
):
    fields = data.model_dump(exclude_unset=True)
    if "discipline_id" in fields:
        ensure_discipline_allowed(auth, fields["discipline_id"])
    return AppointmentResponse.from_dto(service.update_appointment(auth.clinic_id, appointment_id, fields, acting_user_id=auth.user_id))


@router.post("/{appointment_id}/complete", response_model=AppointmentResponse)
def complete_appointment(
    appointment_id: int,
    data: Optional[AppointmentComplete] = None,
    auth: AuthContext = Depends(get_auth_context),
    service: AppointmentLifecycleService = Depends(get_lifecycle_service),
):
    linked_session_id = data.linked_session_id if data else None
    appt = service.complete_appointment(auth.clinic_id, appointment_id, linked_session_id=linked_session_id, acting_user_id=auth.user_id)
    return AppointmentResponse.from_dto(appt)


@router.post("/{appointment_id}/cancel", response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: int,
    data: AppointmentCancel,
    auth: AuthContext = Depends(get_auth_context),
    service: AppointmentLifecycleService = Depends(get_lifecycle_service),
):
    appt = service.cancel_appointment(auth.clinic_id, appointment_id, data.reason_type, data.reason_description, acting_user_id=auth.user_id)
    return AppointmentResponse.from_dto(appt)


@router.delete("/{appointment_id}")
def delete_appointment(
    appointment_id: int,
    auth: AuthContext = Depends(get_auth_context),
    service: AppointmentLifecycleService = Depends(get_lifecycle_service),
):
    service.delete_appointment(auth.clinic_id, appointment_id, acting_user_id=auth.user_id)
    return {"success": True, "message": "Appointment deleted successfully"}


@router.post("/{appointment_id}/justify", response_model=AppointmentResponse)
def justify_absence(
    appointment_id: int,
    data: AbsenceJustification,
    auth: AuthContext = Depends(get_auth_context),
    service: AppointmentLifecycleService = Depends(get_lifecycle_service),
):
    current = service.get_appointment(auth.clinic_id, appointment_id)
    ensure_can_justify(auth, current.therapist_id)
    appt = service.justify_absence(
        auth.clinic_id,
        appointment_id,
        data.reason_type,
        data.reason_description,
        data.missed_by,
        acting_user_id=auth.user_id,
    )
    if appt.is_admin_override():
        logger.info(f"Absence of appointment {appointment_id} justified by user {auth.user_id} on behalf of therapist {appt.therapist_id}")
    return AppointmentResponse.from_dto(appt)
