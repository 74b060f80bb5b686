from typing import List, Optional
from datetime import date
import logging

from fastapi import APIRouter, Depends

from ..auth import AuthContext, ensure_discipline_allowed, get_auth_context
from ..application.ports.templates_repo import TemplateDraft
from ..application.services.series_service import GenerationResult, RecurringSeriesService
from ..schemas.scheduling.appointment import AppointmentResponse, BatchFailureResponse, ConflictResponse
from ..schemas.scheduling.template import (
    ConflictCheckRequest,
    DeactivateRequest,
    GenerateRequest,
    GenerationResponse,
    PauseRequest,
    SeriesDeleteRequest,
    SeriesDeleteResponse,
    SeriesEditRequest,
    SeriesEditResponse,
    SkippedSlotResponse,
    TemplateCreate,
    TemplateResponse,
)
from .deps import get_clock, get_series_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/recurring-templates", tags=["Recurring Templates"])


def _generation_response(template, generation: GenerationResult, today: date) -> GenerationResponse:
    return GenerationResponse(
        template=TemplateResponse.from_dto(template, today),
        generated=[AppointmentResponse.from_dto(a) for a in generation.generated],
        generated_count=len(generation.generated),
        conflicts=[SkippedSlotResponse(**s.as_dict()) for s in generation.conflicts],
        errors=[BatchFailureResponse(**f.as_dict()) for f in generation.errors],
    )


@router.post("/", response_model=GenerationResponse, status_code=201)
def create_template(
    data: TemplateCreate,
    auth: AuthContext = Depends(get_auth_context),
    service: RecurringSeriesService = Depends(get_series_service),
    clock=Depends(get_clock),
):
    ensure_discipline_allowed(auth, data.discipline_id)
    draft = TemplateDraft(clinic_id=auth.clinic_id, created_by=auth.user_id, **data.model_dump())
    created = service.create_template(draft)
    return _generation_response(created.template, created.generation, clock.today())


@router.get("/", response_model=List[TemplateResponse])
def list_templates(
    patient_id: Optional[int] = None,
    therapist_id: Optional[int] = None,
    status: Optional[str] = None,
    auth: AuthContext = Depends(get_auth_context),
    service: RecurringSeriesService = Depends(get_series_service),
    clock=Depends(get_clock),
):
    today = clock.today()
    templates = service.list_templates(auth.clinic_id, patient_id=patient_id, therapist_id=therapist_id, status=status)
    return [TemplateResponse.from_dto(t, today) for t in templates]


@router.post("/check-conflicts", response_model=ConflictResponse)
def check_conflicts(
    data: ConflictCheckRequest,
    auth: AuthContext = Depends(get_auth_context),
    service: RecurringSeriesService = Depends(get_series_service),
):
    fields = data.model_dump(exclude={"weeks_ahead"})
    draft = TemplateDraft(clinic_id=auth.clinic_id, generate_weeks_ahead=data.weeks_ahead, **fields)
    skipped = service.preview_conflicts(draft)
    return ConflictResponse(has_conflicts=bool(skipped), conflicts=[s.as_dict() for s in skipped])


@router.get("/{template_id}", response_model=TemplateResponse)
def get_template(
    template_id: int,
    auth: AuthContext = Depends(get_auth_context),
    service: RecurringSeriesService = Depends(get_series_service),
    clock=Depends(get_clock),
):
    return TemplateResponse.from_dto(service.get_template(auth.clinic_id, template_id), clock.today())


@router.get("/{template_id}/appointments", response_model=List[AppointmentResponse])
def list_series_appointments(
    template_id: int,
    date_from: Optional[date] = None,
    status: Optional[str] = None,
    auth: AuthContext = Depends(get_auth_context),
    service: RecurringSeriesService = Depends(get_series_service),
):
    appts = service.series_appointments(auth.clinic_id, template_id, date_from=date_from, status=status)
    return [AppointmentResponse.from_dto(a) for a in appts]


@router.post("/{template_id}/generate", response_model=GenerationResponse)
def generate_more(
    template_id: int,
    data: Optional[GenerateRequest] = None,
    auth: AuthContext = Depends(get_auth_context),
    service: RecurringSeriesService = Depends(get_series_service),
    clock=Depends(get_clock),
):
    data = data or GenerateRequest()
    generation = service.generate_more(auth.clinic_id, template_id, weeks_ahead=data.weeks_ahead, acting_user_id=auth.user_id)
    template = service.get_template(auth.clinic_id, template_id)
    return _generation_response(template, generation, clock.today())


@router.post("/{template_id}/pause", response_model=TemplateResponse)
def pause_template(
    template_id: int,
    data: PauseRequest,
    auth: AuthContext = Depends(get_auth_context),
    service: RecurringSeriesService = Depends(get_series_service),
    clock=Depends(get_clock),
):
    template = service.pause_template(auth.clinic_id, template_id, data.reason, paused_until=data.paused_until, acting_user_id=auth.user_id)
    return TemplateResponse.from_dto(template, clock.today())


@router.post("/{template_id}/resume", response_model=GenerationResponse)
def resume_template(
    template_id: int,
    auth: AuthContext = Depends(get_auth_context),
    service: RecurringSeriesService = Depends(get_series_service),
    clock=Depends(get_clock),
):
    resumed = service.resume_template(auth.clinic_id, template_id, acting_user_id=auth.user_id)
    return _generation_response(resumed.template, resumed.generation, clock.today())


@router.post("/{template_id}/deactivate", response_model=TemplateResponse)
def deactivate_template(
    template_id: int,
    data: DeactivateRequest,
    auth: AuthContext = Depends(get_auth_context),
    service: RecurringSeriesService = Depends(get_series_service),
    clock=Depends(get_clock),
):
    template = service.deactivate_template(auth.clinic_id, template_id, data.reason, acting_user_id=auth.user_id)
    return TemplateResponse.from_dto(template, clock.today())


@router.put("/{template_id}/series", response_model=SeriesEditResponse)
def edit_series(
    template_id: int,
    data: SeriesEditRequest,
    auth: AuthContext = Depends(get_auth_context),
    service: RecurringSeriesService = Depends(get_series_service),
    clock=Depends(get_clock),
):
    fields = data.model_dump(exclude_unset=True, exclude={"from_date"})
    if "discipline_id" in fields:
        ensure_discipline_allowed(auth, fields["discipline_id"])
    result = service.edit_series(auth.clinic_id, template_id, fields, from_date=data.from_date, acting_user_id=auth.user_id)
    return SeriesEditResponse(
        template=TemplateResponse.from_dto(result.template, clock.today()),
        updated=[AppointmentResponse.from_dto(a) for a in result.updated],
        removed=[a.id for a in result.removed],
        generated=[AppointmentResponse.from_dto(a) for a in result.generated],
        conflicts=[SkippedSlotResponse(**s.as_dict()) for s in result.conflicts],
        errors=[BatchFailureResponse(**f.as_dict()) for f in result.errors],
    )


@router.delete("/{template_id}/series", response_model=SeriesDeleteResponse)
def delete_series(
    template_id: int,
    data: Optional[SeriesDeleteRequest] = None,
    auth: AuthContext = Depends(get_auth_context),
    service: RecurringSeriesService = Depends(get_series_service),
    clock=Depends(get_clock),
):
    data = data or SeriesDeleteRequest()
    result = service.delete_series(
        auth.clinic_id,
        template_id,
        from_date=data.from_date,
        deactivate=data.deactivate,
        reason=data.reason,
        acting_user_id=auth.user_id,
    )
    return SeriesDeleteResponse(
        template=TemplateResponse.from_dto(result.template, clock.today()),
        deleted_count=result.success_count,
        total=result.batch.total,
        errors=[BatchFailureResponse(**f.as_dict()) for f in result.errors],
    )
