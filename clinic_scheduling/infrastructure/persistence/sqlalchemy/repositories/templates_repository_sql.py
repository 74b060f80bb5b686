from datetime import datetime
from typing import List, Optional

from sqlmodel import Session, select

from .....db.models import AppointmentTemplate
from .....application.ports.templates_repo import (
    RecurrenceType,
    TemplateDeactivation,
    TemplateDraft,
    TemplateDto,
    TemplatePause,
    TemplatesRepository,
)


class SqlTemplatesRepository(TemplatesRepository):
    def __init__(self, session: Session):
        self.session = session

    def _to_dto(self, t: AppointmentTemplate) -> TemplateDto:
        pause = None
        if t.paused_at is not None:
            pause = TemplatePause(reason=t.pause_reason or "", paused_at=t.paused_at, paused_until=t.paused_until)
        deactivation = None
        if t.deactivated_at is not None:
            deactivation = TemplateDeactivation(reason=t.deactivation_reason or "", deactivated_at=t.deactivated_at, deactivated_by=t.deactivated_by)
        return TemplateDto(
            id=t.id,
            clinic_id=t.clinic_id,
            patient_id=t.patient_id,
            therapist_id=t.therapist_id,
            recurrence_type=RecurrenceType(t.recurrence_type),
            day_of_week=t.day_of_week,
            scheduled_time=t.scheduled_time,
            duration_minutes=t.duration_minutes,
            start_date=t.start_date,
            end_date=t.end_date,
            discipline_id=t.discipline_id,
            generate_weeks_ahead=t.generate_weeks_ahead,
            notes=t.notes,
            created_by=t.created_by,
            pause=pause,
            deactivation=deactivation,
            last_generated_date=t.last_generated_date,
            created_at=t.created_at,
            updated_at=t.updated_at,
        )

    def _commit(self, row: AppointmentTemplate) -> AppointmentTemplate:
        try:
            self.session.add(row)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.session.refresh(row)
        return row

    def add(self, draft: TemplateDraft) -> TemplateDto:
        row = AppointmentTemplate(
            clinic_id=draft.clinic_id,
            patient_id=draft.patient_id,
            therapist_id=draft.therapist_id,
            discipline_id=draft.discipline_id,
            recurrence_type=RecurrenceType(draft.recurrence_type).value,
            day_of_week=draft.day_of_week,
            scheduled_time=draft.scheduled_time,
            duration_minutes=draft.duration_minutes,
            start_date=draft.start_date,
            end_date=draft.end_date,
            generate_weeks_ahead=draft.generate_weeks_ahead,
            notes=draft.notes,
            created_by=draft.created_by,
        )
        return self._to_dto(self._commit(row))

    def get(self, clinic_id: int, template_id: int) -> Optional[TemplateDto]:
        t = self.session.exec(
            select(AppointmentTemplate)
            .where(AppointmentTemplate.id == template_id)
            .where(AppointmentTemplate.clinic_id == clinic_id)
        ).first()
        return self._to_dto(t) if t else None

    def list(self, clinic_id: int, patient_id: Optional[int] = None, therapist_id: Optional[int] = None) -> List[TemplateDto]:
        query = select(AppointmentTemplate).where(AppointmentTemplate.clinic_id == clinic_id)
        if patient_id is not None:
            query = query.where(AppointmentTemplate.patient_id == patient_id)
        if therapist_id is not None:
            query = query.where(AppointmentTemplate.therapist_id == therapist_id)
        rows = self.session.exec(query.order_by(AppointmentTemplate.day_of_week, AppointmentTemplate.scheduled_time)).all()
        return [self._to_dto(r) for r in rows]

    def save(self, template: TemplateDto) -> TemplateDto:
        t = self.session.exec(
            select(AppointmentTemplate)
            .where(AppointmentTemplate.id == template.id)
            .where(AppointmentTemplate.clinic_id == template.clinic_id)
        ).first()
        if not t:
            raise LookupError(f"Template {template.id} does not exist")
        t.patient_id = template.patient_id
        t.therapist_id = template.therapist_id
        t.discipline_id = template.discipline_id
        t.recurrence_type = RecurrenceType(template.recurrence_type).value
        t.day_of_week = template.day_of_week
        t.scheduled_time = template.scheduled_time
        t.duration_minutes = template.duration_minutes
        t.start_date = template.start_date
        t.end_date = template.end_date
        t.generate_weeks_ahead = template.generate_weeks_ahead
        t.notes = template.notes
        t.last_generated_date = template.last_generated_date

        pause = template.pause
        t.pause_reason = pause.reason if pause else None
        t.paused_at = pause.paused_at if pause else None
        t.paused_until = pause.paused_until if pause else None
        deactivation = template.deactivation
        t.deactivation_reason = deactivation.reason if deactivation else None
        t.deactivated_at = deactivation.deactivated_at if deactivation else None
        t.deactivated_by = deactivation.deactivated_by if deactivation else None

        t.updated_at = template.updated_at or datetime.utcnow()
        return self._to_dto(self._commit(t))
