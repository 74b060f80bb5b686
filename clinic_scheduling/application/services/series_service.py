import logging
from dataclasses import dataclass, field, replace
from datetime import date, time, timedelta
from typing import Any, Dict, List, Optional

from ...exceptions import InvalidStateError, NotFoundError, ValidationError
from ..ports.appointments_repo import (
    AppointmentDraft,
    AppointmentDto,
    AppointmentsRepository,
    AppointmentStatus,
    DetectionSource,
)
from ..ports.audit_logger import AuditLogger
from ..ports.clock import Clock
from ..ports.templates_repo import (
    RecurrenceType,
    TemplateDeactivation,
    TemplateDraft,
    TemplateDto,
    TemplatePause,
    TemplatesRepository,
    TemplateStatus,
)
from .batch import BatchFailure, BatchResult, run_batch
from .conflicts import Candidate
from .lifecycle_service import AppointmentLifecycleService, coerce_enum, conflicts_payload, require_text
from .recurrence import Slot, expand, validate_rule

logger = logging.getLogger(__name__)

SERIES_FIELDS = (
    "recurrence_type",
    "day_of_week",
    "scheduled_time",
    "duration_minutes",
    "end_date",
    "notes",
    "discipline_id",
    "generate_weeks_ahead",
)
CADENCE_FIELDS = ("recurrence_type", "day_of_week")
INSTANCE_FIELDS = ("scheduled_time", "duration_minutes", "notes", "discipline_id")


@dataclass
class SkippedSlot:
    scheduled_date: date
    scheduled_time: time
    reason: str
    conflicts: List[Dict[str, Any]] = field(default_factory=list)
    appointment_id: Optional[int] = None

    def as_dict(self) -> dict:
        return {
            "scheduled_date": self.scheduled_date.isoformat(),
            "scheduled_time": self.scheduled_time.strftime("%H:%M"),
            "reason": self.reason,
            "conflicts": self.conflicts,
            "appointment_id": self.appointment_id,
        }


@dataclass
class GenerationResult:
    generated: List[AppointmentDto] = field(default_factory=list)
    conflicts: List[SkippedSlot] = field(default_factory=list)
    errors: List[BatchFailure] = field(default_factory=list)


@dataclass
class TemplateCreation:
    template: TemplateDto
    generation: GenerationResult


@dataclass
class SeriesEditResult:
    template: TemplateDto
    updated: List[AppointmentDto] = field(default_factory=list)
    removed: List[AppointmentDto] = field(default_factory=list)
    generated: List[AppointmentDto] = field(default_factory=list)
    conflicts: List[SkippedSlot] = field(default_factory=list)
    errors: List[BatchFailure] = field(default_factory=list)


@dataclass
class SeriesDeleteResult:
    template: TemplateDto
    batch: BatchResult

    @property
    def success_count(self) -> int:
        return self.batch.success_count

    @property
    def errors(self) -> List[BatchFailure]:
        return self.batch.failed


@dataclass
class RecurringSeriesService:
    templates: TemplatesRepository
    appointments: AppointmentsRepository
    lifecycle: AppointmentLifecycleService
    clock: Clock
    audit: AuditLogger
    default_weeks_ahead: int = 4
    max_weeks_ahead: int = 16

    # -- templates -----------------------------------------------------------

    def create_template(self, draft: TemplateDraft) -> TemplateCreation:
        if draft.generate_weeks_ahead is None:
            draft.generate_weeks_ahead = self.default_weeks_ahead
        draft.recurrence_type = coerce_enum(RecurrenceType, draft.recurrence_type, "recurrence_type")
        validate_rule(draft)
        self._validate_weeks(draft.generate_weeks_ahead)

        template = self.templates.add(draft)
        self.audit.log(
            "template.created",
            clinic_id=template.clinic_id,
            user_id=draft.created_by,
            entity_id=template.id,
            details={"recurrence_type": template.recurrence_type.value, "day_of_week": template.day_of_week},
        )
        logger.info(f"Recurring template {template.id} created for patient {template.patient_id} with therapist {template.therapist_id}")

        today = self.clock.today()
        slots = expand(
            template,
            window_start=max(template.start_date, today),
            weeks_ahead=template.generate_weeks_ahead,
            max_weeks=self.max_weeks_ahead,
        )
        generation = self._generate(template, slots, acting_user_id=draft.created_by)
        template = self.templates.get(template.clinic_id, template.id) or template
        return TemplateCreation(template=template, generation=generation)

    def get_template(self, clinic_id: int, template_id: int) -> TemplateDto:
        template = self.templates.get(clinic_id, template_id)
        if not template:
            raise NotFoundError(f"Recurring template {template_id} not found")
        return template

    def list_templates(self, clinic_id: int, patient_id: Optional[int] = None, therapist_id: Optional[int] = None, status: Optional[str] = None) -> List[TemplateDto]:
        rows = self.templates.list(clinic_id, patient_id=patient_id, therapist_id=therapist_id)
        if status:
            wanted = coerce_enum(TemplateStatus, status, "status")
            today = self.clock.today()
            rows = [t for t in rows if t.status_on(today) == wanted]
        return rows

    def series_appointments(self, clinic_id: int, template_id: int, date_from: Optional[date] = None, status: Optional[str] = None) -> List[AppointmentDto]:
        self.get_template(clinic_id, template_id)
        status_enum = coerce_enum(AppointmentStatus, status, "status") if status else None
        return self.appointments.list_for_template(clinic_id, template_id, date_from=date_from, status=status_enum)

    def preview_conflicts(self, draft: TemplateDraft) -> List[SkippedSlot]:
        """Conflicts a template would hit if it were created now; nothing is written."""
        if draft.generate_weeks_ahead is None:
            draft.generate_weeks_ahead = self.default_weeks_ahead
        draft.recurrence_type = coerce_enum(RecurrenceType, draft.recurrence_type, "recurrence_type")
        validate_rule(draft)
        self._validate_weeks(draft.generate_weeks_ahead)
        slots = expand(
            draft,
            window_start=max(draft.start_date, self.clock.today()),
            weeks_ahead=draft.generate_weeks_ahead,
            max_weeks=self.max_weeks_ahead,
        )
        skipped = []
        for slot in slots:
            conflicts = self.lifecycle.check_conflicts(draft.clinic_id, _candidate(draft, slot))
            if conflicts:
                skipped.append(SkippedSlot(slot.date, slot.time, "conflict", conflicts_payload(conflicts)))
        return skipped

    # -- generation ----------------------------------------------------------

    def generate_more(self, clinic_id: int, template_id: int, weeks_ahead: Optional[int] = None, acting_user_id: Optional[int] = None) -> GenerationResult:
        template = self.get_template(clinic_id, template_id)
        today = self.clock.today()
        status = template.status_on(today)
        if status in (TemplateStatus.INACTIVE, TemplateStatus.PAUSED):
            raise InvalidStateError(f"Cannot generate appointments for a {status.value} template")
        if status == TemplateStatus.EXPIRED:
            return GenerationResult()

        weeks = weeks_ahead if weeks_ahead is not None else template.generate_weeks_ahead
        self._validate_weeks(weeks)

        # continue after the last instance so nothing is generated twice
        latest = self.appointments.latest_date_for_template(clinic_id, template_id)
        window_start = max(latest + timedelta(days=1), today) if latest else max(template.start_date, today)
        slots = expand(template, window_start=window_start, weeks_ahead=weeks, max_weeks=self.max_weeks_ahead)
        return self._generate(template, slots, acting_user_id=acting_user_id)

    def _generate(self, template: TemplateDto, slots: List[Slot], acting_user_id: Optional[int] = None) -> GenerationResult:
        result = GenerationResult()
        for slot in slots:
            conflicts = self.lifecycle.check_conflicts(template.clinic_id, _candidate(template, slot))
            if conflicts:
                result.conflicts.append(SkippedSlot(slot.date, slot.time, "conflict", conflicts_payload(conflicts)))
                continue
            draft = AppointmentDraft(
                clinic_id=template.clinic_id,
                patient_id=template.patient_id,
                therapist_id=template.therapist_id,
                scheduled_date=slot.date,
                scheduled_time=slot.time,
                duration_minutes=slot.duration_minutes,
                discipline_id=template.discipline_id,
                notes=template.notes,
                recurring_template_id=template.id,
                detection_source=DetectionSource.RECURRING,
                created_by=acting_user_id,
            )
            try:
                result.generated.append(self.lifecycle.persist(draft))
            except Exception as e:
                logger.error(f"Failed to generate {slot.date} for template {template.id}: {e}")
                result.errors.append(BatchFailure(item=slot.date.isoformat(), kind="storage_error", reason=str(e)))

        if result.generated:
            last = max(a.scheduled_date for a in result.generated)
            if template.last_generated_date is None or last > template.last_generated_date:
                self.templates.save(replace(template, last_generated_date=last, updated_at=self.clock.now()))
        logger.info(f"Template {template.id}: {len(result.generated)} appointments generated, {len(result.conflicts)} conflicts")
        return result

    # -- pause / resume / deactivate ------------------------------------------

    def pause_template(self, clinic_id: int, template_id: int, reason: Optional[str], paused_until: Optional[date] = None, acting_user_id: Optional[int] = None) -> TemplateDto:
        reason = require_text(reason, "reason")
        template = self.get_template(clinic_id, template_id)
        today = self.clock.today()
        status = template.status_on(today)
        if status == TemplateStatus.INACTIVE:
            raise InvalidStateError("Cannot pause an inactive template")
        if status == TemplateStatus.PAUSED:
            raise InvalidStateError("Template is already paused")
        if paused_until is not None and paused_until < today:
            raise ValidationError("paused_until cannot be in the past")

        # already booked future instances stay as they are; pausing only stops generation
        pause = TemplatePause(reason=reason, paused_at=self.clock.now(), paused_until=paused_until)
        saved = self.templates.save(replace(template, pause=pause, updated_at=self.clock.now()))
        self.audit.log("template.paused", clinic_id=clinic_id, user_id=acting_user_id, entity_id=template_id, details={"reason": reason, "paused_until": paused_until.isoformat() if paused_until else None})
        return saved

    def resume_template(self, clinic_id: int, template_id: int, acting_user_id: Optional[int] = None) -> TemplateCreation:
        template = self.get_template(clinic_id, template_id)
        today = self.clock.today()
        status = template.status_on(today)
        if status != TemplateStatus.PAUSED:
            raise InvalidStateError(f"Only paused templates can be resumed (current status: {status.value})")

        template = self.templates.save(replace(template, pause=None, updated_at=self.clock.now()))
        self.audit.log("template.resumed", clinic_id=clinic_id, user_id=acting_user_id, entity_id=template_id)

        # catch up on the weeks that were not generated while paused; never in the past
        latest = self.appointments.latest_date_for_template(clinic_id, template_id)
        window_start = max(latest + timedelta(days=1), today) if latest else max(template.start_date, today)
        window_end = today + timedelta(days=template.generate_weeks_ahead * 7 - 1)
        slots = []
        if window_start <= window_end and template.status_on(today) == TemplateStatus.ACTIVE:
            slots = expand(template, window_start=window_start, window_end=window_end, max_weeks=self.max_weeks_ahead)
        generation = self._generate(template, slots, acting_user_id=acting_user_id)
        logger.info(f"Template {template_id} resumed, {len(generation.generated)} appointments generated")
        template = self.templates.get(clinic_id, template_id) or template
        return TemplateCreation(template=template, generation=generation)

    def deactivate_template(self, clinic_id: int, template_id: int, reason: Optional[str], acting_user_id: Optional[int] = None) -> TemplateDto:
        reason = require_text(reason, "reason")
        template = self.get_template(clinic_id, template_id)
        if template.deactivation is not None:
            raise InvalidStateError("Template is already inactive")
        deactivation = TemplateDeactivation(reason=reason, deactivated_at=self.clock.now(), deactivated_by=acting_user_id)
        saved = self.templates.save(replace(template, deactivation=deactivation, updated_at=self.clock.now()))
        self.audit.log("template.deactivated", clinic_id=clinic_id, user_id=acting_user_id, entity_id=template_id, details={"reason": reason})
        logger.info(f"Template {template_id} deactivated: {reason}")
        return saved

    # -- series edit / delete --------------------------------------------------

    def edit_series(self, clinic_id: int, template_id: int, fields: Dict[str, Any], from_date: Optional[date] = None, acting_user_id: Optional[int] = None) -> SeriesEditResult:
        """Change the template and carry the change to future scheduled instances.

        Completed, missed and cancelled instances are never touched. A new
        cadence replaces the future scheduled instances; other changes are
        applied to each of them in place.
        """
        template = self.get_template(clinic_id, template_id)
        today = self.clock.today()
        if template.status_on(today) == TemplateStatus.INACTIVE:
            raise InvalidStateError("Cannot edit the series of an inactive template")
        from_date = from_date or today
        if from_date < today:
            raise ValidationError("from_date cannot be in the past; past instances are never rewritten")

        changes = {k: v for k, v in fields.items() if k in SERIES_FIELDS}
        if not changes:
            raise ValidationError("No editable series field supplied")
        if "recurrence_type" in changes:
            changes["recurrence_type"] = coerce_enum(RecurrenceType, changes["recurrence_type"], "recurrence_type")
        for required in ("recurrence_type", "day_of_week", "scheduled_time", "duration_minutes", "generate_weeks_ahead"):
            if required in changes and changes[required] is None:
                raise ValidationError(f"{required} cannot be empty")

        edited = replace(template, **changes, updated_at=self.clock.now())
        validate_rule(edited)
        self._validate_weeks(edited.generate_weeks_ahead)

        future = self.appointments.list_for_template(clinic_id, template_id, date_from=from_date, status=AppointmentStatus.SCHEDULED)
        original = template
        template = self.templates.save(edited)
        result = SeriesEditResult(template=template)

        cadence_changed = any(getattr(edited, k) != getattr(original, k) for k in CADENCE_FIELDS)
        if cadence_changed:
            removal = self._delete_instances(clinic_id, future, acting_user_id)
            result.removed = removal.succeeded
            result.errors.extend(removal.failed)
            # a paused series is refilled by the catch-up on resume
            if edited.status_on(today) == TemplateStatus.ACTIVE:
                window_end = from_date + timedelta(days=edited.generate_weeks_ahead * 7 - 1)
                slots = expand(edited, window_start=from_date, window_end=window_end, max_weeks=self.max_weeks_ahead)
                generation = self._generate(template, slots, acting_user_id=acting_user_id)
                result.generated = generation.generated
                result.conflicts.extend(generation.conflicts)
                result.errors.extend(generation.errors)
        else:
            beyond_end = [a for a in future if edited.end_date is not None and a.scheduled_date > edited.end_date]
            if beyond_end:
                removal = self._delete_instances(clinic_id, beyond_end, acting_user_id)
                result.removed = removal.succeeded
                result.errors.extend(removal.failed)
            instance_changes = {k: v for k, v in changes.items() if k in INSTANCE_FIELDS}
            if instance_changes:
                remaining = [a for a in future if a not in beyond_end]
                self._apply_to_instances(clinic_id, remaining, instance_changes, result)

        self.audit.log(
            "template.series_edited",
            clinic_id=clinic_id,
            user_id=acting_user_id,
            entity_id=template_id,
            details={"fields": sorted(changes), "from_date": from_date.isoformat(), "updated": len(result.updated), "removed": len(result.removed), "generated": len(result.generated)},
        )
        return result

    def _apply_to_instances(self, clinic_id: int, instances: List[AppointmentDto], instance_changes: Dict[str, Any], result: SeriesEditResult) -> None:
        reschedules = any(k in instance_changes for k in ("scheduled_time", "duration_minutes"))
        for appt in instances:
            updated = replace(appt, **instance_changes, updated_at=self.clock.now())
            if reschedules:
                conflicts = self.lifecycle.check_conflicts(clinic_id, _candidate(updated), exclude_id=appt.id)
                if conflicts:
                    result.conflicts.append(SkippedSlot(appt.scheduled_date, updated.scheduled_time, "conflict", conflicts_payload(conflicts), appointment_id=appt.id))
                    continue
            try:
                result.updated.append(self.appointments.save(updated))
            except Exception as e:
                logger.error(f"Failed to update appointment {appt.id} of series: {e}")
                result.errors.append(BatchFailure(item=appt.id, kind="storage_error", reason=str(e)))

    def delete_series(self, clinic_id: int, template_id: int, from_date: Optional[date] = None, deactivate: bool = True, reason: Optional[str] = None, acting_user_id: Optional[int] = None) -> SeriesDeleteResult:
        template = self.get_template(clinic_id, template_id)
        from_date = from_date or self.clock.today()
        instances = self.appointments.list_for_template(clinic_id, template_id, date_from=from_date)
        batch = self._delete_instances(clinic_id, instances, acting_user_id)

        if deactivate and template.deactivation is None:
            template = self.deactivate_template(clinic_id, template_id, reason or "Series deleted", acting_user_id=acting_user_id)
        logger.info(f"Series {template_id}: {batch.success_count} appointments deleted, {len(batch.failed)} kept")
        return SeriesDeleteResult(template=template, batch=batch)

    def _delete_instances(self, clinic_id: int, instances: List[AppointmentDto], acting_user_id: Optional[int]) -> BatchResult:
        ordered = sorted(instances, key=lambda a: (a.scheduled_date, a.scheduled_time))
        return run_batch(
            ordered,
            lambda a: self.lifecycle.delete_appointment(clinic_id, a.id, acting_user_id=acting_user_id),
            key=lambda a: a.id,
        )

    def _validate_weeks(self, weeks: int) -> None:
        if weeks is None or not 1 <= int(weeks) <= self.max_weeks_ahead:
            raise ValidationError(f"generate_weeks_ahead must be between 1 and {self.max_weeks_ahead}")


def _candidate(source, slot: Optional[Slot] = None) -> Candidate:
    return Candidate(
        patient_id=source.patient_id,
        therapist_id=source.therapist_id,
        scheduled_date=slot.date if slot else source.scheduled_date,
        scheduled_time=slot.time if slot else source.scheduled_time,
        duration_minutes=slot.duration_minutes if slot else source.duration_minutes,
    )
