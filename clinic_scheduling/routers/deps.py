from datetime import datetime

from fastapi import Depends
from sqlmodel import Session

from ..application.services.lifecycle_service import AppointmentLifecycleService
from ..application.services.maintenance_service import MaintenanceService
from ..application.services.reconciliation_service import MatchingPolicy, ReconciliationService
from ..application.services.series_service import RecurringSeriesService
from ..application.services.sweeper_service import MissedAppointmentSweeper
from ..core.config import settings
from ..database import get_session
from ..infrastructure.audit.std_logger import StdAuditLogger
from ..infrastructure.clock.system_clock import SystemClock
from ..infrastructure.persistence.sqlalchemy.repositories.appointments_repository_sql import SqlAppointmentsRepository
from ..infrastructure.persistence.sqlalchemy.repositories.templates_repository_sql import SqlTemplatesRepository
from ..infrastructure.persistence.sqlalchemy.repositories.therapy_sessions_repository_sql import SqlTherapySessionsRepository


def get_clock() -> SystemClock:
    return SystemClock(settings.CLINIC_TIMEZONE)


def get_audit_logger() -> StdAuditLogger:
    return StdAuditLogger()


def get_lifecycle_service(
    session: Session = Depends(get_session),
    clock=Depends(get_clock),
    audit=Depends(get_audit_logger),
) -> AppointmentLifecycleService:
    return AppointmentLifecycleService(
        repo=SqlAppointmentsRepository(session),
        clock=clock,
        audit=audit,
        sessions=SqlTherapySessionsRepository(session),
    )


def get_series_service(
    session: Session = Depends(get_session),
    lifecycle: AppointmentLifecycleService = Depends(get_lifecycle_service),
    clock=Depends(get_clock),
    audit=Depends(get_audit_logger),
) -> RecurringSeriesService:
    return RecurringSeriesService(
        templates=SqlTemplatesRepository(session),
        appointments=lifecycle.repo,
        lifecycle=lifecycle,
        clock=clock,
        audit=audit,
        default_weeks_ahead=settings.DEFAULT_GENERATE_WEEKS_AHEAD,
        max_weeks_ahead=settings.MAX_GENERATE_WEEKS_AHEAD,
    )


def default_matching_policy() -> MatchingPolicy:
    return MatchingPolicy(
        date_tolerance_days=settings.MATCH_DATE_TOLERANCE_DAYS,
        require_same_therapist=settings.MATCH_REQUIRE_SAME_THERAPIST,
    )


def get_reconciliation_service(
    lifecycle: AppointmentLifecycleService = Depends(get_lifecycle_service),
    clock=Depends(get_clock),
) -> ReconciliationService:
    return ReconciliationService(
        appointments=lifecycle.repo,
        sessions=lifecycle.sessions,
        lifecycle=lifecycle,
        clock=clock,
        default_policy=default_matching_policy(),
        default_session_time=datetime.strptime(settings.RETROACTIVE_DEFAULT_TIME, "%H:%M").time(),
        batch_limit=settings.RETROACTIVE_BATCH_LIMIT,
    )


def get_sweeper(
    lifecycle: AppointmentLifecycleService = Depends(get_lifecycle_service),
    clock=Depends(get_clock),
) -> MissedAppointmentSweeper:
    return MissedAppointmentSweeper(
        appointments=lifecycle.repo,
        lifecycle=lifecycle,
        clock=clock,
        min_grace_hours=settings.MIN_GRACE_HOURS,
        max_grace_hours=settings.MAX_GRACE_HOURS,
    )


def get_maintenance_service(
    reconciliation: ReconciliationService = Depends(get_reconciliation_service),
    sweeper: MissedAppointmentSweeper = Depends(get_sweeper),
) -> MaintenanceService:
    return MaintenanceService(
        reconciliation=reconciliation,
        sweeper=sweeper,
        grace_hours=settings.MISSED_GRACE_HOURS,
        lookback_days=settings.ORPHAN_LOOKBACK_DAYS,
    )
