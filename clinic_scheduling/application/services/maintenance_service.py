import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict

from .reconciliation_service import ReconciliationService
from .sweeper_service import MissedAppointmentSweeper

logger = logging.getLogger(__name__)


@dataclass
class MaintenanceService:
    """One on-demand housekeeping pass for a clinic, meant for an external cron."""

    reconciliation: ReconciliationService
    sweeper: MissedAppointmentSweeper
    grace_hours: float = 2.0
    lookback_days: int = 7

    def run(self, clinic_id: int) -> Dict[str, Any]:
        today = self.reconciliation.clock.today()
        date_from = today - timedelta(days=self.lookback_days)

        # link sessions first so their appointments are not swept as missed
        resolved = self.reconciliation.auto_resolve(clinic_id, date_from, today)
        swept = self.sweeper.sweep(self.grace_hours, clinic_id=clinic_id)
        report = self.reconciliation.detect(clinic_id, date_from, today)

        summary = {
            "auto_resolved": resolved.success_count,
            "auto_resolve_errors": [f.as_dict() for f in resolved.failed],
            "marked_missed": swept.count,
            "orphan_sessions": len(report.orphan_sessions),
            "stale_scheduled": len(report.stale_scheduled),
            "date_from": date_from.isoformat(),
            "date_to": today.isoformat(),
        }
        logger.info(f"Maintenance run for clinic {clinic_id}: {summary}")
        return summary
