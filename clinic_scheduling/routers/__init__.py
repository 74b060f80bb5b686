# Routers package
from . import recurring_templates_router
from . import appointments_router
from . import reconciliation_router
from . import maintenance_router

__all__ = [
    "recurring_templates_router",
    "appointments_router",
    "reconciliation_router",
    "maintenance_router",
]
