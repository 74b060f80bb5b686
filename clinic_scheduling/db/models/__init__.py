# Models package (re-export feature modules for stable imports)
from .scheduling.template import AppointmentTemplate
from .scheduling.appointment import Appointment
from .scheduling.therapy_session import TherapySession

__all__ = [
    "AppointmentTemplate",
    "Appointment",
    "TherapySession",
]
