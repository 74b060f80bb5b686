# Schemas package (re-export feature modules for stable imports)
from .scheduling.appointment import *
from .scheduling.template import *
from .scheduling.reconciliation import *
