"""
Incident lifecycle: state machine and controller.
"""

from .controller import IncidentController
from .states import TRANSITIONS, can_transition, check_transition, is_valid_path

__all__ = ["IncidentController", "TRANSITIONS", "can_transition", "check_transition", "is_valid_path"]
