from .assignment import AssignmentPrompter
from .timers import CancellableTimer
from .tracker import PresencePublisher, PresenceTracker

__all__ = [
    "AssignmentPrompter",
    "CancellableTimer",
    "PresencePublisher",
    "PresenceTracker",
]
