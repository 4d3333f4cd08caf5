"""Mock objects for testing."""

from .mock_actions import FailingAction, GateAction, RecordAction
from .mock_services import FakeSleep, RecordingCalendar, RecordingEmail, RecordingNotifier

__all__ = [
    "FailingAction",
    "FakeSleep",
    "GateAction",
    "RecordAction",
    "RecordingCalendar",
    "RecordingEmail",
    "RecordingNotifier",
]
