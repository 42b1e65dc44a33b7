"""Alarm state, user authorisation and command handling for the SMS gateway."""

from .commands import CommandEngine, CommandResult
from .escalation import EscalationMonitor, broadcast_escalation
from .parser import classify_line
from .state import AlarmState
from .users import UserRegistry
