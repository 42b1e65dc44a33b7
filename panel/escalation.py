from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from .commands import NotificationSender
from .parser import LineEvent, SirenAssertedEvent, SirenDeassertedEvent
from .state import AlarmState
from .users import UserRegistry

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 10.0
BROADCAST_PREFIX = "UNEXPECTED ALARM ACTIVITY: "


class EscalationMonitor:
    """Decides when siren activity is worth telling every user about.

    A siren that has been sounding for ``debounce_seconds`` escalates once. A
    siren that stops before then escalates on de-assert. Either way each
    activation produces a single pending escalation.
    """

    def __init__(
        self,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.debounce_seconds = debounce_seconds
        self.clock = clock
        self.siren_on_since: Optional[float] = None
        self.pending = False

    def observe(self, event: LineEvent, now: Optional[float] = None) -> None:
        now = self.clock() if now is None else now
        if isinstance(event, SirenAssertedEvent):
            self.siren_on_since = now
        elif isinstance(event, SirenDeassertedEvent):
            if self.siren_on_since is not None:
                logger.warning("Siren stopped after %.1fs, escalating", now - self.siren_on_since)
                self.pending = True
            self.siren_on_since = None

    def tick(self, now: Optional[float] = None) -> None:
        if self.siren_on_since is None:
            return
        now = self.clock() if now is None else now
        if now - self.siren_on_since >= self.debounce_seconds:
            logger.warning("Siren sounding for %.1fs, escalating", now - self.siren_on_since)
            self.pending = True
            self.siren_on_since = None

    def drain(self) -> bool:
        if not self.pending:
            return False
        self.pending = False
        return True


def broadcast_escalation(state: AlarmState, registry: UserRegistry, sender: NotificationSender) -> int:
    report = state.render_status_report().strip().rstrip(".")
    users = registry.users
    others = max(0, len(users) - 1)
    body = (
        f"{BROADCAST_PREFIX}{report}. You and {others} other(s) have been sent this message. "
        "Reply with help for a reminder of commands."
    )
    sent = 0
    for user in users:
        if sender.send(user.phone, body):
            sent += 1
        else:
            logger.error("Escalation to %s failed", user.phone)
    logger.info("Escalation sent to %s of %s users", sent, len(users))
    return sent
