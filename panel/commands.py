from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional, Protocol

from .state import AlarmState
from .storage import Role
from .users import (
    AlreadyAuthorized,
    CapacityExceeded,
    InvalidFormat,
    LastAdminProtected,
    NotAuthorized,
    SelfRemovalDenied,
    UserRegistry,
)

logger = logging.getLogger(__name__)

MAX_REPLY_BYTES = 8192

HELP_TEXT = (
    "Valid commands:\n"
    "    arm - arm alarm\n"
    " disarm - disarm alarm\n"
    " status - list faulted zones, and if alarm is armed\n"
    " add <phone number> - add phone number to list of authorised users.\n"
    " admin <phone number> - add phone number to list of authorised users, "
    "with the ability to add and delete others\n"
    " del <phone number> - delete phone number from list of authorised users.\n"
    " list - list authorised numbers.\n"
)

WELCOME_MEMBER = "You are now authorised to remotely control the alarm.  Reply HELP for more information."
WELCOME_ADMIN = (
    "You are now authorised to remotely control and administer the alarm.  "
    "With great power comes great responsibility. Reply HELP for more information."
)
BAD_NUMBER_TEXT = "Telephone numbers must be in international format, e.g., +614567898901234567"
TOO_MANY_TEXT = "Too many users. Delete one or more and try again."

_WITH_ARGUMENT = re.compile(r"^(add|admin|del)\s+(.+)$", re.IGNORECASE)


class NotificationSender(Protocol):
    def send(self, phone: str, body: str) -> bool:
        ...


class PanelController(Protocol):
    def arm(self) -> int:
        ...

    def disarm(self) -> int:
        ...


@dataclass
class CommandResult:
    verb: str
    reply: str
    argument: Optional[str] = None


def truncate_reply(text: str, limit: int = MAX_REPLY_BYTES) -> str:
    encoded = text.encode("utf-8")
    if len(encoded) <= limit:
        return text
    return encoded[:limit].decode("utf-8", errors="ignore")


class CommandEngine:
    def __init__(
        self,
        state: AlarmState,
        registry: UserRegistry,
        panel: PanelController,
        sender: NotificationSender,
    ):
        self.state = state
        self.registry = registry
        self.panel = panel
        self.sender = sender

    def handle(self, line: str, origin: Optional[str] = None) -> Optional[CommandResult]:
        """Run one command line for ``origin`` (a phone number, None when local).

        Returns None when the line is not a command this origin may use, so an
        unauthorised sender cannot tell a privileged verb from gibberish.
        """
        text = line.strip()
        lower = text.lower()

        if lower == "help":
            return self._result("help", HELP_TEXT)

        match = _WITH_ARGUMENT.match(text)
        if match and self.registry.is_admin_or_local(origin):
            verb = match.group(1).lower()
            argument = match.group(2).strip()
            if verb == "add":
                return self._result(verb, self._add(argument, Role.MEMBER), argument)
            if verb == "admin":
                return self._result(verb, self._add(argument, Role.ADMIN), argument)
            return self._result(verb, self._delete(argument, origin), argument)

        if lower == "list" and self.registry.is_admin_or_local(origin):
            return self._result("list", self._list())

        if not self.registry.is_authorized(origin):
            if lower in ("arm", "disarm", "status") or match:
                logger.warning("Ignoring %r from unauthorised %s", text, origin)
            return None

        if lower == "arm":
            return self._result("arm", self._arm())
        if lower == "disarm":
            return self._result("disarm", self._disarm())
        if lower == "status":
            return self._result("status", self.state.render_status_report())
        return None

    def _result(self, verb: str, reply: str, argument: Optional[str] = None) -> CommandResult:
        return CommandResult(verb=verb, reply=truncate_reply(reply), argument=argument)

    def _arm(self) -> str:
        logger.info("Requesting alarm to arm")
        code = self.panel.arm()
        if code == 0:
            return "Commanded alarm to ARM."
        logger.error("Arm request failed with code %s", code)
        return f"Error #{code} requesting alarm to arm"

    def _disarm(self) -> str:
        logger.info("Requesting alarm to disarm")
        code = self.panel.disarm()
        if code == 0:
            return "Commanded alarm to DISARM."
        logger.error("Disarm request failed with code %s", code)
        return f"Error #{code} requesting alarm to disarm"

    def _add(self, phone: str, role: Role) -> str:
        try:
            user = self.registry.add(phone, role)
        except InvalidFormat:
            return BAD_NUMBER_TEXT
        except AlreadyAuthorized as exc:
            if role == Role.ADMIN:
                return f"{exc} is already authorised. Delete and re-add as admin."
            return f"{exc} is already authorised."
        except CapacityExceeded:
            return TOO_MANY_TEXT

        welcome = WELCOME_ADMIN if user.is_admin else WELCOME_MEMBER
        if not self.sender.send(user.phone, welcome):
            logger.warning("Welcome message to %s was not sent", user.phone)
        if user.is_admin:
            return f"Added {user.phone} to list of administrators."
        return f"Added {user.phone} to list of authorised users."

    def _delete(self, phone: str, origin: Optional[str]) -> str:
        try:
            user = self.registry.remove(phone, acting_phone=origin)
        except NotAuthorized as exc:
            return f"{exc} was not authorised. Nothing to do."
        except SelfRemovalDenied:
            return "You can't remove yourself as admin user via SMS"
        except LastAdminProtected:
            return "You can't remove the last admin user via SMS"
        return f"Removed {user.phone}"

    def _list(self) -> str:
        admins = " ".join(u.phone for u in self.registry.admins()) or "(none)"
        members = " ".join(u.phone for u in self.registry.members()) or "(none)"
        return f"Administrators: {admins}.\n\nUsers: {members}.\n"
