import logging
import os
import re
import subprocess
from dataclasses import dataclass
from typing import List, Optional, Sequence

logger = logging.getLogger(__name__)

LAUNCH_FAILED = 127

_LOCATION = re.compile(r"^Location (?P<location>[^,]+),")
_REMOTE_NUMBER = re.compile(r'^Remote number\s*: "(?P<number>[^"]*)"')


@dataclass
class InboundMessage:
    location: str
    sender: str
    body: str


def parse_getallsms(report: str) -> List[InboundMessage]:
    """Extract (location, sender, first body line) from ``gammu getallsms``.

    Each message is a header block starting with ``Location N, folder ...``
    and an ``SMS message`` line, then a blank line, then the text.
    """
    messages: List[InboundMessage] = []
    location: Optional[str] = None
    sender: Optional[str] = None
    in_header = False
    awaiting_body = False

    for raw in report.splitlines():
        line = raw.rstrip("\r")
        loc_match = _LOCATION.match(line)
        if loc_match:
            location = loc_match.group("location").strip()
            sender = None
            in_header = False
            awaiting_body = False
            continue
        if line.startswith("SMS message"):
            in_header = True
            awaiting_body = False
            sender = None
            continue
        if in_header:
            number_match = _REMOTE_NUMBER.match(line)
            if number_match:
                sender = number_match.group("number")
            elif not line.strip():
                in_header = False
                awaiting_body = True
            continue
        if awaiting_body and line.strip():
            messages.append(InboundMessage(location=location or "", sender=sender or "", body=line.strip()))
            awaiting_body = False
            sender = None
    return messages


def _run(argv: Sequence[str]) -> "subprocess.CompletedProcess[str]":
    env = dict(os.environ, LANG="C")
    return subprocess.run(list(argv), capture_output=True, text=True, env=env, check=False)


class GammuSmsClient:
    """Sends, lists and deletes text messages through the gammu CLI."""

    def __init__(self, gammu_path: str = "gammu", enabled: bool = True, folder: int = 0):
        self.gammu_path = gammu_path
        self.enabled = enabled
        self.folder = folder

    def send(self, phone: str, body: str) -> bool:
        if not self.enabled:
            logger.info("SMS sending disabled, would send to %s: %s", phone, body)
            return True
        argv = [self.gammu_path, "sendsms", "TEXT", phone, "-text", body]
        logger.info("Sending SMS to %s", phone)
        try:
            result = _run(argv)
        except OSError as exc:
            logger.error("Could not run %s: %s", self.gammu_path, exc)
            return False
        if result.returncode != 0:
            logger.error("gammu sendsms to %s failed (%s): %s", phone, result.returncode, result.stderr.strip())
            return False
        return True

    def fetch_messages(self) -> List[InboundMessage]:
        try:
            result = _run([self.gammu_path, "getallsms"])
        except OSError as exc:
            logger.error("Could not run %s: %s", self.gammu_path, exc)
            return []
        if result.returncode != 0:
            logger.debug("gammu getallsms returned %s: %s", result.returncode, result.stderr.strip())
        return parse_getallsms(result.stdout or "")

    def delete(self, location: str) -> bool:
        try:
            result = _run([self.gammu_path, "deletesms", str(self.folder), location])
        except OSError as exc:
            logger.error("Could not run %s: %s", self.gammu_path, exc)
            return False
        if result.returncode != 0:
            logger.error("gammu deletesms %s failed (%s)", location, result.returncode)
            return False
        return True


class Nx584Client:
    """Arms and disarms the panel through pynx584's ``nx584_client``."""

    def __init__(self, client_path: str, master_pin: str):
        self.client_path = client_path
        self.master_pin = master_pin

    def arm(self) -> int:
        return self._invoke("arm")

    def disarm(self) -> int:
        return self._invoke("disarm")

    def _invoke(self, action: str) -> int:
        argv = [self.client_path, "--master", self.master_pin, action]
        logger.info("Executing '%s --master **** %s'", self.client_path, action)
        try:
            result = _run(argv)
        except OSError as exc:
            logger.error("Could not run %s: %s", self.client_path, exc)
            return LAUNCH_FAILED
        if result.returncode != 0:
            logger.error("%s %s exited with %s: %s", self.client_path, action, result.returncode, result.stderr.strip())
        return result.returncode
