from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Union

logger = logging.getLogger(__name__)


class ZoneState(Enum):
    UNKNOWN = "unknown"
    NORMAL = "normal"
    FAULT = "fault"


ZONE_TOKENS = {
    "FAULT": ZoneState.FAULT,
    "NORMAL": ZoneState.NORMAL,
}


@dataclass(frozen=True)
class ZoneStateEvent:
    zone: int
    state: ZoneState
    name: str = ""


@dataclass(frozen=True)
class PartitionStateEvent:
    partition: int
    armed: Optional[bool]
    text: str = ""


@dataclass(frozen=True)
class SirenAssertedEvent:
    pass


@dataclass(frozen=True)
class SirenDeassertedEvent:
    pass


@dataclass(frozen=True)
class IgnoredLogEvent:
    raw_line: str


@dataclass(frozen=True)
class CommandCandidate:
    raw_line: str


LineEvent = Union[
    ZoneStateEvent,
    PartitionStateEvent,
    SirenAssertedEvent,
    SirenDeassertedEvent,
    IgnoredLogEvent,
    CommandCandidate,
]

# nx584_server writes either its own timestamped format (with "," or "." before
# the milliseconds) or the bare python logging format.
_STAMP = r"\d+-\d+-\d+ \d+:\d+:\d+[,.]\d+ controller INFO "
_SHORT = r"INFO:controller:"

_ZONE_BODY = r"Zone (?P<zone>-?\d+) \((?P<name>[^)]*)\) state is (?P<token>\S+)"
_PARTITION_BODY = r"Partition (?P<partition>-?\d+) +(?P<text>[^\r\n]+)"

ZONE_PATTERNS = [
    re.compile(r"^\s*" + _STAMP + _ZONE_BODY),
    re.compile(r"^\s*" + _SHORT + _ZONE_BODY),
]
PARTITION_PATTERNS = [
    re.compile(r"^\s*" + _STAMP + _PARTITION_BODY),
    re.compile(r"^\s*" + _SHORT + _PARTITION_BODY),
]
SIREN_OFF_MARKERS = (
    "controller INFO System de-asserts Global Siren on",
    "INFO:controller:System de-asserts Global Siren on",
)
SIREN_ON_MARKERS = (
    "controller INFO System asserts Global Siren on",
    "INFO:controller:System asserts Global Siren on",
)
LOG_PREFIX = re.compile(r"^\s*\d+-\d+-\d+ \d+:\d+:\d+")


def _match_zone(line: str) -> Optional[LineEvent]:
    for pattern in ZONE_PATTERNS:
        match = pattern.match(line)
        if not match:
            continue
        zone = int(match.group("zone"))
        token = match.group("token")
        state = ZONE_TOKENS.get(token)
        if state is None:
            logger.info("Unrecognised zone state %r for zone %s", token, zone)
            state = ZoneState.UNKNOWN
        return ZoneStateEvent(zone=zone, state=state, name=match.group("name"))
    return None


def _match_partition(line: str) -> Optional[LineEvent]:
    for pattern in PARTITION_PATTERNS:
        match = pattern.match(line)
        if not match:
            continue
        text = match.group("text").strip()
        if text == "armed":
            armed: Optional[bool] = True
        elif text == "not armed":
            armed = False
        else:
            armed = None
        return PartitionStateEvent(partition=int(match.group("partition")), armed=armed, text=text)
    return None


def _match_siren(line: str) -> Optional[LineEvent]:
    if any(marker in line for marker in SIREN_OFF_MARKERS):
        return SirenDeassertedEvent()
    if any(marker in line for marker in SIREN_ON_MARKERS):
        return SirenAssertedEvent()
    return None


def _match_log_chatter(line: str) -> Optional[LineEvent]:
    if LOG_PREFIX.match(line):
        return IgnoredLogEvent(raw_line=line)
    return None


MATCHERS: List[Callable[[str], Optional[LineEvent]]] = [
    _match_zone,
    _match_partition,
    _match_siren,
    _match_log_chatter,
]


def classify_line(line: str) -> LineEvent:
    """Turn one line of controller, modem or console text into an event.

    Matchers run in priority order and the first hit wins. A line nothing
    recognises is handed back as a ``CommandCandidate`` for the command engine.
    """

    for matcher in MATCHERS:
        event = matcher(line)
        if event is not None:
            return event
    return CommandCandidate(raw_line=line.strip())
