from __future__ import annotations

import logging
from enum import Enum
from typing import Dict, List

from .parser import (
    LineEvent,
    PartitionStateEvent,
    SirenAssertedEvent,
    SirenDeassertedEvent,
    ZoneState,
    ZoneStateEvent,
)

logger = logging.getLogger(__name__)

MAX_ZONES = 64
ALARM_PARTITION = 1


class ArmState(Enum):
    UNKNOWN = "unknown"
    ARMED = "armed"
    DISARMED = "disarmed"


class SirenState(Enum):
    UNKNOWN = "unknown"
    ON = "on"
    OFF = "off"


class AlarmState:
    """Zones, partition and siren as last reported by the controller."""

    def __init__(self, zone_count: int = MAX_ZONES) -> None:
        self.zones: Dict[int, ZoneState] = {zone: ZoneState.UNKNOWN for zone in range(zone_count)}
        self.arm_state = ArmState.UNKNOWN
        self.siren = SirenState.UNKNOWN

    def apply_event(self, event: LineEvent) -> bool:
        """Apply a classified event. Returns True when state changed."""
        if isinstance(event, ZoneStateEvent):
            if event.zone not in self.zones:
                logger.warning("Ignoring state for out-of-range zone %s", event.zone)
                return False
            logger.info("Zone %s is now %s", event.zone, event.state.value)
            changed = self.zones[event.zone] != event.state
            self.zones[event.zone] = event.state
            return changed

        if isinstance(event, PartitionStateEvent):
            if event.partition != ALARM_PARTITION or event.armed is None:
                logger.info("Couldn't work out partition message: %s %r", event.partition, event.text)
                return False
            new_state = ArmState.ARMED if event.armed else ArmState.DISARMED
            logger.info("System is %s", new_state.value)
            changed = self.arm_state != new_state
            self.arm_state = new_state
            return changed

        if isinstance(event, SirenAssertedEvent):
            logger.warning("Siren asserted")
            changed = self.siren != SirenState.ON
            self.siren = SirenState.ON
            return changed

        if isinstance(event, SirenDeassertedEvent):
            logger.info("Siren de-asserted")
            changed = self.siren != SirenState.OFF
            self.siren = SirenState.OFF
            return changed

        return False

    def faulted_zones(self) -> List[int]:
        return [zone for zone, state in self.zones.items() if state == ZoneState.FAULT]

    def render_status_report(self) -> str:
        lines = []
        if self.arm_state == ArmState.DISARMED:
            lines.append("Alarm is NOT armed")
        elif self.arm_state == ArmState.ARMED:
            lines.append("Alarm IS armed.")
        else:
            lines.append("Alarm state unknown (arm or disarm to be sure).")

        if self.siren == SirenState.ON:
            lines.append("Siren IS sounding.")
        elif self.siren == SirenState.OFF:
            lines.append("Siren is OFF.")
        else:
            lines.append("I don't know if the siren is on or off.")

        faults = self.faulted_zones()
        if not faults:
            lines.append("No zones have faults.")
        elif len(faults) == 1:
            lines.append(f"Zone FAULT in zone #{faults[0]}")
        else:
            listing = " ".join(f"#{zone}" for zone in faults)
            lines.append(f"The following zones have faults: {listing}")
        return "\n".join(lines) + "\n"
