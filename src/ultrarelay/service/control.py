import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

import aiofiles

from ultrarelay.common import iso_timestamp
from ultrarelay.common.control import Command, CommandType, ControlMode, OverrideRecord
from ultrarelay.common.relay import RelayState

log = logging.getLogger(__name__)


def transition(mode: ControlMode, command: Command) -> ControlMode:
    """Next control mode after the command, status requests and unrecognized messages keep the mode"""
    if command.type is CommandType.SET_ON:
        return ControlMode.MANUAL_ON
    if command.type is CommandType.SET_OFF:
        return ControlMode.MANUAL_OFF
    if command.type is CommandType.SET_AUTO:
        return ControlMode.AUTO
    return mode


def desired_relay_state(mode: ControlMode, distance: float, threshold: float) -> RelayState:
    if mode is ControlMode.MANUAL_ON:
        return RelayState.ON
    if mode is ControlMode.MANUAL_OFF:
        return RelayState.OFF
    # Strictly below the threshold: a reading equal to it keeps the relay off
    return RelayState.from_bool(distance < threshold)


def decision_reason(mode: ControlMode, distance: Optional[float], threshold: float) -> str:
    if mode.is_manual:
        return f"Manual override ({mode.value})"
    if distance is None:
        return "Automatic mode (no reading yet)"
    if distance < threshold:
        return f"Distance: {distance:.3f}m < {threshold}m"
    return f"Distance: {distance:.3f}m >= {threshold}m"


@dataclass(frozen=True)
class Transition:
    previous: ControlMode
    mode: ControlMode
    override_changed: bool

    @property
    def mode_changed(self) -> bool:
        return self.previous is not self.mode


class ControlState:
    """
    Control mode together with the override record explaining it.

    Both are replaced in one synchronous step, so readers on the event loop never observe a mode
    without its matching record.
    """

    def __init__(self, override: Optional[OverrideRecord] = None):
        self._override = override
        self._mode = override.mode if override else ControlMode.AUTO

    @property
    def mode(self) -> ControlMode:
        return self._mode

    @property
    def override(self) -> Optional[OverrideRecord]:
        return self._override

    def apply(self, command: Command, now: datetime, source: str) -> Transition:
        previous = self._mode
        mode = transition(previous, command)
        override_changed = False

        if command.type in (CommandType.SET_ON, CommandType.SET_OFF):
            self._override = OverrideRecord(mode, now, source)
            override_changed = True
        elif command.type is CommandType.SET_AUTO and self._override is not None:
            self._override = None
            override_changed = True

        self._mode = mode
        return Transition(previous, mode, override_changed)

    def reason(self) -> str:
        if not self._override:
            return "Automatic mode (sensor-controlled)"

        return f"Manual override {self._override.mode.value} by {self._override.source} " \
               f"since {iso_timestamp(self._override.since)}"


class OverrideStore:
    """Keeps the active override record on disk so a restart resumes the operator's choice"""

    def __init__(self, path: Path):
        self.path = path

    async def load(self) -> Optional[OverrideRecord]:
        if not self.path.exists():
            return None

        try:
            async with aiofiles.open(self.path, 'r') as f:
                content = await f.read()
            record = OverrideRecord.deserialize(json.loads(content))
        except (OSError, ValueError, KeyError, TypeError) as e:
            log.warning(f"[override_record_ignored] file=[{self.path}] reason=[{e}]")
            return None

        log.info(f"[override_record_restored] mode=[{record.mode.value}] since=[{iso_timestamp(record.since)}]")
        return record

    async def sync(self, record: Optional[OverrideRecord]):
        if record:
            await self.save(record)
        else:
            self.clear()

    async def save(self, record: OverrideRecord):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + '.tmp')
        async with aiofiles.open(tmp, 'w') as f:
            await f.write(json.dumps(record.serialize()))
        os.replace(tmp, self.path)

    def clear(self):
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
