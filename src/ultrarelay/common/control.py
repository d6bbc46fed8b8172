import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, Optional

from rich.box import MINIMAL
from rich.table import Table
from rich.text import Text

from ultrarelay.common import iso_timestamp
from ultrarelay.common.relay import RelayState


class ControlMode(Enum):
    AUTO = 'auto'
    MANUAL_ON = 'manual_on'
    MANUAL_OFF = 'manual_off'

    @property
    def is_manual(self) -> bool:
        return self is not ControlMode.AUTO


class CommandType(Enum):
    SET_ON = 'set_on'
    SET_OFF = 'set_off'
    SET_AUTO = 'set_auto'
    STATUS_REQUEST = 'status_request'
    UNRECOGNIZED = 'unrecognized'


KEYWORDS: Dict[str, CommandType] = {
    'on': CommandType.SET_ON,
    '1': CommandType.SET_ON,
    'off': CommandType.SET_OFF,
    '0': CommandType.SET_OFF,
    'auto': CommandType.SET_AUTO,
    'status': CommandType.STATUS_REQUEST,
}

_TOKEN = re.compile(r'[a-z0-9]+')


@dataclass(frozen=True)
class Command:
    type: CommandType
    raw: str

    @property
    def recognized(self) -> bool:
        return self.type is not CommandType.UNRECOGNIZED


def parse_command(text: str) -> Command:
    """
    Decode a plain-text control message.

    Matching is case-insensitive and works on whole tokens only, so `button` never matches `on`.
    A message that is exactly a keyword wins outright. Otherwise every keyword token in the message
    votes for its command and the message is recognized only when all votes agree; `on then off`
    is unrecognized rather than resolved by keyword order.
    """
    normalized = text.strip().lower()

    exact = KEYWORDS.get(normalized)
    if exact:
        return Command(exact, text)

    matched = {KEYWORDS[token] for token in _TOKEN.findall(normalized) if token in KEYWORDS}
    if len(matched) == 1:
        return Command(matched.pop(), text)

    return Command(CommandType.UNRECOGNIZED, text)


@dataclass(frozen=True)
class OverrideRecord:
    mode: ControlMode
    since: datetime
    source: str = 'unknown'

    def __post_init__(self):
        if not self.mode.is_manual:
            raise ValueError(f"Override record requires a manual mode, got {self.mode}")

    def serialize(self) -> dict:
        return {
            "mode": self.mode.value,
            "since": iso_timestamp(self.since),
            "source": self.source,
        }

    @classmethod
    def deserialize(cls, data: Dict) -> 'OverrideRecord':
        return cls(
            mode=ControlMode(data['mode']),
            since=datetime.fromisoformat(data['since']),
            source=data.get('source', 'unknown'),
        )


@dataclass
class ControlStatus:
    relay_status: RelayState
    control_mode: ControlMode
    reason: str
    timestamp: datetime
    override: Optional[OverrideRecord] = None
    distance: Optional[float] = None
    broker_connected: bool = False

    def serialize(self) -> dict:
        return {
            "relay_status": self.relay_status.name,
            "control_mode": self.control_mode.value,
            "reason": self.reason,
            "timestamp": iso_timestamp(self.timestamp),
            "override_since": iso_timestamp(self.override.since) if self.override else None,
            "override_source": self.override.source if self.override else None,
            "distance": self.distance,
            "broker_connected": self.broker_connected,
        }

    @classmethod
    def deserialize(cls, data: Dict) -> 'ControlStatus':
        mode = ControlMode(data['control_mode'])
        override = None
        if data.get('override_since'):
            override = OverrideRecord(mode, datetime.fromisoformat(data['override_since']),
                                      data.get('override_source') or 'unknown')

        return cls(
            relay_status=RelayState[data['relay_status']],
            control_mode=mode,
            reason=data['reason'],
            timestamp=datetime.fromisoformat(data['timestamp']),
            override=override,
            distance=data.get('distance'),
            broker_connected=data.get('broker_connected', False),
        )

    def __rich__(self):
        table = Table(show_header=False, box=MINIMAL)
        table.add_column("Field", style="bold blue")
        table.add_column("Value")

        relay_style = {RelayState.ON: "green", RelayState.OFF: "orange3"}.get(self.relay_status, "red")
        table.add_row("Relay", Text(self.relay_status.name, style=relay_style))
        table.add_row("Mode", self.control_mode.value)
        table.add_row("Reason", self.reason)
        if self.override:
            table.add_row("Override since", f"{iso_timestamp(self.override.since)} ({self.override.source})")
        table.add_row("Distance", "-" if self.distance is None else f"{self.distance:.3f} m")
        table.add_row("Broker", Text("connected", style="green") if self.broker_connected
                      else Text("disconnected", style="orange3"))
        table.add_row("Timestamp", iso_timestamp(self.timestamp))

        return table
