from dataclasses import dataclass
from enum import Enum
from typing import Optional


class RelayState(Enum):
    ON = 1
    OFF = 0
    UNKNOWN = -1

    @classmethod
    def from_bool(cls, on: bool) -> 'RelayState':
        return cls.ON if on else cls.OFF


@dataclass
class RelayEvent:
    """
    Confirmed relay state change, emitted only after the relay acknowledged the write.
    """
    device_id: str
    state: RelayState
    reason: Optional[str] = None

