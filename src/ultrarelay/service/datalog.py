import logging
from pathlib import Path

import aiofiles

from ultrarelay.common import iso_timestamp
from ultrarelay.common.control import ControlMode
from ultrarelay.common.relay import RelayState
from ultrarelay.service.sensor import Reading

log = logging.getLogger(__name__)


def format_record(reading: Reading, relay_state: RelayState, mode: ControlMode) -> str:
    return f"{iso_timestamp(reading.timestamp)},{reading.distance_meters:.3f},{relay_state.name},{mode.value}\n"


class DataLog:
    """Append-only CSV record of readings: `timestamp,distance,relay_state,control_mode`"""

    def __init__(self, path: Path):
        self.path = path

    def prepare(self):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        log.info(f"[data_log_ready] file=[{self.path}]")

    async def append(self, reading: Reading, relay_state: RelayState, mode: ControlMode):
        async with aiofiles.open(self.path, 'a') as f:
            await f.write(format_record(reading, relay_state, mode))
