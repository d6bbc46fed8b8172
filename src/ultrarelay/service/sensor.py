import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_DOWN
from pathlib import Path

import aiofiles

from ultrarelay.common import iso_timestamp, local_now
from ultrarelay.service.cfg import SensorConfig
from ultrarelay.service.err import DeviceUnavailable, InvalidData

log = logging.getLogger(__name__)

DISTANCE_UNIT = 'meters'
DISTANCE_PRECISION = Decimal('0.001')


@dataclass(frozen=True)
class Reading:
    raw_value: int
    distance_meters: float
    timestamp: datetime
    sensor_id: str

    def serialize(self) -> dict:
        return {
            "distance": self.distance_meters,
            "unit": DISTANCE_UNIT,
            "timestamp": iso_timestamp(self.timestamp),
            "sensor_id": self.sensor_id,
            "raw_value": self.raw_value,
        }


def raw_to_distance(raw_value: int, numerator: int, denominator: int) -> Decimal:
    """
    Scale a raw ADC value to meters with exact rational arithmetic.

    The result is truncated (not rounded) to millimeters, the same digits `bc` prints with `scale=3`,
    e.g. 200 * 10 / 1303 -> 1.534.
    """
    return (Decimal(raw_value) * numerator / denominator).quantize(DISTANCE_PRECISION, rounding=ROUND_DOWN)


class SensorReader:
    """
    Reads the raw value of an IIO ADC channel exposed in sysfs, e.g.
    `/sys/bus/iio/devices/iio:device0/in_voltage1_raw`.
    """

    def __init__(self, config: SensorConfig, *, timeout: float):
        self._config = config
        self._timeout = timeout

    @property
    def sensor_id(self) -> str:
        return self._config.sensor_id

    @property
    def path(self) -> Path:
        return self._config.raw_value_path

    async def read(self) -> Reading:
        """
        :raises DeviceUnavailable: when the attribute is missing, unreadable or the read times out
        :raises InvalidData: when the attribute content is not a non-negative integer
        """
        path = self.path
        if not path.exists():
            raise DeviceUnavailable(path, 'path does not exist')

        try:
            content = await asyncio.wait_for(self._read_attribute(path), self._timeout)
        except asyncio.TimeoutError:
            raise DeviceUnavailable(path, f"read timed out after {self._timeout}s")
        except OSError as e:
            raise DeviceUnavailable(path, str(e)) from e

        try:
            # int() parses ASCII digits from bytes, any other byte is a ValueError
            raw_value = int(content.strip())
        except ValueError:
            raise InvalidData(path, content) from None

        if raw_value < 0:
            raise InvalidData(path, content)

        distance = raw_to_distance(raw_value, self._config.scale_numerator, self._config.scale_denominator)
        reading = Reading(raw_value, float(distance), local_now(), self.sensor_id)
        log.debug(f"[sensor_read] sensor=[{self.sensor_id}] raw=[{raw_value}] distance=[{distance}]")
        return reading

    @staticmethod
    async def _read_attribute(path: Path) -> bytes:
        async with aiofiles.open(path, 'rb') as f:
            return await f.read()
