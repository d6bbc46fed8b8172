"""Unit tests for the IIO sensor reader."""

import asyncio
from decimal import Decimal

import pytest

from tests.conftest import write_raw
from ultrarelay.service.cfg import SensorConfig
from ultrarelay.service.err import DeviceUnavailable, InvalidData
from ultrarelay.service.sensor import SensorReader, raw_to_distance


class TestRawToDistance:

    @pytest.mark.parametrize("raw, expected", [
        (0, Decimal('0.000')),
        (200, Decimal('1.534')),
        (652, Decimal('5.003')),
        (1303, Decimal('10.000')),
        (1400, Decimal('10.744')),
    ])
    def test_default_scale(self, raw, expected):
        assert raw_to_distance(raw, 10, 1303) == expected

    def test_truncates_instead_of_rounding(self):
        # 651 * 10 / 1303 = 4.99616...
        assert raw_to_distance(651, 10, 1303) == Decimal('4.996')

    def test_alternative_scale(self):
        # 200 * 5 / 1024 = 0.9765625
        assert raw_to_distance(200, 5, 1024) == Decimal('0.976')


class TestSensorReader:

    @pytest.mark.asyncio
    async def test_read(self, sensor_config):
        write_raw(sensor_config, 200)
        reader = SensorReader(sensor_config, timeout=1.0)

        reading = await reader.read()

        assert reading.raw_value == 200
        assert reading.distance_meters == 1.534
        assert reading.sensor_id == 'tank-pi'
        assert reading.timestamp.tzinfo is not None

    @pytest.mark.asyncio
    async def test_reads_configured_channel(self, sensor_config):
        (sensor_config.device / 'in_voltage3_raw').write_text('1303')
        reader = SensorReader(SensorConfig(sensor_id='s', device=sensor_config.device, channel=3), timeout=1.0)

        reading = await reader.read()

        assert reading.distance_meters == 10.0

    @pytest.mark.asyncio
    async def test_missing_device(self, sensor_config):
        sensor_config.raw_value_path.unlink()
        reader = SensorReader(sensor_config, timeout=1.0)

        with pytest.raises(DeviceUnavailable):
            await reader.read()

    @pytest.mark.parametrize("content", ["", "abc", "12.5", "-1"])
    @pytest.mark.asyncio
    async def test_invalid_content(self, sensor_config, content):
        sensor_config.raw_value_path.write_text(content)
        reader = SensorReader(sensor_config, timeout=1.0)

        with pytest.raises(InvalidData):
            await reader.read()

    @pytest.mark.asyncio
    async def test_undecodable_content(self, sensor_config):
        sensor_config.raw_value_path.write_bytes(b"\xff\xfe12\n")
        reader = SensorReader(sensor_config, timeout=1.0)

        with pytest.raises(InvalidData):
            await reader.read()

    @pytest.mark.asyncio
    async def test_read_timeout(self, sensor_config):
        reader = SensorReader(sensor_config, timeout=0.05)

        async def slow_read(path):
            await asyncio.sleep(1)

        reader._read_attribute = slow_read

        with pytest.raises(DeviceUnavailable, match="timed out"):
            await reader.read()

    @pytest.mark.asyncio
    async def test_serialize(self, sensor_config):
        write_raw(sensor_config, 200)
        reading = await SensorReader(sensor_config, timeout=1.0).read()

        payload = reading.serialize()

        assert payload["distance"] == 1.534
        assert payload["unit"] == "meters"
        assert payload["sensor_id"] == "tank-pi"
        assert payload["raw_value"] == 200
        assert "T" in payload["timestamp"]
