"""Pytest configuration and fixtures."""

import asyncio
from unittest.mock import patch

import pytest

from ultrarelay.service.cfg import RelayConfig, SensorConfig


def write_raw(sensor_config: SensorConfig, value):
    sensor_config.raw_value_path.write_text(f"{value}\n")


async def wait_until(predicate, timeout=2.0):
    """Poll the predicate while letting the event loop and worker threads progress."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not met in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def sensor_config(tmp_path):
    """IIO device directory with the default channel attribute."""
    device = tmp_path / 'iio:device0'
    device.mkdir()
    config = SensorConfig(sensor_id='tank-pi', device=device, channel=1)
    write_raw(config, 0)
    return config


@pytest.fixture
def relay_config(tmp_path):
    port = tmp_path / 'ttyAMA4'
    port.touch()
    return RelayConfig(port=str(port), skip_redundant_writes=False)


@pytest.fixture
def modbus_client():
    """Mocked pymodbus serial client acknowledging every write."""
    with patch('ultrarelay.service.relay.ModbusSerialClient') as client_cls:
        client = client_cls.return_value
        client.connect.return_value = True
        client.write_coil.return_value.isError.return_value = False
        yield client
