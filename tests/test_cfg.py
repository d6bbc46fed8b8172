"""Unit tests for configuration parsing and validation."""

import pytest

from ultrarelay.common import paths
from ultrarelay.service.cfg import PublishPolicy, parse_config
from ultrarelay.service.err import InvalidConfiguration, MissingConfigurationField


def minimal(**sections):
    data = {"mqtt": {"host": "broker.local", "topic": "sensors/tank", "client_id": "tank-pi"}}
    for name, values in sections.items():
        data.setdefault(name, {}).update(values)
    return data


class TestParseConfig:

    def test_defaults(self):
        config = parse_config(minimal())

        assert config.mqtt.port == 1883
        assert config.mqtt.qos == 1
        assert config.mqtt.data_topic == "sensors/tank"
        assert config.mqtt.control_topic == "sensors/tank/relay/control"
        assert config.mqtt.status_topic == "sensors/tank/relay/status"
        assert config.sensor.sensor_id == "tank-pi"
        assert config.sensor.raw_value_path.name == "in_voltage1_raw"
        assert (config.sensor.scale_numerator, config.sensor.scale_denominator) == (10, 1303)
        assert config.relay.enabled
        assert config.relay.port == "/dev/ttyAMA4"
        assert config.relay.skip_redundant_writes
        assert config.control.interval == 2.0
        assert config.control.threshold == 5.0
        assert config.control.io_timeout == pytest.approx(1.6)
        assert config.control.publish_policy is PublishPolicy.ALWAYS
        assert config.control.override_file == paths.override_file_path()
        assert config.datalog_file == paths.data_log_file_path()
        assert config.datalog_file.name == "ultrasonic_data.log"

    def test_full(self, tmp_path):
        config = parse_config(minimal(
            mqtt={"port": 8883, "qos": 0, "username": "u", "password": "p", "topic": "sensors/tank/"},
            sensor={"id": "ultrasonic", "channel": 2, "scale_numerator": 5, "scale_denominator": 1024},
            relay={"port": "/dev/ttyUSB0", "coil": 0, "unit": 2, "parity": "e", "skip_redundant_writes": False},
            control={"interval": 5, "threshold": 3.5, "publish_policy": "RELAY_ON", "io_timeout": 1},
            datalog={"file": str(tmp_path / "data.log")},
        ))

        assert config.mqtt.port == 8883
        assert config.mqtt.username == "u"
        assert config.mqtt.control_topic == "sensors/tank/relay/control"
        assert config.sensor.sensor_id == "ultrasonic"
        assert config.sensor.raw_value_path.name == "in_voltage2_raw"
        assert config.relay.parity == "E"
        assert not config.relay.skip_redundant_writes
        assert config.control.publish_policy is PublishPolicy.RELAY_ON
        assert config.control.io_timeout == 1.0
        assert config.datalog_file == tmp_path / "data.log"

    def test_datalog_disabled(self, tmp_path):
        config = parse_config(minimal(datalog={"enabled": False, "file": str(tmp_path / "data.log")}))

        assert config.datalog_file is None

    def test_missing_mqtt_section(self):
        with pytest.raises(MissingConfigurationField) as exc_info:
            parse_config({})

        assert exc_info.value.field == "mqtt"

    @pytest.mark.parametrize("field", ["host", "topic", "client_id"])
    def test_missing_mqtt_field(self, field):
        data = minimal()
        del data["mqtt"][field]

        with pytest.raises(MissingConfigurationField) as exc_info:
            parse_config(data)

        assert exc_info.value.field == f"mqtt.{field}"

    @pytest.mark.parametrize("data", [
        minimal(mqtt={"host": "  "}),
        minimal(mqtt={"topic": ""}),
        minimal(mqtt={"port": 0}),
        minimal(mqtt={"port": 70000}),
        minimal(mqtt={"port": "1883"}),
        minimal(mqtt={"port": True}),
        minimal(mqtt={"qos": 3}),
        minimal(mqtt={"password": "secret"}),
        minimal(sensor={"scale_denominator": 0}),
        minimal(relay={"parity": "X"}),
        minimal(relay={"enabled": "yes"}),
        minimal(datalog={"enabled": "no"}),
        minimal(control={"interval": 0}),
        minimal(control={"threshold": -1}),
        minimal(control={"interval": 1, "io_timeout": 1}),
        minimal(control={"publish_policy": "sometimes"}),
        {"mqtt": "broker.local"},
    ])
    def test_invalid_values(self, data):
        with pytest.raises(InvalidConfiguration):
            parse_config(data)
