from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Mapping, Optional

from ultrarelay.common import expand_user, paths
from ultrarelay.service.err import MissingConfigurationField, InvalidConfiguration

DEFAULT_SENSOR_DEVICE = '/sys/bus/iio/devices/iio:device0'
DEFAULT_RELAY_PORT = '/dev/ttyAMA4'


class Config:

    def __init__(self, field_path: str, data: Mapping):
        self.field_path = field_path
        self._data = data

    def section(self, key: str, *, required=False) -> 'Config':
        if key not in self._data:
            if required:
                raise MissingConfigurationField(self._path(key))
            return Config(self._path(key), {})

        value = self._data[key]
        if not isinstance(value, Mapping):
            raise InvalidConfiguration(f"`{self._path(key)}` must be a table")
        return Config(self._path(key), value)

    def get_str(self, key: str, default: Optional[str] = None, *, required=False) -> Optional[str]:
        if key not in self._data:
            if required:
                raise MissingConfigurationField(self._path(key))
            return default

        value = self._data[key]
        if not isinstance(value, str):
            raise InvalidConfiguration(f"`{self._path(key)}` must be a string")
        if required and not value.strip():
            raise InvalidConfiguration(f"`{self._path(key)}` must not be empty")
        return value

    def get_int(self, key: str, default: int, *, min_value=None, max_value=None) -> int:
        value = self._data.get(key, default)
        # bool is an int subclass, `true` is never a valid number here
        if isinstance(value, bool) or not isinstance(value, int):
            raise InvalidConfiguration(f"`{self._path(key)}` must be an integer")
        self._check_range(key, value, min_value, max_value)
        return value

    def get_float(self, key: str, default: float, *, min_value=None, max_value=None, positive=False) -> float:
        value = self._data.get(key, default)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise InvalidConfiguration(f"`{self._path(key)}` must be a number")
        if positive and value <= 0:
            raise InvalidConfiguration(f"`{self._path(key)}` must be positive, got {value}")
        self._check_range(key, value, min_value, max_value)
        return float(value)

    def get_bool(self, key: str, default: bool) -> bool:
        value = self._data.get(key, default)
        if not isinstance(value, bool):
            raise InvalidConfiguration(f"`{self._path(key)}` must be true or false")
        return value

    def _check_range(self, key, value, min_value, max_value):
        if min_value is not None and value < min_value:
            raise InvalidConfiguration(f"`{self._path(key)}` must be >= {min_value}, got {value}")
        if max_value is not None and value > max_value:
            raise InvalidConfiguration(f"`{self._path(key)}` must be <= {max_value}, got {value}")

    def _path(self, key):
        return f"{self.field_path}.{key}" if self.field_path else key

    def __repr__(self):
        return f"Config('{self.field_path}', {self._data})"


class PublishPolicy(Enum):
    ALWAYS = 'always'
    RELAY_ON = 'relay_on'


@dataclass(frozen=True)
class MqttConfig:
    host: str
    topic: str
    client_id: str
    port: int = 1883
    qos: int = 1
    username: Optional[str] = None
    password: Optional[str] = None
    reconnect_delay: float = 10.0

    @property
    def data_topic(self) -> str:
        return self.topic

    @property
    def control_topic(self) -> str:
        return f"{self.topic}/relay/control"

    @property
    def status_topic(self) -> str:
        return f"{self.topic}/relay/status"


@dataclass(frozen=True)
class SensorConfig:
    sensor_id: str
    device: Path = Path(DEFAULT_SENSOR_DEVICE)
    channel: int = 1
    scale_numerator: int = 10
    scale_denominator: int = 1303

    @property
    def raw_value_path(self) -> Path:
        return self.device / f"in_voltage{self.channel}_raw"


@dataclass(frozen=True)
class RelayConfig:
    enabled: bool = True
    device_id: str = 'relay'
    port: str = DEFAULT_RELAY_PORT
    baudrate: int = 9600
    bytesize: int = 8
    parity: str = 'N'
    stopbits: int = 1
    unit: int = 1
    coil: int = 1
    skip_redundant_writes: bool = True


@dataclass(frozen=True)
class ControlConfig:
    override_file: Path
    interval: float = 2.0
    threshold: float = 5.0
    publish_policy: PublishPolicy = PublishPolicy.ALWAYS
    io_timeout: float = 1.6


@dataclass(frozen=True)
class ServiceConfig:
    mqtt: MqttConfig
    sensor: SensorConfig
    relay: RelayConfig
    control: ControlConfig
    datalog_file: Optional[Path] = None


def parse_config(data: Mapping) -> ServiceConfig:
    """
    Build and validate the service configuration from the parsed TOML document.

    :raises MissingConfigurationField: when a required field is absent
    :raises InvalidConfiguration: when a field has a wrong type or an out of range value
    """
    root = Config('', data)

    mqtt = parse_mqtt(root.section('mqtt', required=True))
    return ServiceConfig(
        mqtt=mqtt,
        sensor=parse_sensor(root.section('sensor'), mqtt.client_id),
        relay=parse_relay(root.section('relay')),
        control=parse_control(root.section('control')),
        datalog_file=parse_datalog_file(root.section('datalog')),
    )


def parse_mqtt(conf: Config) -> MqttConfig:
    password = conf.get_str('password')
    username = conf.get_str('username')
    if password and not username:
        raise InvalidConfiguration(f"`{conf.field_path}.password` requires `{conf.field_path}.username`")

    return MqttConfig(
        host=conf.get_str('host', required=True).strip(),
        topic=conf.get_str('topic', required=True).strip().rstrip('/'),
        client_id=conf.get_str('client_id', required=True).strip(),
        port=conf.get_int('port', 1883, min_value=1, max_value=65535),
        qos=conf.get_int('qos', 1, min_value=0, max_value=2),
        username=username,
        password=password,
        reconnect_delay=conf.get_float('reconnect_delay', 10.0, positive=True),
    )


def parse_sensor(conf: Config, default_sensor_id: str) -> SensorConfig:
    return SensorConfig(
        sensor_id=conf.get_str('id', default_sensor_id),
        device=Path(expand_user(conf.get_str('device', DEFAULT_SENSOR_DEVICE))),
        channel=conf.get_int('channel', 1, min_value=0),
        scale_numerator=conf.get_int('scale_numerator', 10, min_value=1),
        scale_denominator=conf.get_int('scale_denominator', 1303, min_value=1),
    )


def parse_relay(conf: Config) -> RelayConfig:
    parity = conf.get_str('parity', 'N').upper()
    if parity not in ('N', 'E', 'O'):
        raise InvalidConfiguration(f"`{conf.field_path}.parity` must be one of N, E, O, got {parity}")

    return RelayConfig(
        enabled=conf.get_bool('enabled', True),
        device_id=conf.get_str('device_id', 'relay'),
        port=conf.get_str('port', DEFAULT_RELAY_PORT),
        baudrate=conf.get_int('baudrate', 9600, min_value=1),
        bytesize=conf.get_int('bytesize', 8, min_value=5, max_value=8),
        parity=parity,
        stopbits=conf.get_int('stopbits', 1, min_value=1, max_value=2),
        unit=conf.get_int('unit', 1, min_value=0, max_value=247),
        coil=conf.get_int('coil', 1, min_value=0, max_value=65535),
        skip_redundant_writes=conf.get_bool('skip_redundant_writes', True),
    )


def parse_control(conf: Config) -> ControlConfig:
    interval = conf.get_float('interval', 2.0, positive=True)
    io_timeout = conf.get_float('io_timeout', interval * 0.8, positive=True)
    if io_timeout >= interval:
        raise InvalidConfiguration(
            f"`{conf.field_path}.io_timeout` ({io_timeout}) must be shorter than `{conf.field_path}.interval` ({interval})")

    policy_value = conf.get_str('publish_policy', PublishPolicy.ALWAYS.value)
    try:
        policy = PublishPolicy(policy_value.lower())
    except ValueError:
        valid = ", ".join(p.value for p in PublishPolicy)
        raise InvalidConfiguration(f"Invalid `{conf.field_path}.publish_policy` value `{policy_value}`, valid: `{valid}`")

    return ControlConfig(
        override_file=_optional_path(conf.get_str('override_file')) or paths.override_file_path(),
        interval=interval,
        threshold=conf.get_float('threshold', 5.0, positive=True),
        publish_policy=policy,
        io_timeout=io_timeout,
    )


def parse_datalog_file(conf: Config) -> Optional[Path]:
    if not conf.get_bool('enabled', True):
        return None
    return _optional_path(conf.get_str('file')) or paths.data_log_file_path()


def _optional_path(value: Optional[str]) -> Optional[Path]:
    if not value:
        return None
    return Path(expand_user(value))
