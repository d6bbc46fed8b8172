import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from ultrarelay.common import local_now
from ultrarelay.common.control import CommandType, ControlStatus, parse_command
from ultrarelay.common.relay import RelayState, RelayEvent
from ultrarelay.service.cfg import ControlConfig, PublishPolicy
from ultrarelay.service.control import ControlState, OverrideStore, decision_reason, desired_relay_state
from ultrarelay.service.datalog import DataLog
from ultrarelay.service.err import ActuatorError, ChannelError, SensorError
from ultrarelay.service.relay import ModbusRelay
from ultrarelay.service.sensor import Reading, SensorReader

log = logging.getLogger(__name__)


class Publisher(Protocol):

    @property
    def connected(self) -> bool:
        ...

    def publish(self, topic: str, payload) -> None:
        ...


@dataclass(frozen=True)
class CommandMessage:
    text: str
    source: str


class ControlLoop:
    """
    Fixed interval pipeline: drain commands, sample, decide, actuate, log, publish, sleep.

    The loop is the only writer of the control state. Command sources (MQTT callback, local API) only
    enqueue raw text through `submit`, which also wakes the loop so a manual override is applied
    without waiting for the next tick.
    """

    def __init__(self, sensor: SensorReader, relay: Optional[ModbusRelay], publisher: Publisher,
                 config: ControlConfig, *, data_topic: str, status_topic: str,
                 state: Optional[ControlState] = None,
                 override_store: Optional[OverrideStore] = None,
                 datalog: Optional[DataLog] = None):
        self._sensor = sensor
        self._relay = relay
        self._publisher = publisher
        self._config = config
        self._data_topic = data_topic
        self._status_topic = status_topic
        self.state = state or ControlState()
        self._override_store = override_store
        self._datalog = datalog

        self._commands: asyncio.Queue = asyncio.Queue()
        self._wakeup = asyncio.Event()
        self._stop = asyncio.Event()
        self._last_reading: Optional[Reading] = None

        if relay:
            relay.add_observer(self._on_relay_event)

    @property
    def relay_state(self) -> RelayState:
        return self._relay.state if self._relay else RelayState.UNKNOWN

    def submit(self, text: str, source: str = 'mqtt'):
        """Queue a raw command message, never blocks"""
        self._commands.put_nowait(CommandMessage(text, source))
        self._wakeup.set()

    def stop(self):
        self._stop.set()
        self._wakeup.set()

    async def run(self):
        log.info(f"[control_loop_started] interval=[{self._config.interval}s] threshold=[{self._config.threshold}m] "
                 f"publish_policy=[{self._config.publish_policy.value}] mode=[{self.state.mode.value}]")
        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        try:
            while not self._stop.is_set():
                try:
                    await self.run_cycle()
                except Exception:
                    log.exception("[control_cycle_error]")

                next_tick = max(next_tick + self._config.interval, loop.time())
                await self._wait_until(next_tick)
        finally:
            await self._fail_safe()
            log.info("[control_loop_stopped]")

    async def run_cycle(self) -> Optional[Reading]:
        await self.process_commands()

        try:
            reading = await self._sensor.read()
        except SensorError as e:
            log.warning(f"[sensor_read_failed] sensor=[{self._sensor.sensor_id}] reason=[{e}] result=[cycle_skipped]")
            return None

        self._last_reading = reading
        mode = self.state.mode
        threshold = self._config.threshold
        desired = desired_relay_state(mode, reading.distance_meters, threshold)

        await self._actuate(desired, decision_reason(mode, reading.distance_meters, threshold))
        await self._record(reading)

        if self._config.publish_policy is PublishPolicy.ALWAYS or desired is RelayState.ON:
            self._publish_reading(reading)
        else:
            log.debug(f"[reading_not_published] distance=[{reading.distance_meters:.3f}] desired=[{desired.name}]")

        return reading

    async def process_commands(self) -> bool:
        """
        Apply every queued command, oldest first, without waiting for new ones.

        :return: True if the control mode changed
        """
        mode_changed = False
        while True:
            try:
                message = self._commands.get_nowait()
            except asyncio.QueueEmpty:
                return mode_changed

            mode_changed |= await self._apply(message)

    async def _apply(self, message: CommandMessage) -> bool:
        command = parse_command(message.text)
        log.info(f"[control_command_received] source=[{message.source}] payload=[{message.text}] "
                 f"command=[{command.type.value}]")

        if not command.recognized:
            log.warning(f"[unknown_control_command] source=[{message.source}] payload=[{message.text}]")
            return False

        result = self.state.apply(command, local_now(), message.source)

        if command.type is CommandType.STATUS_REQUEST:
            self._publish_status()
            return False

        if result.mode_changed:
            log.info(f"[control_mode_changed] previous=[{result.previous.value}] mode=[{result.mode.value}] "
                     f"source=[{message.source}]")
        elif command.type is CommandType.SET_AUTO:
            log.info("[control_mode_unchanged] mode=[auto] detail=[Already in automatic mode]")
        else:
            log.info(f"[override_renewed] mode=[{result.mode.value}] source=[{message.source}]")

        if result.override_changed and self._override_store:
            try:
                await self._override_store.sync(self.state.override)
            except OSError as e:
                log.error(f"[override_record_not_saved] file=[{self._override_store.path}] reason=[{e}]")

        return result.mode_changed

    async def _wait_until(self, deadline: float):
        loop = asyncio.get_running_loop()
        while not self._stop.is_set():
            self._wakeup.clear()
            if not self._commands.empty():
                await self._on_commands_between_ticks()
                continue

            remaining = deadline - loop.time()
            if remaining <= 0:
                return

            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=remaining)
            except asyncio.TimeoutError:
                return

    async def _on_commands_between_ticks(self):
        if not await self.process_commands():
            return

        mode = self.state.mode
        if mode.is_manual:
            await self._actuate(desired_relay_state(mode, 0.0, self._config.threshold), self.state.reason())
        elif self._last_reading:
            distance = self._last_reading.distance_meters
            await self._actuate(desired_relay_state(mode, distance, self._config.threshold),
                                decision_reason(mode, distance, self._config.threshold))

    async def _actuate(self, desired: RelayState, reason: str):
        if not self._relay:
            return

        try:
            await self._relay.set(desired, reason)
        except ActuatorError as e:
            log.error(f"[relay_write_failed] device=[{self._relay.device_id}] desired=[{desired.name}] "
                      f"reason=[{e}] result=[retry_next_cycle]")

    async def _record(self, reading: Reading):
        if not self._datalog:
            return

        try:
            await self._datalog.append(reading, self.relay_state, self.state.mode)
        except OSError as e:
            log.error(f"[data_log_write_failed] file=[{self._datalog.path}] distance=[{reading.distance_meters}] "
                      f"reason=[{e}]")

    def _publish_reading(self, reading: Reading):
        payload = reading.serialize()
        if self._config.publish_policy is PublishPolicy.ALWAYS:
            payload["relay_status"] = self.relay_state.name
            payload["control_mode"] = self.state.mode.value

        if self._publish(self._data_topic, payload):
            log.debug(f"[reading_published] distance=[{reading.distance_meters:.3f}] raw=[{reading.raw_value}]")

    def _publish_status(self, reason: Optional[str] = None):
        self._publish(self._status_topic, self.status(reason).serialize())

    def _publish(self, topic: str, payload) -> bool:
        try:
            self._publisher.publish(topic, payload)
            return True
        except ChannelError as e:
            log.warning(f"[publish_failed] topic=[{topic}] reason=[{e}]")
            return False

    def _on_relay_event(self, event: RelayEvent):
        self._publish_status(event.reason)

    def status(self, reason: Optional[str] = None) -> ControlStatus:
        distance = self._last_reading.distance_meters if self._last_reading else None
        if not reason:
            mode = self.state.mode
            reason = self.state.reason() if mode.is_manual else decision_reason(mode, distance, self._config.threshold)

        return ControlStatus(
            relay_status=self.relay_state,
            control_mode=self.state.mode,
            reason=reason,
            timestamp=local_now(),
            override=self.state.override,
            distance=distance,
            broker_connected=self._publisher.connected,
        )

    async def _fail_safe(self):
        if not self._relay:
            return

        try:
            await self._relay.set(RelayState.OFF, "Service shutdown", force=True)
        except ActuatorError as e:
            log.error(f"[fail_safe_relay_off_failed] device=[{self._relay.device_id}] reason=[{e}]")
