import asyncio
import logging
import os
from functools import partial
from typing import Awaitable, Callable, List, Optional

from pymodbus.client import ModbusSerialClient
from pymodbus.exceptions import ModbusException

from ultrarelay.common.relay import RelayState, RelayEvent
from ultrarelay.service.cfg import RelayConfig
from ultrarelay.service.err import DeviceMissing, WriteFailed

log = logging.getLogger(__name__)

# Part of the IO timeout given to a single Modbus request
REQUEST_TIMEOUT_SHARE = 0.8


class ModbusRelay:
    """
    Relay driven through a single coil of a Modbus RTU relay board on a serial line.

    The tracked state follows confirmed writes only: a failed write leaves it untouched, so the next
    cycle naturally retries. A write that outlives the IO timeout keeps running in its worker thread
    and is the only transaction on the serial line until it finishes; its outcome is applied late.
    """

    def __init__(self, config: RelayConfig, *, timeout: float):
        self._config = config
        self._timeout = timeout
        self._client = ModbusSerialClient(
            port=config.port,
            baudrate=config.baudrate,
            bytesize=config.bytesize,
            parity=config.parity,
            stopbits=config.stopbits,
            timeout=timeout * REQUEST_TIMEOUT_SHARE,
            retries=0,
        )
        self._state = RelayState.UNKNOWN
        self._lock = asyncio.Lock()
        self._pending: Optional[asyncio.Future] = None
        self.observers: List[Callable[[RelayEvent], None]] = []

    @property
    def device_id(self) -> str:
        return self._config.device_id

    @property
    def state(self) -> RelayState:
        return self._state

    @property
    def write_in_progress(self) -> bool:
        return bool(self._pending and not self._pending.done())

    def add_observer(self, callback):
        """Add an observer callback that will be called when the relay state changes."""
        self.observers.append(callback)

    async def set(self, desired: RelayState, reason: str, *, force: bool = False) -> bool:
        """
        Switch the relay.

        :param desired: ON or OFF
        :param reason: human readable cause, logged and passed to observers
        :param force: write even when the redundant write policy would skip it, waits for a write
                      still in progress first
        :return: True if a write was issued, False if it was skipped as redundant
        :raises DeviceMissing: when the serial device does not exist
        :raises WriteFailed: when the write errors or times out, or a previous write is still running
        """
        if desired is RelayState.UNKNOWN:
            raise ValueError("Relay can only be switched ON or OFF")

        async with self._lock:
            if not force and self._config.skip_redundant_writes and self._state is desired:
                log.debug(f"[relay_write_skipped] device=[{self.device_id}] state=[{desired.name}]")
                return False

            port = self._config.port
            if not os.path.exists(port):
                raise DeviceMissing(port)

            if force and self.write_in_progress:
                await asyncio.wait({self._pending}, timeout=self._timeout)
            if self.write_in_progress:
                raise WriteFailed(port, "previous write still in progress")

            write = asyncio.ensure_future(asyncio.to_thread(self._write_coil, desired is RelayState.ON))
            self._pending = write
            try:
                await asyncio.wait_for(asyncio.shield(write), self._timeout)
            except asyncio.TimeoutError:
                write.add_done_callback(partial(self._on_late_write, desired, reason))
                raise WriteFailed(port, f"timed out after {self._timeout}s")
            except (ModbusException, OSError) as e:
                raise WriteFailed(port, str(e)) from e

            self._confirm(desired, reason)
        return True

    def _write_coil(self, on: bool):
        port = self._config.port
        if not self._client.connect():
            raise WriteFailed(port, "unable to open serial port")

        response = self._client.write_coil(self._config.coil, on, device_id=self._config.unit)
        if response.isError():
            raise WriteFailed(port, f"modbus error response: {response}")

    def _on_late_write(self, desired: RelayState, reason: str, write: asyncio.Future):
        if write.cancelled():
            return

        error = write.exception()
        if write is not self._pending:
            return
        if error:
            log.warning(f"[relay_late_write_failed] device=[{self.device_id}] desired=[{desired.name}] "
                        f"reason=[{error}]")
            return

        log.warning(f"[relay_late_write_confirmed] device=[{self.device_id}] state=[{desired.name}]")
        self._confirm(desired, reason)

    def _confirm(self, desired: RelayState, reason: str):
        previous = self._state
        self._state = desired
        log.info(f"[relay_switched] device=[{self.device_id}] state=[{desired.name}] reason=[{reason}]")

        if previous is not desired:
            self._notify_observers(RelayEvent(self.device_id, desired, reason))

    def _notify_observers(self, event: RelayEvent):
        for observer in self.observers:
            result = observer(event)
            if isinstance(result, Awaitable):
                asyncio.ensure_future(result)

    async def close(self):
        if self.write_in_progress:
            await asyncio.wait({self._pending}, timeout=self._timeout)
        if self.write_in_progress:
            log.warning(f"[relay_close_skipped] device=[{self.device_id}] reason=[write still in progress]")
            return

        self._client.close()
