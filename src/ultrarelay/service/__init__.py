import asyncio
import logging
import signal
from asyncio import Event
from pathlib import Path
from typing import Optional

import aiofiles
import rich_click as click
import tomli

from ultrarelay import __version__
from ultrarelay.common import paths
from ultrarelay.common.paths import ConfigFileNotFoundError
from ultrarelay.common.socket import SocketBindException
from ultrarelay.service import api, log
from ultrarelay.service.cfg import ServiceConfig, parse_config
from ultrarelay.service.control import ControlState, OverrideStore
from ultrarelay.service.datalog import DataLog
from ultrarelay.service.err import APINotStarted, ServiceNotStarted, ErrorDuringShutdown, ServiceAlreadyRunning, \
    ConfigurationError, InvalidConfiguration
from ultrarelay.service.loop import ControlLoop
from ultrarelay.service.mqtt import MqttChannel
from ultrarelay.service.relay import ModbusRelay
from ultrarelay.service.sensor import SensorReader

logger = logging.getLogger(__name__)

MQTT_SOURCE = 'mqtt'

shutdown_event: Optional[Event] = None


def register_signal_handlers():
    loop = asyncio.get_running_loop()
    for s in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(s, lambda sig=s: asyncio.create_task(on_signal(sig)))


async def on_signal(signal_):
    logger.info(f"[exit_signal_received] signal=[{signal_.name}]")
    shutdown_event.set()


@click.command()
@click.version_option(__version__)
@click.option('--config', 'config_file', type=click.Path(dir_okay=False, path_type=Path),
              help=f'Path to the configuration file, by default `{paths.CONFIG_FILE}` is looked up in the config '
                   'search path')
@click.option('--log-file-level', type=click.Choice(['debug', 'info', 'warning', 'error', 'critical', 'off']),
              default='info',
              help='Set the log level for file logging')
def cli(config_file, log_file_level):
    log.configure(True, log_file_level=log_file_level)
    logger.info('[service_started]')
    try:
        asyncio.run(run_service(config_file))
        logger.info("[service_stopped]")
    except (ConfigurationError, APINotStarted, ServiceNotStarted, ErrorDuringShutdown):
        exit(1)
    except Exception:
        logger.exception("[service_failed]")
        exit(1)


async def run_service(config_file: Optional[Path] = None):
    global shutdown_event
    shutdown_event = Event()

    register_signal_handlers()

    config = await load_config(config_file)  # Throws ConfigurationError
    service = Service(config)

    init_success = await service.initialize()  # Throws APINotStarted

    if init_success:
        logger.info("[service_started_successfully]")
        await shutdown_event.wait()

    shutdown_success = await service.shutdown()

    if not init_success:
        raise ServiceNotStarted

    if not shutdown_success:
        raise ErrorDuringShutdown


async def read_config_file(config_file: Optional[Path] = None):
    if not config_file:
        config_file = paths.lookup_config_file()

    logger.info(f"[loading_config_file] file=[{config_file}]")
    async with aiofiles.open(config_file, 'rb') as f:
        content = await f.read()
    return tomli.loads(content.decode())


async def load_config(config_file: Optional[Path] = None) -> ServiceConfig:
    """
    :raises ConfigurationError: when the file is missing, malformed or fails validation
    """
    try:
        data = await read_config_file(config_file)
    except ConfigFileNotFoundError as e:
        logger.error(f"[config_file_not_found] detail=[{e}] result=[exiting]")
        raise InvalidConfiguration(str(e)) from e
    except (OSError, UnicodeDecodeError, tomli.TOMLDecodeError) as e:
        logger.error(f"[config_file_unreadable] file=[{config_file}] reason=[{e}] result=[exiting]")
        raise InvalidConfiguration(str(e)) from e

    try:
        return parse_config(data)
    except ConfigurationError as e:
        logger.error(f"[invalid_configuration] reason=[{e}] result=[exiting]")
        raise


class Service:
    """Wires the configured components together and runs them in the required order"""

    def __init__(self, config: ServiceConfig):
        self.config = config
        control = config.control

        self.sensor = SensorReader(config.sensor, timeout=control.io_timeout)
        self.relay = ModbusRelay(config.relay, timeout=control.io_timeout) if config.relay.enabled else None
        self.channel = MqttChannel(config.mqtt, self._on_command)
        self.override_store = OverrideStore(control.override_file)
        self.datalog = DataLog(config.datalog_file) if config.datalog_file else None
        self.control_loop = ControlLoop(
            self.sensor, self.relay, self.channel, control,
            data_topic=config.mqtt.data_topic,
            status_topic=config.mqtt.status_topic,
            override_store=self.override_store,
            datalog=self.datalog,
        )
        self._loop_task: Optional[asyncio.Task] = None

    def _on_command(self, text: str):
        self.control_loop.submit(text, MQTT_SOURCE)

    async def initialize(self) -> bool:
        # First start API to prevent the service to run more than one instance
        await start_api(self.control_loop)  # Raising exceptions if not started

        try:
            self.control_loop.state = ControlState(await self.override_store.load())

            if self.datalog:
                try:
                    self.datalog.prepare()
                except OSError as e:
                    logger.error(f"[data_log_unavailable] file=[{self.datalog.path}] reason=[{e}]")

            if not self.relay:
                logger.warning("[relay_disabled] detail=[Readings are published but nothing is actuated]")

            self.channel.start()
            self._loop_task = asyncio.create_task(self.control_loop.run(), name='control_loop')
        except Exception:
            logger.exception("[error_during_init]")
            return False

        return True

    async def shutdown(self) -> bool:
        logger.info("[shutdown_initiated]")

        success = True
        # Stop the API first before shutting down remaining of the service, so the API doesn't serve in invalid states
        try:
            await api.stop()
        except Exception:
            success = False
            logger.exception("[unexpected_stop_api_error]")

        # The loop forces the relay off while the channel is still up to report it
        if self._loop_task:
            self.control_loop.stop()
            try:
                await self._loop_task
            except Exception:
                success = False
                logger.exception("[control_loop_stop_error]")

        try:
            await self.channel.close()
        except Exception:
            success = False
            logger.exception("[mqtt_close_error]")

        if self.relay:
            try:
                await self.relay.close()
            except Exception:
                success = False
                logger.exception("[relay_close_error]")

        return success


async def start_api(control_loop: ControlLoop):
    try:
        await api.start(control_loop)
    except SocketBindException as e:
        logger.error(f"[socket_bind_error] result=[exiting] reason=[{e}] check=[Is the service already running?]")
        print(f"You can try removing `{e.socket_path}` if you are absolutely sure the service is not running.")
        raise APINotStarted
    except ServiceAlreadyRunning:
        logger.warning("[service_is_already_running] result=[exiting]")
        raise APINotStarted
    except PermissionError as e:
        logger.warning(f"[socket_permission_error] detail=[{e}] result=[exiting]")
        print("The service runs restricted under different user. "
              f"You can try removing `{paths.api_socket_path()}` if you are absolutely sure the service is not running.")
        raise APINotStarted
