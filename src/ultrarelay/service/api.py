import json
import logging
import os
from abc import ABC, abstractmethod
from json import JSONDecodeError
from typing import Optional

from ultrarelay.common import paths
from ultrarelay.common.control import parse_command
from ultrarelay.common.socket import SocketClient, SocketServerAsync
from ultrarelay.service.err import ServiceAlreadyRunning
from ultrarelay.service.loop import ControlLoop

log = logging.getLogger(__name__)

API_SOURCE = 'api'


class _ApiError(Exception):

    def __init__(self, code, error):
        self.code = code
        self.error = error

    def create_response(self, id=None):
        return _resp_err(self.code, self.error, id)


def _missing_field_error(field) -> _ApiError:
    return _ApiError(-32602, f"Missing field: {field}")


def _unknown_command_error(cmd) -> _ApiError:
    return _ApiError(-32003, f"Command {cmd} is not recognized")


def _resp_ok(result, id=None):
    return _resp(result, id)


def _resp(result, id=None):
    resp = {
        "jsonrpc": "2.0",
        "result": result,
        "id": id
    }
    return json.dumps(resp)


def _resp_err(code: int, message: str, id=None):
    err_resp = {
        "jsonrpc": "2.0",
        "error": {
            "code": code,
            "message": message
        },
        "id": id
    }

    return json.dumps(err_resp)


class APIMethod(ABC):

    @property
    @abstractmethod
    def method(self):
        """Name of the JSON-RPC method"""

    @abstractmethod
    async def handle(self, params):
        """Handle request and optionally return response or raise :class:`_ApiError`"""

    def validate(self, params):
        """Raise :class:`_ApiError` if params are invalid"""


class APIControlCommand(APIMethod):
    """Queues a command exactly as if it arrived on the control topic"""

    def __init__(self, control_loop: ControlLoop):
        self._control_loop = control_loop

    @property
    def method(self):
        return 'control.command'

    async def handle(self, params):
        text = params['command']
        command = parse_command(text)
        if not command.recognized:
            raise _unknown_command_error(text)

        self._control_loop.submit(text, API_SOURCE)
        return {"command": command.type.value}

    def validate(self, params):
        if not params.get('command') or not isinstance(params['command'], str):
            raise _missing_field_error('command')


class APIControlStatus(APIMethod):

    def __init__(self, control_loop: ControlLoop):
        self._control_loop = control_loop

    @property
    def method(self):
        return 'control.status'

    async def handle(self, params):
        return self._control_loop.status().serialize()


def default_methods(control_loop: ControlLoop):
    return APIControlCommand(control_loop), APIControlStatus(control_loop)


class APIServer(SocketServerAsync):

    def __init__(self, socket_path, methods):
        super().__init__(socket_path, allow_ping=True)  # Allow ping for stale socket check
        self._methods = {method.method: method for method in methods}

    async def handle(self, req):
        try:
            req_body = json.loads(req)
        except JSONDecodeError as e:
            log.warning(f"[invalid_json_request_body] reason=[{e}]")
            return _resp_err(-32700, "Parse error")

        if not isinstance(req_body, dict) or req_body.get('jsonrpc') != '2.0':
            return _resp_err(-32600, "Invalid Request")

        if 'method' not in req_body:
            return _resp_err(-32600, "Invalid Request")

        method_name = req_body['method']
        params = req_body.get('params') or {}
        request_id = req_body.get('id')

        try:
            method = self._resolve_method(method_name)
            if not isinstance(params, dict):
                raise _ApiError(-32602, "Invalid params")
            method.validate(params)
        except _ApiError as e:
            return e.create_response(request_id)

        try:
            result = await method.handle(params)
            return _resp_ok(result, request_id)
        except _ApiError as e:
            return e.create_response(request_id)
        except Exception:
            log.error("[api_handler_error]", exc_info=True)
            return _resp_err(-32603, "Internal error", request_id)

    def _resolve_method(self, method_name) -> APIMethod:
        method = self._methods.get(method_name)
        if not method:
            raise _ApiError(-32601, f"Method not found: {method_name}")

        return method


_api_server: Optional[APIServer] = None


async def start(control_loop: ControlLoop, socket_path=None):
    """
    :raises ServiceAlreadyRunning: when another instance answers on the socket
    :raises SocketBindException: when the socket cannot be created
    """
    global _api_server
    socket_path = socket_path or paths.api_socket_path()

    client = SocketClient(socket_path, timeout=2)
    try:
        ping_result = client.ping()
    finally:
        client.close()

    if ping_result.active or ping_result.timed_out:
        raise ServiceAlreadyRunning

    if ping_result.stale and os.path.exists(socket_path):
        os.remove(socket_path)
        log.warning(f"[stale_socket_removed] socket=[{socket_path}]")

    _api_server = APIServer(socket_path, default_methods(control_loop))
    await _api_server.start()


async def stop():
    global _api_server
    if _api_server:
        await _api_server.stop()
        _api_server = None
