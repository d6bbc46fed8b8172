import json
from functools import wraps
from typing import Dict

from rich.console import Console

from ultrarelay.common import paths
from ultrarelay.common.control import ControlStatus, CommandType
from ultrarelay.common.socket import SocketClient, Error


class APIClient(SocketClient):

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def send_request(self, method: str, params=None, request_id=None) -> Dict:
        if not params:
            params = {}

        req_body = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": request_id
        }

        server_response = self.communicate(json.dumps(req_body))

        if server_response.error is Error.NO_SOCKET:
            raise NoService

        if server_response.error:
            raise ServiceErrorException(server_response.error)

        service_response = json.loads(server_response.response)
        if "error" in service_response:
            raise ServiceFailureException(service_response["error"])

        return service_response

    def send_command(self, command: str) -> CommandType:
        service_response = self.send_request('control.command', {'command': command})
        return CommandType(service_response["result"]["command"])

    def send_get_status(self) -> ControlStatus:
        service_response = self.send_request('control.status')
        return ControlStatus.deserialize(service_response["result"])


def service_call(func):
    @wraps(func)
    def wrapper(*args, **kwargs):
        console = Console()
        api_socket_path = paths.search_api_socket()
        if not api_socket_path:
            console.print("[bold red]Ultrarelay service is not running:[/bold red] "
                          "Start the service by `ultrarelayd` command")
            raise SystemExit(1)

        with APIClient(api_socket_path) as client:
            try:
                return func(client, console, *args, **kwargs)
            except PermissionError as e:
                console.print(f"[bold red]Access Denied: [/bold red]{e}")
                raise SystemExit(1)
            except ServiceException as e:
                console.print(f"[bold red]Service Error: [/bold red]{e}")
                raise SystemExit(1)

    return wrapper


class ServiceException(Exception):
    pass


class NoService(ServiceException):

    def __init__(self):
        super().__init__('The service is not running')


class ServiceFailureException(ServiceException):

    def __init__(self, error):
        self.error = error
        super().__init__(f"The service returned error response: {error}")


class ServiceErrorException(ServiceException):

    def __init__(self, error):
        self.error = error
        super().__init__(f"Error when communicating with the service: {error}")
