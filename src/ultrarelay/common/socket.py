import abc
import asyncio
import logging
import os
import socket
import stat
from asyncio import DatagramProtocol
from dataclasses import dataclass
from enum import Enum, auto
from pathlib import Path
from typing import NamedTuple, Optional

# Default=32768, Max= 262142, https://docstore.mik.ua/manuals/hp-ux/en/B2355-60130/UNIX.7P.html
RECV_BUFFER_LENGTH = 65536

log = logging.getLogger(__name__)


class SocketServerException(Exception):
    pass


class SocketBindException(SocketServerException):

    def __init__(self, socket_path):
        self.socket_path = socket_path
        super().__init__(f"Unable to create socket: {socket_path}")


class PayloadTooLarge(SocketServerException):
    """
    This exception is thrown when the operating system rejects sent datagram due to its size.
    """

    def __init__(self, payload_size):
        super().__init__("Datagram payload is too large: " + str(payload_size))


class SocketServerAsync(abc.ABC, DatagramProtocol):

    def __init__(self, socket_path: Path, *, allow_ping=False):
        self._socket_path = socket_path
        self._allow_ping = allow_ping
        self._transport = None

    @property
    def socket_path(self) -> Path:
        return self._socket_path

    async def start(self):
        loop = asyncio.get_running_loop()
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_DGRAM)
        try:
            sock.bind(str(self._socket_path))
            self._transport, _ = await loop.create_datagram_endpoint(lambda: self, sock=sock)
        except OSError as e:
            sock.close()
            raise SocketBindException(self._socket_path) from e

        # Allow users from the same group to communicate with the server
        os.chmod(self._socket_path, stat.S_IRUSR | stat.S_IWUSR | stat.S_IRGRP | stat.S_IWGRP)
        log.info(f"[socket_server_started] socket=[{self._socket_path}]")

    def datagram_received(self, data, addr):
        asyncio.create_task(self._handle_datagram(data, addr))

    async def _handle_datagram(self, data, addr):
        if not data:
            return

        req_body = data.decode()
        if self._allow_ping and req_body == 'ping':
            resp_body = 'pong'
        else:
            resp_body = await self.handle(req_body)

        if resp_body and self._transport:
            try:
                self._transport.sendto(resp_body.encode(), addr)
            except OSError as e:
                if e.errno == 90:
                    log.error(f"[server_response_payload_too_large] length=[{len(resp_body.encode())}]")
                else:
                    log.warning(f"[server_response_not_sent] reason=[{e}]")

    @abc.abstractmethod
    async def handle(self, req_body):
        """
        Handle request and optionally return response
        :return: response body or None if no response
        """

    async def stop(self):
        if not self._transport:
            return

        try:
            self._transport.close()
        finally:
            self._transport = None
            if os.path.exists(self._socket_path):
                os.remove(self._socket_path)

        log.info('[socket_server_stopped]')


class Error(Enum):
    TIMEOUT = auto()
    STALE_SOCKET = auto()
    NO_SOCKET = auto()


class ServerResponse(NamedTuple):
    response: Optional[str]
    error: Optional[Error] = None


@dataclass
class PingResult:
    active: bool
    timed_out: bool
    stale: bool


class SocketClient:
    """Datagram client bound to an auto-generated abstract address so the server can reply"""

    def __init__(self, socket_path: Path, *, timeout=10):
        self._socket_path = socket_path
        self._client = socket.socket(socket.AF_UNIX, socket.SOCK_DGRAM)
        self._client.bind(self._client.getsockname())
        self._client.settimeout(timeout)

    def communicate(self, req: str) -> ServerResponse:
        """
        :raises PayloadTooLarge: when request payload is too large
        """
        encoded = req.encode()
        try:
            self._client.sendto(encoded, str(self._socket_path))
            datagram = self._client.recv(RECV_BUFFER_LENGTH)
            return ServerResponse(datagram.decode())
        except TimeoutError:
            log.warning(f"[socket_timeout] socket=[{self._socket_path}]")
            return ServerResponse(None, Error.TIMEOUT)
        except ConnectionRefusedError:
            log.warning(f"[stale_socket] socket=[{self._socket_path}]")
            return ServerResponse(None, Error.STALE_SOCKET)
        except OSError as e:
            if e.errno == 2:
                return ServerResponse(None, Error.NO_SOCKET)
            if e.errno == 90:
                raise PayloadTooLarge(len(encoded))
            raise

    def ping(self) -> PingResult:
        resp = self.communicate('ping')
        return PingResult(
            active=resp.response == 'pong',
            timed_out=resp.error is Error.TIMEOUT,
            stale=resp.error is Error.STALE_SOCKET,
        )

    def close(self):
        self._client.close()
