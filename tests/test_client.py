"""Unit tests for the CLI API client and commands."""

import json
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from ultrarelay.cli import cli
from ultrarelay.cli.client import APIClient, NoService, ServiceErrorException, ServiceFailureException
from ultrarelay.common.control import CommandType, ControlMode
from ultrarelay.common.relay import RelayState
from ultrarelay.common.socket import Error, ServerResponse

STATUS_RESULT = {
    "relay_status": "OFF",
    "control_mode": "manual_off",
    "reason": "Manual override manual_off by mqtt since 2024-05-01T12:30:00.000+00:00",
    "timestamp": "2024-05-01T12:31:00.000+00:00",
    "override_since": "2024-05-01T12:30:00.000+00:00",
    "override_source": "mqtt",
    "distance": 10.744,
    "broker_connected": True,
}


def ok(result):
    return ServerResponse(json.dumps({"jsonrpc": "2.0", "result": result, "id": None}))


@pytest.fixture
def client(tmp_path):
    with APIClient(tmp_path / 'api.sock') as api_client:
        yield api_client


class TestAPIClient:

    def test_send_command(self, client):
        with patch.object(APIClient, 'communicate', return_value=ok({"command": "set_on"})) as communicate:
            assert client.send_command('on') is CommandType.SET_ON

        req = json.loads(communicate.call_args.args[0])
        assert req["method"] == 'control.command'
        assert req["params"] == {"command": "on"}

    def test_send_get_status(self, client):
        with patch.object(APIClient, 'communicate', return_value=ok(STATUS_RESULT)):
            status = client.send_get_status()

        assert status.relay_status is RelayState.OFF
        assert status.control_mode is ControlMode.MANUAL_OFF
        assert status.override.source == 'mqtt'

    def test_no_service(self, client):
        with patch.object(APIClient, 'communicate', return_value=ServerResponse(None, Error.NO_SOCKET)):
            with pytest.raises(NoService):
                client.send_get_status()

    def test_timeout(self, client):
        with patch.object(APIClient, 'communicate', return_value=ServerResponse(None, Error.TIMEOUT)):
            with pytest.raises(ServiceErrorException):
                client.send_get_status()

    def test_error_response(self, client):
        error = {"jsonrpc": "2.0", "error": {"code": -32003, "message": "Command x is not recognized"}, "id": None}
        with patch.object(APIClient, 'communicate', return_value=ServerResponse(json.dumps(error))):
            with pytest.raises(ServiceFailureException) as exc_info:
                client.send_command('x')

        assert exc_info.value.error["code"] == -32003


class TestCli:

    def test_service_not_running(self):
        with patch('ultrarelay.cli.client.paths.search_api_socket', return_value=None):
            result = CliRunner().invoke(cli, ['status'])

        assert result.exit_code == 1
        assert "not running" in result.output

    def test_on(self, tmp_path):
        with patch('ultrarelay.cli.client.paths.search_api_socket', return_value=tmp_path / 'api.sock'), \
                patch.object(APIClient, 'communicate', return_value=ok({"command": "set_on"})) as communicate:
            result = CliRunner().invoke(cli, ['on'])

        assert result.exit_code == 0
        assert json.loads(communicate.call_args.args[0])["params"] == {"command": "on"}

    def test_status(self, tmp_path):
        with patch('ultrarelay.cli.client.paths.search_api_socket', return_value=tmp_path / 'api.sock'), \
                patch.object(APIClient, 'communicate', return_value=ok(STATUS_RESULT)):
            result = CliRunner().invoke(cli, ['status'])

        assert result.exit_code == 0
        assert "manual_off" in result.output
        assert "10.744 m" in result.output
