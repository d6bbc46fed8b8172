"""Unit tests for control mode transitions, relay decisions and override persistence."""

import json
from datetime import datetime, timezone

import pytest

from ultrarelay.common.control import Command, CommandType, ControlMode, OverrideRecord, parse_command
from ultrarelay.common.relay import RelayState
from ultrarelay.service.control import ControlState, OverrideStore, decision_reason, desired_relay_state, transition

NOW = datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)


def command(command_type: CommandType) -> Command:
    return Command(command_type, command_type.value)


class TestTransition:

    @pytest.mark.parametrize("mode", list(ControlMode))
    def test_mode_commands(self, mode):
        assert transition(mode, command(CommandType.SET_ON)) is ControlMode.MANUAL_ON
        assert transition(mode, command(CommandType.SET_OFF)) is ControlMode.MANUAL_OFF
        assert transition(mode, command(CommandType.SET_AUTO)) is ControlMode.AUTO

    @pytest.mark.parametrize("mode", list(ControlMode))
    def test_status_and_unrecognized_keep_mode(self, mode):
        assert transition(mode, command(CommandType.STATUS_REQUEST)) is mode
        assert transition(mode, command(CommandType.UNRECOGNIZED)) is mode


class TestDesiredRelayState:

    def test_auto_below_threshold(self):
        assert desired_relay_state(ControlMode.AUTO, 4.999, 5.0) is RelayState.ON

    def test_auto_at_threshold(self):
        assert desired_relay_state(ControlMode.AUTO, 5.0, 5.0) is RelayState.OFF

    def test_auto_above_threshold(self):
        assert desired_relay_state(ControlMode.AUTO, 10.744, 5.0) is RelayState.OFF

    @pytest.mark.parametrize("distance", [0.0, 4.999, 5.0, 100.0])
    def test_manual_modes_ignore_distance(self, distance):
        assert desired_relay_state(ControlMode.MANUAL_ON, distance, 5.0) is RelayState.ON
        assert desired_relay_state(ControlMode.MANUAL_OFF, distance, 5.0) is RelayState.OFF

    def test_decision_reason(self):
        assert decision_reason(ControlMode.AUTO, 1.534, 5.0) == "Distance: 1.534m < 5.0m"
        assert decision_reason(ControlMode.AUTO, 5.0, 5.0) == "Distance: 5.000m >= 5.0m"
        assert decision_reason(ControlMode.AUTO, None, 5.0) == "Automatic mode (no reading yet)"
        assert decision_reason(ControlMode.MANUAL_OFF, 1.0, 5.0) == "Manual override (manual_off)"


class TestControlState:

    def test_initial_mode_is_auto(self):
        state = ControlState()

        assert state.mode is ControlMode.AUTO
        assert state.override is None

    def test_restored_override(self):
        state = ControlState(OverrideRecord(ControlMode.MANUAL_OFF, NOW, 'mqtt'))

        assert state.mode is ControlMode.MANUAL_OFF
        assert "manual_off by mqtt" in state.reason()

    def test_manual_on_records_override(self):
        state = ControlState()

        result = state.apply(parse_command("on"), NOW, 'mqtt')

        assert result.mode_changed
        assert result.override_changed
        assert result.previous is ControlMode.AUTO
        assert state.mode is ControlMode.MANUAL_ON
        assert state.override == OverrideRecord(ControlMode.MANUAL_ON, NOW, 'mqtt')

    def test_auto_clears_override(self):
        state = ControlState()
        state.apply(parse_command("off"), NOW, 'api')

        result = state.apply(parse_command("auto"), NOW, 'api')

        assert result.mode_changed
        assert result.override_changed
        assert state.mode is ControlMode.AUTO
        assert state.override is None

    def test_auto_when_already_auto(self):
        state = ControlState()

        result = state.apply(parse_command("auto"), NOW, 'mqtt')

        assert not result.mode_changed
        assert not result.override_changed

    def test_repeated_manual_command_renews_override(self):
        state = ControlState()
        state.apply(parse_command("on"), NOW, 'mqtt')
        later = datetime(2024, 5, 1, 13, 0, tzinfo=timezone.utc)

        result = state.apply(parse_command("on"), later, 'api')

        assert not result.mode_changed
        assert result.override_changed
        assert state.override.since == later
        assert state.override.source == 'api'

    @pytest.mark.parametrize("text", ["status", "garbage"])
    def test_non_mode_commands_change_nothing(self, text):
        state = ControlState()
        state.apply(parse_command("on"), NOW, 'mqtt')
        override = state.override

        result = state.apply(parse_command(text), NOW, 'mqtt')

        assert not result.mode_changed
        assert not result.override_changed
        assert state.mode is ControlMode.MANUAL_ON
        assert state.override is override


class TestOverrideRecord:

    def test_auto_is_not_an_override(self):
        with pytest.raises(ValueError):
            OverrideRecord(ControlMode.AUTO, NOW)


class TestOverrideStore:

    @pytest.mark.asyncio
    async def test_save_and_load(self, tmp_path):
        store = OverrideStore(tmp_path / 'state' / 'override.json')
        record = OverrideRecord(ControlMode.MANUAL_ON, NOW, 'api')

        await store.save(record)

        assert await store.load() == record

    @pytest.mark.asyncio
    async def test_sync_none_removes_record(self, tmp_path):
        store = OverrideStore(tmp_path / 'override.json')
        await store.sync(OverrideRecord(ControlMode.MANUAL_OFF, NOW))

        await store.sync(None)

        assert not store.path.exists()
        assert await store.load() is None

    @pytest.mark.asyncio
    async def test_load_missing(self, tmp_path):
        assert await OverrideStore(tmp_path / 'override.json').load() is None

    @pytest.mark.parametrize("content", [
        "not json",
        json.dumps({"mode": "auto", "since": "2024-05-01T12:30:00+00:00"}),
        json.dumps({"mode": "manual_on"}),
        json.dumps({"mode": "manual_on", "since": "yesterday"}),
    ])
    @pytest.mark.asyncio
    async def test_load_invalid_record_is_ignored(self, tmp_path, content):
        path = tmp_path / 'override.json'
        path.write_text(content)

        assert await OverrideStore(path).load() is None
