"""Tests for models — unit conversion, thermostat parsing, token models."""
from decimal import Decimal

import pytest

from ecobee_bridge.models.auth import PinResponse, TokenPair, TokenResponse
from ecobee_bridge.models.thermostat import (
    RemoteSensor,
    format_celsius,
    parse_thermostat,
    target_temperature,
    tenths_f_to_celsius,
)
from ecobee_bridge.utils.errors import MalformedResponseError


# ── temperature conversion ────────────────────────────────────────────

def test_712_tenths_f_is_21_8_c():
    assert format_celsius(712) == "21.8"


def test_string_value_converts():
    assert format_celsius("712") == "21.8"


def test_freezing_point():
    assert format_celsius(320) == "0.0"


def test_below_freezing():
    assert format_celsius(140) == "-10.0"


def test_rounds_half_away_from_zero():
    # 32.9°F = 0.5°C exactly
    assert tenths_f_to_celsius(329) == Decimal("0.5")
    # 77.3°F = 25.1666... -> 25.2
    assert format_celsius(773) == "25.2"


def test_non_numeric_temperature_raises():
    with pytest.raises(ValueError):
        tenths_f_to_celsius("unknown")


def test_target_temperature_midpoint():
    assert target_temperature(20.0, 24.0) == Decimal("22.0")


def test_target_temperature_uneven():
    assert target_temperature(Decimal("20.0"), Decimal("23.5")) == Decimal("21.8")


# ── RemoteSensor ──────────────────────────────────────────────────────

def test_sensor_readings_convert_temperature():
    sensor = RemoteSensor(name="Bedroom", capabilities={"temperature": "712", "occupancy": "false"})
    assert sensor.readings() == [("temperature", "21.8"), ("occupancy", "false")]


def test_sensor_readings_skip_unknown_temperature():
    sensor = RemoteSensor(name="Garage", capabilities={"temperature": "unknown", "occupancy": "true"})
    assert sensor.readings() == [("occupancy", "true")]


# ── parse_thermostat ──────────────────────────────────────────────────

def _thermostat(**overrides):
    data = {
        "name": "Main Floor",
        "runtime": {
            "connected": True,
            "actualTemperature": 705,
            "actualHumidity": 38,
            "desiredHeat": 680,
            "desiredCool": 752,
            "desiredFanMode": "auto",
        },
        "events": [],
        "remoteSensors": [
            {"name": "Office", "capability": [{"id": "1", "type": "temperature", "value": "690"}]},
        ],
    }
    data.update(overrides)
    return data


def test_parse_without_events_is_schedule():
    snap = parse_thermostat(_thermostat())
    assert snap.name == "Main Floor"
    assert snap.mode == "schedule"
    assert snap.fan_mode == "auto"
    assert snap.connected is True
    assert snap.actual_humidity == 38
    assert snap.desired_heat == Decimal("20.0")
    assert snap.desired_cool == Decimal("24.0")
    assert snap.target_temperature == Decimal("22.0")


def test_parse_uses_active_event():
    snap = parse_thermostat(_thermostat(events=[
        {"type": "vacation", "running": False, "holdClimateRef": "", "fan": "auto"},
        {"type": "hold", "running": True, "holdClimateRef": "sleep", "fan": "on"},
    ]))
    assert snap.mode == "sleep"
    assert snap.fan_mode == "on"


def test_parse_sensors():
    snap = parse_thermostat(_thermostat())
    assert len(snap.sensors) == 1
    assert snap.sensors[0].name == "Office"
    assert snap.sensors[0].capabilities == {"temperature": "690"}


def test_parse_missing_runtime():
    snap = parse_thermostat({"name": "Bare"})
    assert snap.connected is False
    assert snap.target_temperature is None
    assert snap.sensors == []


def test_parse_missing_name_raises():
    with pytest.raises(MalformedResponseError):
        parse_thermostat({"runtime": {}})


# ── auth models ───────────────────────────────────────────────────────

def test_pin_response_alias():
    pin = PinResponse(**{"ecobeePin": "WXYZ", "code": "abc", "interval": 5, "expires_in": 900, "scope": "smartWrite"})
    assert pin.pin == "WXYZ"
    assert pin.code == "abc"


def test_token_response_to_pair():
    pair = TokenResponse(access_token="a", refresh_token="r").to_pair()
    assert pair == TokenPair(access_token="a", refresh_token="r")


def test_token_pair_empty():
    assert TokenPair().is_empty
    assert not TokenPair(access_token="a").is_empty
