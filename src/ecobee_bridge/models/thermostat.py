"""Thermostat data models and unit conversion.

ecobee reports temperatures as integer tenths of a degree Fahrenheit
(``712`` is 71.2°F). Everything published on the bus is Celsius with one
decimal place.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from pydantic import BaseModel, Field

from ecobee_bridge.utils.errors import MalformedResponseError

NO_EVENT_MODE = "schedule"
TEMPERATURE = "temperature"

_ONE_DECIMAL = Decimal("0.1")


def tenths_f_to_celsius(raw: Any) -> Decimal:
    """Convert an ecobee tenths-of-°F value to Celsius rounded to 0.1.

    Raises:
        ValueError: If ``raw`` is not numeric (e.g. ``"unknown"``).
    """
    try:
        fahrenheit = Decimal(str(raw).strip()) / 10
    except InvalidOperation as e:
        raise ValueError(f"Not a temperature value: {raw!r}") from e
    celsius = (fahrenheit - 32) * 5 / 9
    return celsius.quantize(_ONE_DECIMAL, rounding=ROUND_HALF_UP)


def format_celsius(raw: Any) -> str:
    """``712`` -> ``"21.8"``."""
    return str(tenths_f_to_celsius(raw))


def target_temperature(desired_heat: Decimal | float, desired_cool: Decimal | float) -> Decimal:
    """Midpoint of the heat and cool setpoints."""
    heat = Decimal(str(desired_heat))
    cool = Decimal(str(desired_cool))
    return (heat + (cool - heat) / 2).quantize(_ONE_DECIMAL, rounding=ROUND_HALF_UP)


class RemoteSensor(BaseModel):
    """One remote (or built-in) sensor and its raw capability readings."""
    name: str
    capabilities: dict[str, str] = Field(default_factory=dict)

    def readings(self) -> list[tuple[str, str]]:
        """Publishable (capability, value) pairs; temperatures in Celsius.

        Capabilities whose temperature is not numeric are left out.
        """
        out: list[tuple[str, str]] = []
        for capability, value in self.capabilities.items():
            if capability == TEMPERATURE:
                try:
                    value = format_celsius(value)
                except ValueError:
                    continue
            out.append((capability, value))
        return out


class ThermostatSnapshot(BaseModel):
    """Normalized view of a single thermostat from one poll."""
    name: str
    mode: str = NO_EVENT_MODE
    fan_mode: str | None = None
    actual_temperature: Decimal | None = None
    actual_humidity: int | None = None
    desired_heat: Decimal | None = None
    desired_cool: Decimal | None = None
    connected: bool = False
    sensors: list[RemoteSensor] = Field(default_factory=list)

    @property
    def target_temperature(self) -> Decimal | None:
        if self.desired_heat is None or self.desired_cool is None:
            return None
        return target_temperature(self.desired_heat, self.desired_cool)


def _optional_celsius(raw: Any) -> Decimal | None:
    if raw is None:
        return None
    try:
        return tenths_f_to_celsius(raw)
    except ValueError:
        return None


def _active_event(events: list[dict[str, Any]]) -> dict[str, Any] | None:
    for event in events:
        if event.get("running", True):
            return event
    return None


def parse_thermostat(data: dict[str, Any]) -> ThermostatSnapshot:
    """Build a snapshot from one entry of ``thermostatList``.

    Raises:
        MalformedResponseError: If the entry has no name.
    """
    name = data.get("name")
    if not name:
        raise MalformedResponseError("Thermostat entry has no name")

    runtime = data.get("runtime") or {}
    event = _active_event(data.get("events") or [])

    mode = NO_EVENT_MODE
    fan_mode = runtime.get("desiredFanMode")
    if event is not None:
        mode = event.get("holdClimateRef") or NO_EVENT_MODE
        fan_mode = event.get("fan") or fan_mode

    humidity = runtime.get("actualHumidity")
    sensors = [
        RemoteSensor(
            name=str(sensor.get("name", "")),
            capabilities={
                str(cap["type"]): str(cap.get("value", ""))
                for cap in sensor.get("capability") or []
                if cap.get("type")
            },
        )
        for sensor in data.get("remoteSensors") or []
        if sensor.get("name")
    ]

    return ThermostatSnapshot(
        name=str(name),
        mode=str(mode),
        fan_mode=fan_mode,
        actual_temperature=_optional_celsius(runtime.get("actualTemperature")),
        actual_humidity=int(humidity) if humidity is not None else None,
        desired_heat=_optional_celsius(runtime.get("desiredHeat")),
        desired_cool=_optional_celsius(runtime.get("desiredCool")),
        connected=bool(runtime.get("connected", False)),
        sensors=sensors,
    )
