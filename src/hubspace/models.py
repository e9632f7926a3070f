"""Device, function and state snapshots returned by the Afero metadevice API."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

StateValue = str | int | float | bool | dict[str, Any] | list[Any] | None
"""A function state value.  Range functions carry numbers, enum functions carry tokens."""


@dataclass
class ValueRange:
    """Numeric bounds declared for a function value."""

    min: float | None = None
    max: float | None = None
    step: float | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ValueRange:
        return cls(min=data.get("min"), max=data.get("max"), step=data.get("step"))

    @property
    def is_integral(self) -> bool:
        """Whether every bound is a whole number (so values should be ``int``)."""
        return all(
            float(v).is_integer() for v in (self.min, self.max, self.step) if v is not None
        )


@dataclass
class DeviceValue:
    """A low-level device attribute backing a function value."""

    type: str
    key: str
    value: str | None = None
    format: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DeviceValue:
        return cls(
            type=str(data.get("type", "")),
            key=str(data.get("key", "")),
            value=data.get("value"),
            format=data.get("format"),
        )


@dataclass
class FunctionValue:
    """A named value slot within a :class:`Function` definition."""

    name: str
    range: ValueRange | None = None
    device_values: list[DeviceValue] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FunctionValue:
        raw_range = data.get("range")
        return cls(
            name=str(data.get("name", "")),
            range=ValueRange.from_dict(raw_range) if raw_range else None,
            device_values=[DeviceValue.from_dict(d) for d in data.get("deviceValues") or []],
        )


@dataclass
class Function:
    """A controllable capability declared in a device description.

    ``function_class`` is the stable category key (``power``,
    ``brightness``); ``function_instance`` tells apart several controls
    of the same class on one device.
    """

    function_class: str
    function_instance: str | None = None
    type: str = ""
    schedulable: bool = False
    values: list[FunctionValue] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Function:
        return cls(
            function_class=str(data["functionClass"]),
            function_instance=data.get("functionInstance"),
            type=str(data.get("type", "")),
            schedulable=bool(data.get("schedulable", False)),
            values=[FunctionValue.from_dict(v) for v in data.get("values") or []],
        )

    @property
    def value_range(self) -> ValueRange | None:
        """The first numeric range declared by this function, if any."""
        for value in self.values:
            if value.range is not None and (
                value.range.min is not None or value.range.max is not None
            ):
                return value.range
        return None

    @property
    def is_numeric(self) -> bool:
        return self.value_range is not None

    @property
    def names(self) -> list[str]:
        """Named values (``on``, ``off``) accepted by an enum function."""
        return [v.name for v in self.values if v.name]

    def coerce(self, raw: str) -> StateValue:
        """Convert user-facing text to the value this function expects.

        Numeric functions get an ``int`` (or ``float`` when the declared
        step is fractional); everything else is passed through as text.
        """
        value_range = self.value_range
        if value_range is None:
            return raw
        try:
            number = float(raw)
        except ValueError:
            raise ValueError(
                f"Invalid value '{raw}' for {self.function_class}. Expected a number."
            ) from None
        if value_range.is_integral and number.is_integer():
            return int(number)
        return number


@dataclass
class FunctionState:
    """The current value of one function on one device."""

    function_class: str
    value: StateValue
    last_update_time: int | None = None
    function_instance: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FunctionState:
        return cls(
            function_class=str(data["functionClass"]),
            value=data.get("value"),
            last_update_time=data.get("lastUpdateTime"),
            function_instance=data.get("functionInstance"),
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "functionClass": self.function_class,
            "value": self.value,
            "lastUpdateTime": self.last_update_time,
        }
        if self.function_instance is not None:
            out["functionInstance"] = self.function_instance
        return out

    def matches(self, function_class: str, function_instance: str | None = None) -> bool:
        """Match on class, and on instance only when one is requested."""
        if self.function_class != function_class:
            return False
        return function_instance is None or self.function_instance == function_instance


@dataclass
class Device:
    """A read-only snapshot of a top-level Hubspace device.

    Built from one ``metadevice.device`` entry of the metadevice
    listing.  The untouched payload is kept in :attr:`raw`.
    """

    id: str
    friendly_name: str
    type_id: str = ""
    device_id: str = ""
    manufacturer: str = ""
    model: str = ""
    device_class: str = ""
    functions: list[Function] = field(default_factory=list)
    metadevice_id: str = ""
    states: list[FunctionState] = field(default_factory=list)
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Device:
        description = data.get("description") or {}
        info = description.get("device") or {}
        state = data.get("state") or {}
        return cls(
            id=str(data["id"]),
            friendly_name=str(data.get("friendlyName", "")),
            type_id=str(data.get("typeId", "")),
            device_id=str(data.get("deviceId", "")),
            manufacturer=str(info.get("manufacturerName", "")),
            model=str(info.get("model", "")),
            device_class=str(info.get("deviceClass", "")),
            functions=[Function.from_dict(f) for f in description.get("functions") or []],
            metadevice_id=str(state.get("metadeviceId", "")),
            states=[FunctionState.from_dict(s) for s in state.get("values") or []],
            raw=data,
        )

    def function(
        self, function_class: str, function_instance: str | None = None
    ) -> Function | None:
        """Return the first function definition matching *function_class*."""
        for func in self.functions:
            if func.function_class != function_class:
                continue
            if function_instance is None or func.function_instance == function_instance:
                return func
        return None

    def state(
        self, function_class: str, function_instance: str | None = None
    ) -> FunctionState | None:
        """Return the first current state matching *function_class*."""
        return find_state(self.states, function_class, function_instance)


@dataclass
class DeviceFunctionStates:
    """All function states of a device, with the ids needed to write them."""

    id: str
    metadevice_id: str
    states: list[FunctionState]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "metadeviceId": self.metadevice_id,
            "states": [s.to_dict() for s in self.states],
        }


@dataclass
class DeviceFunctionState:
    """One function state of a device.

    ``state`` is ``None`` when the device does not report the function,
    or when a write was accepted but the server did not echo the value.
    """

    id: str
    metadevice_id: str
    state: FunctionState | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "metadeviceId": self.metadevice_id,
            "state": self.state.to_dict() if self.state is not None else None,
        }


def find_state(
    states: list[FunctionState], function_class: str, function_instance: str | None = None
) -> FunctionState | None:
    """First entry of *states* matching the function, or ``None``."""
    for state in states:
        if state.matches(function_class, function_instance):
            return state
    return None
