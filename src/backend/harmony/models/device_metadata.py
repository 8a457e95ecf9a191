"""Typed helpers over the free-form device metadata map.

Device metadata is stored as a string-keyed map of scalar values. Values are
validated when they cross the API boundary, and business logic reads them
through the accessors below instead of poking at the raw dict.
"""

from typing import Any

from harmony.models.device import Device, DeviceType

Scalar = str | int | float | bool | None

# Defaults applied on registration when the caller does not supply them
TYPE_DEFAULTS: dict[DeviceType, dict[str, Scalar]] = {
    DeviceType.SMART_BIN: {"capacity": 1000},
    DeviceType.SMART_LAMP: {"wattage": 10, "colorTemp": 3000},
    DeviceType.ACCESS_CONTROL: {"accessLevel": "medium"},
    DeviceType.RFID_READER: {"frequency": "13.56 MHz"},
    DeviceType.GENERIC: {},
}


class MetadataError(ValueError):
    """Metadata value is not a scalar or has the wrong shape."""

    pass


def validate_metadata(values: dict[str, Any] | None) -> dict[str, Scalar]:
    """Reject nested structures; metadata values must be scalars."""
    if not values:
        return {}
    if not isinstance(values, dict):
        raise MetadataError("metadata must be an object")

    cleaned: dict[str, Scalar] = {}
    for key, value in values.items():
        if not isinstance(key, str):
            raise MetadataError("metadata keys must be strings")
        if value is not None and not isinstance(value, (str, int, float, bool)):
            raise MetadataError(f"metadata value for '{key}' must be a scalar")
        cleaned[key] = value
    return cleaned


def with_type_defaults(device_type: DeviceType, values: dict[str, Scalar]) -> dict[str, Scalar]:
    """Fill in type defaults for keys that are missing or falsy."""
    merged = dict(values)
    for key, default in TYPE_DEFAULTS[DeviceType(device_type)].items():
        if not merged.get(key):
            merged[key] = default
    return merged


def _get(device: Device, key: str, default: Scalar = None) -> Scalar:
    return (device.properties or {}).get(key, default)


def _set(device: Device, **values: Scalar) -> None:
    # Reassign so the JSON column is flagged dirty
    updated = dict(device.properties or {})
    updated.update(values)
    device.properties = updated


def fill_level(device: Device) -> float | None:
    value = _get(device, "fillLevel")
    return float(value) if value is not None else None


def is_on(device: Device) -> bool:
    return bool(_get(device, "isOn", False))


def brightness(device: Device) -> int | None:
    value = _get(device, "brightness")
    return int(value) if value is not None else None


def is_locked(device: Device) -> bool:
    return bool(_get(device, "isLocked", True))


def location(device: Device) -> str | None:
    value = _get(device, "location")
    return str(value) if value is not None else None


def toggle_power(device: Device) -> bool:
    """Flip a lamp on or off and return the new state."""
    new_state = not is_on(device)
    _set(device, isOn=new_state)
    return new_state


def set_brightness(device: Device, value: Any) -> int:
    try:
        level = int(value)
    except (TypeError, ValueError):
        raise MetadataError("brightness must be an integer")
    if not 0 <= level <= 100:
        raise MetadataError("brightness must be between 0 and 100")
    _set(device, brightness=level)
    return level


def set_locked(device: Device, value: Any) -> bool:
    if not isinstance(value, bool):
        raise MetadataError("locked must be a boolean")
    _set(device, isLocked=value)
    return value


def set_location(device: Device, value: str) -> None:
    _set(device, location=value)


def state_summary(device: Device) -> dict[str, Scalar]:
    """Typed view of the metadata keys that matter for the device's type."""
    device_type = DeviceType(device.type)
    state: dict[str, Scalar] = {"location": location(device)}
    if device_type == DeviceType.SMART_BIN:
        state["fillLevel"] = fill_level(device)
    elif device_type == DeviceType.SMART_LAMP:
        state["isOn"] = is_on(device)
        state["brightness"] = brightness(device)
    elif device_type == DeviceType.ACCESS_CONTROL:
        state["isLocked"] = is_locked(device)
    return state
