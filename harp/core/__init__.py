"""Pure, I/O-free building blocks: address resolution, control schema, status machine."""
from __future__ import annotations

from harp.core.address import EndpointDescriptor, EndpointKind, resolve_address
from harp.core.controls import (
    AudioInControl,
    ComboBoxControl,
    Control,
    ControlSchema,
    ControlType,
    MidiInControl,
    ModelCard,
    NumberBoxControl,
    SliderControl,
    TextBoxControl,
    ToggleControl,
    parse_controls,
    serialize_values,
)
from harp.core.status import InvalidTransitionError, SessionStatus

__all__ = [
    "AudioInControl",
    "ComboBoxControl",
    "Control",
    "ControlSchema",
    "ControlType",
    "EndpointDescriptor",
    "EndpointKind",
    "InvalidTransitionError",
    "MidiInControl",
    "ModelCard",
    "NumberBoxControl",
    "SessionStatus",
    "SliderControl",
    "TextBoxControl",
    "ToggleControl",
    "parse_controls",
    "resolve_address",
    "serialize_values",
]
