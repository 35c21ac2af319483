"""Control schema — the server-declared parameters of a Space.

A HARP-compatible Space describes itself through its ``controls`` endpoint::

    [{"card": {"name": ..., "description": ..., "author": ..., "tags": [...],
               "midi_in": ..., "midi_out": ...},
      "ctrls": [{"ctrl_type": "slider", "label": "Pitch", "minimum": -24,
                 "maximum": 24, "step": 1, "value": 0}, ...]}]

Each record becomes one variant of the :data:`Control` tagged union, keyed by
``ctrl_type``.  Two asymmetric rules govern the list:

- Parsing degrades gracefully: a record with an unknown ``ctrl_type`` is
  skipped with a warning so Spaces that add new control kinds do not break
  older clients.  A *known* record that is missing a field or violates its
  bounds is a :class:`SchemaError`.
- Serialization is all-or-nothing: a partial parameter list would silently
  mis-invoke the remote model, so any control that cannot be serialized fails
  the whole submission.

Order is the server's declaration order (it drives rendering); lookups are
always by ``id``.
"""
from __future__ import annotations

import logging
import uuid
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic_core import PydanticCustomError

from harp.errors import SchemaError, SubmissionError

logger = logging.getLogger(__name__)

JSONValue = Union[str, int, float, bool, None, list["JSONValue"], dict[str, "JSONValue"]]


class ControlType(str, Enum):
    """Wire values of ``ctrl_type``."""

    SLIDER = "slider"
    TEXT = "text"
    AUDIO_IN = "audio_in"
    MIDI_IN = "midi_in"
    NUMBER_BOX = "number_box"
    TOGGLE = "toggle"
    COMBO_BOX = "combo_box"


class ModelCard(BaseModel):
    """Descriptive metadata about the loaded model."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    name: str = ""
    description: str = ""
    author: str = ""
    tags: list[str] = Field(default_factory=list)
    midi_in: str = ""
    midi_out: str = ""

    @model_validator(mode="before")
    @classmethod
    def _null_strings_to_empty(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {k: ("" if v is None and k != "tags" else v) for k, v in data.items()}
        return data


def _new_control_id() -> str:
    return str(uuid.uuid4())


def _bounds_error(field: str, message: str) -> PydanticCustomError:
    return PydanticCustomError("control_bounds", message, {"field": field})


class _ControlBase(BaseModel):
    model_config = ConfigDict(validate_assignment=True, extra="ignore")

    id: str = Field(default_factory=_new_control_id)
    label: str = ""


class SliderControl(_ControlBase):
    ctrl_type: Literal[ControlType.SLIDER] = ControlType.SLIDER
    minimum: float
    maximum: float
    step: float
    value: float

    @model_validator(mode="after")
    def _check_bounds(self) -> "SliderControl":
        if self.step <= 0:
            raise _bounds_error("step", "step must be > 0")
        if self.minimum > self.maximum:
            raise _bounds_error("minimum", "minimum must be <= maximum")
        if not self.minimum <= self.value <= self.maximum:
            raise _bounds_error("value", f"value {self.value} outside [{self.minimum}, {self.maximum}]")
        return self


class NumberBoxControl(_ControlBase):
    ctrl_type: Literal[ControlType.NUMBER_BOX] = ControlType.NUMBER_BOX
    min: float
    max: float
    value: float

    @model_validator(mode="after")
    def _check_bounds(self) -> "NumberBoxControl":
        if self.min > self.max:
            raise _bounds_error("min", "min must be <= max")
        if not self.min <= self.value <= self.max:
            raise _bounds_error("value", f"value {self.value} outside [{self.min}, {self.max}]")
        return self


class TextBoxControl(_ControlBase):
    ctrl_type: Literal[ControlType.TEXT] = ControlType.TEXT
    value: str = ""


class ToggleControl(_ControlBase):
    ctrl_type: Literal[ControlType.TOGGLE] = ControlType.TOGGLE
    value: bool = False


class ComboBoxControl(_ControlBase):
    """Membership of ``value`` in ``options`` is checked on edit and on submit, not on parse."""

    ctrl_type: Literal[ControlType.COMBO_BOX] = ControlType.COMBO_BOX
    options: list[str] = Field(min_length=1)
    value: str = ""


class AudioInControl(_ControlBase):
    """Primary audio input. ``value`` is filled with the uploaded path at submit time."""

    ctrl_type: Literal[ControlType.AUDIO_IN] = ControlType.AUDIO_IN
    value: str = ""


class MidiInControl(_ControlBase):
    """Primary MIDI input. ``value`` is filled with the uploaded path at submit time."""

    ctrl_type: Literal[ControlType.MIDI_IN] = ControlType.MIDI_IN
    value: str = ""


Control = Annotated[
    Union[
        SliderControl,
        NumberBoxControl,
        TextBoxControl,
        ToggleControl,
        ComboBoxControl,
        AudioInControl,
        MidiInControl,
    ],
    Field(discriminator="ctrl_type"),
]

# One entry per ControlType; parse_controls dispatches through this table.
CONTROL_CLASSES: dict[ControlType, type[_ControlBase]] = {
    ControlType.SLIDER: SliderControl,
    ControlType.NUMBER_BOX: NumberBoxControl,
    ControlType.TEXT: TextBoxControl,
    ControlType.TOGGLE: ToggleControl,
    ControlType.COMBO_BOX: ComboBoxControl,
    ControlType.AUDIO_IN: AudioInControl,
    ControlType.MIDI_IN: MidiInControl,
}

INPUT_CONTROL_TYPES: frozenset[ControlType] = frozenset({
    ControlType.AUDIO_IN,
    ControlType.MIDI_IN,
})


def _first_error(exc: ValidationError) -> tuple[str | None, str]:
    """Field name and message of the first validation error."""
    err = exc.errors()[0]
    loc = err.get("loc") or ()
    field = str(loc[0]) if loc else None
    if err.get("type") == "missing":
        return field, f"missing required field '{field}'"
    if field is None:
        # model-level bounds checks name their field in the error context
        field = (err.get("ctx") or {}).get("field")
    return field, err.get("msg", "invalid value")


def parse_control(record: JSONValue, index: int = 0) -> Control | None:
    """Build one control from its wire record.

    Returns None (after logging) for an unknown ``ctrl_type``.

    Raises:
        SchemaError: the record is not an object, or a known type is malformed.
    """
    if not isinstance(record, dict):
        raise SchemaError("control record is not an object", index=index, field=None)

    raw_type = record.get("ctrl_type")
    try:
        ctrl_type = ControlType(raw_type)
    except ValueError:
        logger.warning(
            "⚠️ Skipping control #%d with unknown ctrl_type %r (label=%r)",
            index, raw_type, record.get("label"),
        )
        return None

    cls = CONTROL_CLASSES[ctrl_type]
    try:
        control = cls.model_validate({**record, "ctrl_type": ctrl_type})
    except ValidationError as exc:
        field, msg = _first_error(exc)
        raise SchemaError(msg, index=index, field=field, ctrl_type=ctrl_type.value) from exc

    logger.debug("%s '%s' added", ctrl_type.value, control.label)
    return control  # type: ignore[return-value]


def parse_controls(records: list[JSONValue]) -> list[Control]:
    """Parse a ``ctrls`` array, skipping unknown types and failing on malformed ones."""
    controls: list[Control] = []
    for index, record in enumerate(records):
        control = parse_control(record, index)
        if control is not None:
            controls.append(control)
    return controls


def _serialize_one(control: Control, input_path: str) -> JSONValue:
    match control.ctrl_type:
        case ControlType.SLIDER | ControlType.NUMBER_BOX:
            return float(control.value)
        case ControlType.TEXT:
            return str(control.value)
        case ControlType.TOGGLE:
            return bool(control.value)
        case ControlType.COMBO_BOX:
            if control.value not in control.options:  # type: ignore[union-attr]
                raise SubmissionError(
                    f"'{control.label}' is set to {control.value!r}, "
                    f"which is not one of {control.options}"  # type: ignore[union-attr]
                )
            return control.value
        case ControlType.AUDIO_IN | ControlType.MIDI_IN:
            return input_path
        case _:
            raise SubmissionError(
                f"No serialization rule for control {control.id} "
                f"of type {control.ctrl_type!r}"
            )


def serialize_values(controls: list[Control], input_path: str) -> list[JSONValue]:
    """One JSON value per control, in schema order.

    Input controls carry ``input_path`` (the freshly uploaded remote path)
    instead of their stored value.

    Raises:
        SubmissionError: any control cannot be serialized.
    """
    return [_serialize_one(control, input_path) for control in controls]


class ControlSchema(BaseModel):
    """Model card plus the ordered control list of one loaded Space."""

    card: ModelCard = Field(default_factory=ModelCard)
    controls: list[Control] = Field(default_factory=list)

    @classmethod
    def from_payload(cls, card: dict[str, JSONValue], ctrls: list[JSONValue]) -> "ControlSchema":
        """Build from the ``card`` / ``ctrls`` pair of a controls response."""
        try:
            model_card = ModelCard.model_validate(card)
        except ValidationError as exc:
            field, msg = _first_error(exc)
            raise SchemaError(f"invalid model card: {msg}", index=-1, field=field) from exc
        return cls(card=model_card, controls=parse_controls(ctrls))

    def get(self, control_id: str) -> Control:
        """Look up a control by id. Raises KeyError if absent."""
        for control in self.controls:
            if control.id == control_id:
                return control
        raise KeyError(control_id)

    def find_by_label(self, label: str) -> Control | None:
        """First control whose label matches, case-insensitively."""
        wanted = label.strip().lower()
        for control in self.controls:
            if control.label.strip().lower() == wanted:
                return control
        return None

    @property
    def input_control(self) -> Control | None:
        """The primary input (audio_in / midi_in), if the Space declares one."""
        for control in self.controls:
            if control.ctrl_type in INPUT_CONTROL_TYPES:
                return control
        return None

    def set_value(self, control_id: str, value: Any) -> Control:
        """Validate and store a new value for one control.

        Raises:
            KeyError: unknown id.
            ValueError: the value is invalid for the control (out of range,
                not one of a combo box's options, wrong type).
        """
        control = self.get(control_id)
        if control.ctrl_type is ControlType.COMBO_BOX and value not in control.options:  # type: ignore[union-attr]
            raise ValueError(f"{value!r} is not one of {control.options}")  # type: ignore[union-attr]
        # Validate a candidate first so a rejected edit leaves the control untouched
        try:
            candidate = type(control).model_validate({**control.model_dump(), "value": value})
        except ValidationError as exc:
            raise ValueError(exc.errors()[0].get("msg", "invalid value")) from exc
        control.value = candidate.value
        return control

    def snapshot(self) -> list[Control]:
        """Independent copy of the controls, frozen against later edits."""
        return [control.model_copy(deep=True) for control in self.controls]

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")
