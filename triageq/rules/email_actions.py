"""
Dynamic email actions proposed by the classifier.

The model returns loosely-typed action objects; they are validated here into a
tagged union keyed on "type" before anything is dispatched. Anything that does
not validate becomes an UnknownAction so the watcher can record it instead of
silently dropping it.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator

from triageq.config import EMAIL_LOG_FILENAME, EMAIL_SHEET_NAME
from triageq.observability.logging import get_logger
from triageq.observability.telemetry import counter

logger = get_logger(__name__)

_TYPE_ALIASES = {
    "log_to_excel": "log_to_workbook",
    "log_to_xlsx": "log_to_workbook",
    "markRead": "mark_read",
    "mark_as_read": "mark_read",
    "trash": "delete",
}


def _stringify_row(value: Any) -> dict[str, Any]:
    if not isinstance(value, dict):
        return {}
    row: dict[str, Any] = {}
    for key, cell in value.items():
        if isinstance(cell, (str, int, float, bool)) or cell is None:
            row[str(key)] = cell
        else:
            row[str(key)] = str(cell)
    return row


class LogToWorkbookAction(BaseModel):
    type: Literal["log_to_workbook"] = "log_to_workbook"
    filename: str = EMAIL_LOG_FILENAME
    data: dict[str, Any] = Field(default_factory=dict)

    @field_validator("data", mode="before")
    @classmethod
    def _coerce_data(cls, value: object) -> dict[str, Any]:
        return _stringify_row(value)

    @field_validator("filename", mode="before")
    @classmethod
    def _default_filename(cls, value: object) -> str:
        name = str(value or "").strip()
        if not name:
            return EMAIL_LOG_FILENAME
        return name if name.lower().endswith(".xlsx") else f"{name}.xlsx"


class LogToSheetAction(BaseModel):
    type: Literal["log_to_sheet"] = "log_to_sheet"
    sheet_name: str = EMAIL_SHEET_NAME
    tab_name: str = "Sheet1"
    data: dict[str, Any] = Field(default_factory=dict)

    @field_validator("data", mode="before")
    @classmethod
    def _coerce_data(cls, value: object) -> dict[str, Any]:
        return _stringify_row(value)


class NotifyAction(BaseModel):
    type: Literal["notify"] = "notify"
    message: str | None = None


class MarkReadAction(BaseModel):
    type: Literal["mark_read"] = "mark_read"


class ArchiveAction(BaseModel):
    type: Literal["archive"] = "archive"


class StarAction(BaseModel):
    type: Literal["star"] = "star"


class DeleteAction(BaseModel):
    type: Literal["delete"] = "delete"


class UnknownAction(BaseModel):
    type: Literal["unknown"] = "unknown"
    name: str
    raw: dict[str, Any] = Field(default_factory=dict)


EmailAction = Annotated[
    Union[
        LogToWorkbookAction,
        LogToSheetAction,
        NotifyAction,
        MarkReadAction,
        ArchiveAction,
        StarAction,
        DeleteAction,
        UnknownAction,
    ],
    Field(discriminator="type"),
]

_ACTION_ADAPTER: TypeAdapter[Any] = TypeAdapter(EmailAction)


def parse_action(raw: Any) -> EmailAction:
    """Validate one raw action; never raises."""
    if isinstance(raw, str):
        raw = {"type": raw}
    if not isinstance(raw, dict):
        return UnknownAction(name=type(raw).__name__, raw={})

    name = str(raw.get("type") or raw.get("action") or "")
    normalized = {**raw, "type": _TYPE_ALIASES.get(name, name)}
    normalized.pop("action", None)
    if normalized["type"] == "unknown":
        return UnknownAction(name="unknown", raw=raw)

    try:
        return _ACTION_ADAPTER.validate_python(normalized)
    except ValidationError as e:
        counter("rules.email.unknown_action")
        logger.warning("Unrecognized email action %r: %s", name, e.errors()[0].get("msg"))
        return UnknownAction(name=name or "missing", raw=raw)


def parse_actions(raw: Any) -> list[EmailAction]:
    if not isinstance(raw, list):
        return []
    return [parse_action(item) for item in raw]
