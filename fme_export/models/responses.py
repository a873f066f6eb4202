"""Pydantic models for FME Flow response payloads.

The server returns camelCase JSON and adds fields between releases, so
every model accepts unknown keys and populates by either name or alias.
Parsing helpers return ``None`` (or an empty list) for payloads that do
not match, leaving the caller to decide whether that is an error.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError


class _ServerModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")


class ServerInfo(_ServerModel):
    """Payload of the ``info`` endpoint."""

    build: str = ""
    version: str = ""
    current_time: str = Field(default="", alias="currentTime")
    license_manager: bool | None = Field(default=None, alias="licenseManager")


class Repository(_ServerModel):
    name: str
    description: str = ""
    owner: str = ""
    item_count: int | None = Field(default=None, alias="fileCount")


class RepositoryItem(_ServerModel):
    name: str
    type: str = ""
    title: str = ""
    description: str = ""
    last_save_date: str = Field(default="", alias="lastSaveDate")


class WorkspaceParameter(_ServerModel):
    """One published parameter of a workspace."""

    name: str
    type: str = ""
    description: str = ""
    optional: bool = True
    model: str = ""
    default_value: Any = Field(default=None, alias="defaultValue")
    list_options: list[dict[str, Any]] = Field(default_factory=list, alias="listOptions")


class JobResult(_ServerModel):
    """Result of a job submit, transact, status or cancel call."""

    id: int | None = None
    status: str = ""
    status_message: str = Field(default="", alias="statusMessage")
    time_requested: str = Field(default="", alias="timeRequested")
    time_started: str = Field(default="", alias="timeStarted")
    time_finished: str = Field(default="", alias="timeFinished")
    number_of_features_output: int | None = Field(default=None, alias="numFeaturesOutput")


class UploadResult(_ServerModel):
    """Normalized result of a temp-storage upload."""

    path: str
    name: str = ""
    size: int | None = None


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------


def parse_model(model: type[_ServerModel], data: Any) -> Any:
    """Validate *data* as *model*; return ``None`` when it does not fit."""
    if not isinstance(data, dict):
        return None
    try:
        return model.model_validate(data)
    except ValidationError:
        return None


def parse_items(model: type[_ServerModel], data: Any) -> list[Any]:
    """Parse a list payload, accepting a bare list or ``{"items": [...]}``.

    Bare strings are accepted as ``{"name": value}``; unparseable entries
    are skipped.
    """
    if isinstance(data, dict):
        data = data.get("items", [])
    if not isinstance(data, list):
        return []
    parsed = []
    for entry in data:
        if isinstance(entry, str):
            entry = {"name": entry}
        item = parse_model(model, entry)
        if item is not None:
            parsed.append(item)
    return parsed
