"""Job request and response models.

``JobRequest`` is the REST body sent to the ``transformations/submit``
and ``transformations/transact`` endpoints::

    {
        "publishedParameters": [{"name": ..., "value": ...}],
        "TMDirectives": {"ttc": 30, "ttl": 60, "tag": "..."},
        "NMDirectives": {"directives": [{"name": "schedule", ...}]}
    }

``ApiResponse`` wraps every client result.  A status of ``0`` with
``status_text == "requestAborted"`` marks a caller-initiated cancellation.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from fme_export.core.constants import DEFAULT_SCHEDULE_TRIGGER

T = TypeVar("T")

ABORTED_STATUS_TEXT = "requestAborted"


@dataclass(frozen=True, slots=True)
class PublishedParameter:
    name: str
    value: Any

    def to_dict(self) -> dict[str, object]:
        return {"name": self.name, "value": self.value}


@dataclass(frozen=True, slots=True)
class TMDirectives:
    """Task Manager directives.

    Attributes:
        ttc: Time to commence, seconds.
        ttl: Time to live, seconds.
        tag: Queue tag (at most 128 characters).
        description: Free-text job description.
        rtc: Retry-on-failure flag; optional and only sent when set.
    """

    ttc: int | None = None
    ttl: int | None = None
    tag: str | None = None
    description: str | None = None
    rtc: bool | None = None

    @property
    def is_empty(self) -> bool:
        return not self.to_dict()

    def to_dict(self) -> dict[str, object]:
        out: dict[str, object] = {}
        if self.ttc is not None:
            out["ttc"] = self.ttc
        if self.ttl is not None:
            out["ttl"] = self.ttl
        if self.tag:
            out["tag"] = self.tag
        if self.description:
            out["description"] = self.description
        if self.rtc is not None:
            out["rtc"] = self.rtc
        return out


@dataclass(frozen=True, slots=True)
class ScheduleDirective:
    """Notification Manager schedule directive."""

    begin: str
    schedule_name: str
    schedule_category: str
    schedule_trigger: str = DEFAULT_SCHEDULE_TRIGGER
    schedule_description: str | None = None

    def to_dict(self) -> dict[str, object]:
        out: dict[str, object] = {
            "name": "schedule",
            "begin": self.begin,
            "scheduleName": self.schedule_name,
            "scheduleCategory": self.schedule_category,
            "scheduleTrigger": self.schedule_trigger,
        }
        if self.schedule_description:
            out["scheduleDescription"] = self.schedule_description
        return out


@dataclass(frozen=True, slots=True)
class NMDirectives:
    directives: list[ScheduleDirective] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        return {"directives": [d.to_dict() for d in self.directives]}


@dataclass(frozen=True, slots=True)
class JobRequest:
    """REST job submission body."""

    published_parameters: list[PublishedParameter] = field(default_factory=list)
    tm_directives: TMDirectives | None = None
    nm_directives: NMDirectives | None = None

    def parameter(self, name: str) -> Any:
        """Return the value of published parameter *name* (``None`` if absent)."""
        for param in self.published_parameters:
            if param.name == name:
                return param.value
        return None

    def to_dict(self) -> dict[str, object]:
        out: dict[str, object] = {
            "publishedParameters": [p.to_dict() for p in self.published_parameters],
        }
        if self.tm_directives is not None and not self.tm_directives.is_empty:
            out["TMDirectives"] = self.tm_directives.to_dict()
        if self.nm_directives is not None and self.nm_directives.directives:
            out["NMDirectives"] = self.nm_directives.to_dict()
        return out

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> JobRequest:
        """Deserialise an already-formatted job body.

        Raises:
            TypeError: If ``publishedParameters`` is not a list of objects.
        """
        raw_params = data.get("publishedParameters", [])
        if not isinstance(raw_params, list):
            msg = f"publishedParameters must be a list, got {type(raw_params).__name__}"
            raise TypeError(msg)
        params = []
        for item in raw_params:
            if not isinstance(item, Mapping):
                msg = f"published parameter must be an object, got {type(item).__name__}"
                raise TypeError(msg)
            params.append(PublishedParameter(name=str(item.get("name", "")), value=item.get("value")))

        tm_raw = data.get("TMDirectives")
        tm = None
        if isinstance(tm_raw, Mapping):
            tm = TMDirectives(
                ttc=tm_raw.get("ttc"),
                ttl=tm_raw.get("ttl"),
                tag=tm_raw.get("tag"),
                description=tm_raw.get("description"),
                rtc=tm_raw.get("rtc"),
            )

        nm_raw = data.get("NMDirectives")
        nm = None
        if isinstance(nm_raw, Mapping) and isinstance(nm_raw.get("directives"), list):
            nm = NMDirectives(
                directives=[
                    ScheduleDirective(
                        begin=str(d.get("begin", "")),
                        schedule_name=str(d.get("scheduleName", "")),
                        schedule_category=str(d.get("scheduleCategory", "")),
                        schedule_trigger=str(d.get("scheduleTrigger") or DEFAULT_SCHEDULE_TRIGGER),
                        schedule_description=d.get("scheduleDescription"),
                    )
                    for d in nm_raw["directives"]
                    if isinstance(d, Mapping)
                ]
            )

        return cls(published_parameters=params, tm_directives=tm, nm_directives=nm)


@dataclass(frozen=True, slots=True)
class ApiResponse(Generic[T]):
    """Normalized client result."""

    data: T | None
    status: int
    status_text: str = ""

    @property
    def aborted(self) -> bool:
        return self.status == 0 and self.status_text == ABORTED_STATUS_TEXT

    @classmethod
    def aborted_response(cls) -> ApiResponse[Any]:
        return cls(data=None, status=0, status_text=ABORTED_STATUS_TEXT)
