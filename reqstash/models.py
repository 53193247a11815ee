"""reqstash models - persisted entities and the body variant.

Entities are pydantic models whose aliases are the camelCase keys of the
document file. ``model_validate`` rejects a wrongly shaped file, which is how
the store tells a corrupt file from a merely old one. A JSON ``null`` for any
field reads as that field's default.
"""

import datetime
import json
from dataclasses import dataclass
from typing import Annotated, Any, ClassVar

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PlainSerializer,
    PlainValidator,
    SerializationInfo,
    SerializerFunctionWrapHandler,
    model_serializer,
    model_validator,
)
from pydantic.alias_generators import to_camel


def now_timestamp() -> str:
    """RFC 3339 timestamp, seconds precision, UTC."""
    return datetime.datetime.now(datetime.timezone.utc).isoformat(timespec="seconds")


def _plain_numbers(value: Any) -> Any:
    # 5.0 encodes as 5; only integral floats below 1e21 are rewritten.
    if isinstance(value, float) and value.is_integer() and abs(value) < 1e21:
        return int(value)
    if isinstance(value, dict):
        return {k: _plain_numbers(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_plain_numbers(v) for v in value]
    return value


def encode_json(value: Any) -> str:
    """Compact JSON text used for substitution and outbound bodies."""
    return json.dumps(_plain_numbers(value), separators=(",", ":"), ensure_ascii=False)


# ── Body variant ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class TextBody:
    """A body that is plain text (or text that is not valid JSON)."""

    text: str = ""

    def to_raw(self) -> Any:
        return self.text

    def to_text(self) -> str:
        return self.text


@dataclass(frozen=True)
class JsonBody:
    """A body holding an already decoded JSON value."""

    value: Any = None

    def to_raw(self) -> Any:
        return self.value

    def to_text(self) -> str:
        if self.value is None:
            return ""
        return encode_json(self.value)


Body = TextBody | JsonBody


def parse_body(raw: Any) -> Body:
    """Turn a raw body into the Body variant.

    - None or a JSON ``null``  → TextBody("")
    - blank or non-JSON string → TextBody(raw)
    - JSON string literal      → TextBody(decoded text)
    - any other JSON text      → JsonBody(decoded value)
    - dict / list / scalar     → JsonBody(raw)
    """
    if raw is None:
        return TextBody("")
    if isinstance(raw, TextBody | JsonBody):
        return raw
    if not isinstance(raw, str):
        return JsonBody(raw)
    if not raw.strip():
        return TextBody(raw)
    try:
        value = json.loads(raw)
    except ValueError:
        return TextBody(raw)
    if value is None:
        return TextBody("")
    if isinstance(value, str):
        return TextBody(value)
    return JsonBody(value)


def stored_body(raw: Any) -> Body:
    """Body as found on disk, without parsing strings (that is a migration)."""
    if isinstance(raw, TextBody | JsonBody):
        return raw
    if raw is None:
        return TextBody("")
    if isinstance(raw, str):
        return TextBody(raw)
    return JsonBody(raw)


StoredBody = Annotated[
    Body,
    PlainValidator(stored_body),
    PlainSerializer(lambda body: body.to_raw()),
]


# ── Entities ─────────────────────────────────────────────────────────────


class StoredModel(BaseModel):
    """Base for everything persisted in the document file."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    # Fields left out of the file while empty.
    omit_when_empty: ClassVar[tuple[str, ...]] = ()

    @model_validator(mode="before")
    @classmethod
    def _null_is_default(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data

    @model_serializer(mode="wrap")
    def _drop_empty(self, handler: SerializerFunctionWrapHandler, info: SerializationInfo):
        data = handler(self)
        for name in self.omit_when_empty:
            if not getattr(self, name):
                data.pop(to_camel(name) if info.by_alias else name, None)
        return data

    def to_dict(self) -> dict:
        """camelCase dict in the shape of the document file."""
        return self.model_dump(by_alias=True)


class Variable(StoredModel):
    key: str = ""
    value: str = ""


class QueryParam(StoredModel):
    key: str = ""
    value: str = ""
    enabled: bool = False


class BodyField(QueryParam):
    """Key/value row of a form or JSON body editor."""


class Environment(StoredModel):
    id: str
    name: str
    variables: list[Variable] = Field(default_factory=list)
    created_at: str = ""
    updated_at: str = ""


class Group(StoredModel):
    id: str
    name: str
    created_at: str = ""
    updated_at: str = ""


class ProxyResponse(StoredModel):
    """Result of executing a request; also stored as ``lastResponse``."""

    omit_when_empty: ClassVar[tuple[str, ...]] = ("error",)

    status: str = ""
    status_code: int = 0
    headers: dict[str, str] = Field(default_factory=dict)
    body: StoredBody = Field(default_factory=TextBody)
    error: str = ""
    elapsed_ms: float = Field(default=0.0, exclude=True)


class SavedRequest(StoredModel):
    omit_when_empty: ClassVar[tuple[str, ...]] = (
        "body_type",
        "body_text",
        "body_json",
        "body_form",
        "last_response",
    )

    id: str
    name: str
    url: str
    method: str = "GET"
    headers: dict[str, str] = Field(default_factory=dict)
    body: StoredBody = Field(default_factory=TextBody)
    body_type: str = ""
    body_text: str = ""
    body_json: list[BodyField] = Field(default_factory=list)
    body_form: list[BodyField] = Field(default_factory=list)
    params: list[QueryParam] = Field(default_factory=list)
    group: str = ""
    description: str = ""
    last_response: ProxyResponse | None = None
    created_at: str = ""
    updated_at: str = ""


class Document(StoredModel):
    """The whole persisted unit."""

    requests: list[SavedRequest] = Field(default_factory=list)
    variables: list[Variable] = Field(default_factory=list)  # legacy
    environments: list[Environment] = Field(default_factory=list)
    current_environment: str = ""
    groups: list[Group] = Field(default_factory=list)
    word_wrap: bool = False

    # Lookups

    def find_request(self, name: str) -> SavedRequest | None:
        """Exact, case-sensitive name lookup."""
        for req in self.requests:
            if req.name == name:
                return req
        return None

    def request_by_id(self, request_id: str) -> SavedRequest | None:
        for req in self.requests:
            if req.id == request_id:
                return req
        return None

    def environment_by_id(self, env_id: str) -> Environment | None:
        for env in self.environments:
            if env.id == env_id:
                return env
        return None

    def group_by_id(self, group_id: str) -> Group | None:
        for group in self.groups:
            if group.id == group_id:
                return group
        return None

    def active_environment(self) -> Environment | None:
        return self.environment_by_id(self.current_environment)
