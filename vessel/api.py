"""Request and response messages exchanged between the client and the daemon."""

from __future__ import annotations

import json
from dataclasses import dataclass, field, fields
from typing import Any, ClassVar


class ProtocolError(ValueError):
    """Raised when a message cannot be decoded."""


@dataclass
class RunRequest:
    tag: ClassVar[str] = "Run"
    image: str
    command: list[str] = field(default_factory=list)


@dataclass
class BuildRequest:
    tag: ClassVar[str] = "Build"
    context: str
    image: str


@dataclass
class PsRequest:
    tag: ClassVar[str] = "Ps"


@dataclass
class StopRequest:
    tag: ClassVar[str] = "Stop"
    id: str


@dataclass
class RmRequest:
    tag: ClassVar[str] = "Rm"
    id: str


@dataclass
class LogsRequest:
    tag: ClassVar[str] = "Logs"
    id: str


@dataclass
class ImagesRequest:
    tag: ClassVar[str] = "Images"


@dataclass
class PullRequest:
    tag: ClassVar[str] = "Pull"
    image: str


@dataclass
class CommitRequest:
    tag: ClassVar[str] = "Commit"
    id: str
    image: str


Request = (
    RunRequest
    | BuildRequest
    | PsRequest
    | StopRequest
    | RmRequest
    | LogsRequest
    | ImagesRequest
    | PullRequest
    | CommitRequest
)

_REQUEST_TYPES: dict[str, type] = {
    cls.tag: cls
    for cls in (
        RunRequest,
        BuildRequest,
        PsRequest,
        StopRequest,
        RmRequest,
        LogsRequest,
        ImagesRequest,
        PullRequest,
        CommitRequest,
    )
}


@dataclass
class OkResponse:
    message: str


@dataclass
class ContainersResponse:
    containers: list[tuple[str, int, str]] = field(default_factory=list)


@dataclass
class ImagesResponse:
    images: list[tuple[str, str, str]] = field(default_factory=list)


@dataclass
class ErrorResponse:
    message: str


Response = OkResponse | ContainersResponse | ImagesResponse | ErrorResponse

_I32_MIN = -(2**31)
_I32_MAX = 2**31 - 1


def _dump(payload: Any) -> bytes:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def _load(data: bytes | str) -> Any:
    try:
        text = data.decode("utf-8") if isinstance(data, (bytes, bytearray)) else data
        return json.loads(text)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ProtocolError(f"invalid JSON: {exc}") from exc


def _split_variant(payload: Any) -> tuple[str, Any]:
    if isinstance(payload, str):
        return payload, None
    if isinstance(payload, dict) and len(payload) == 1:
        ((tag, body),) = payload.items()
        return tag, body
    raise ProtocolError("expected an enum variant")


def _as_str(value: Any, name: str) -> str:
    if not isinstance(value, str):
        raise ProtocolError(f"field `{name}` must be a string")
    return value


def _as_int(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ProtocolError(f"field `{name}` must be an integer")
    if not _I32_MIN <= value <= _I32_MAX:
        raise ProtocolError(f"field `{name}` is out of range")
    return value


def _as_str_list(value: Any, name: str) -> list[str]:
    if not isinstance(value, list):
        raise ProtocolError(f"field `{name}` must be a list")
    return [_as_str(item, name) for item in value]


def encode_request(request: Request) -> bytes:
    """Serialize a request to its JSON wire form."""
    if type(request) not in _REQUEST_TYPES.values():
        raise TypeError(f"not a request: {request!r}")
    names = [f.name for f in fields(request)]
    if not names:
        return _dump(request.tag)
    return _dump({request.tag: {name: getattr(request, name) for name in names}})


def decode_request(data: bytes | str) -> Request:
    """Parse a request from its JSON wire form."""
    tag, body = _split_variant(_load(data))
    cls = _REQUEST_TYPES.get(tag)
    if cls is None:
        raise ProtocolError(f"unknown variant `{tag}`")
    names = [f.name for f in fields(cls)]
    if not names:
        if body is not None:
            raise ProtocolError(f"variant `{tag}` takes no data")
        return cls()
    if not isinstance(body, dict):
        raise ProtocolError(f"variant `{tag}` expects an object")
    kwargs = {}
    for name in names:
        if name not in body:
            raise ProtocolError(f"missing field `{name}`")
        value = body[name]
        kwargs[name] = _as_str_list(value, name) if name == "command" else _as_str(value, name)
    return cls(**kwargs)


def encode_response(response: Response) -> bytes:
    """Serialize a response to its JSON wire form."""
    match response:
        case OkResponse(message=message):
            payload = {"Ok": message}
        case ContainersResponse(containers=containers):
            payload = {"Containers": [list(row) for row in containers]}
        case ImagesResponse(images=images):
            payload = {"Images": [list(row) for row in images]}
        case ErrorResponse(message=message):
            payload = {"Error": message}
        case _:
            raise TypeError(f"not a response: {response!r}")
    return _dump(payload)


def _rows(body: Any, name: str, checks: tuple) -> list[tuple]:
    if not isinstance(body, list):
        raise ProtocolError(f"`{name}` must be a list")
    rows = []
    for row in body:
        if not isinstance(row, list) or len(row) != len(checks):
            raise ProtocolError(f"`{name}` entries must have {len(checks)} elements")
        rows.append(tuple(check(value, name) for check, value in zip(checks, row)))
    return rows


def decode_response(data: bytes | str) -> Response:
    """Parse a response from its JSON wire form."""
    tag, body = _split_variant(_load(data))
    match tag:
        case "Ok":
            return OkResponse(_as_str(body, "Ok"))
        case "Error":
            return ErrorResponse(_as_str(body, "Error"))
        case "Containers":
            return ContainersResponse(_rows(body, "Containers", (_as_str, _as_int, _as_str)))
        case "Images":
            return ImagesResponse(_rows(body, "Images", (_as_str, _as_str, _as_str)))
    raise ProtocolError(f"unknown variant `{tag}`")