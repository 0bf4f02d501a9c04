"""Wire messages of the broker protocol and the protocol description."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import NamedTuple

SERVICE_NAME = "grpc.MesgProtocol"

_U64 = 1 << 64
_INT32_MIN = -(1 << 31)
_INT32_MAX = (1 << 31) - 1
_MAX_VARINT_BYTES = 10

_WIRE_VARINT = 0
_WIRE_FIXED64 = 1
_WIRE_LENGTH = 2
_WIRE_FIXED32 = 5


class DecodeError(ValueError):
    """Raised when bytes are not a valid encoding of a message."""


class _Kind(Enum):
    STRING = "string"
    BYTES = "bytes"
    BOOL = "bool"
    INT32 = "int32"

    @property
    def wire_type(self) -> int:
        return _WIRE_LENGTH if self in (_Kind.STRING, _Kind.BYTES) else _WIRE_VARINT


def _proto_field(tag: int, kind: _Kind, default):
    return field(default=default, metadata={"tag": tag, "kind": kind})


def _encode_varint(value: int) -> bytes:
    value %= _U64
    out = bytearray()
    while True:
        low = value & 0x7F
        value >>= 7
        if value:
            out.append(low | 0x80)
        else:
            out.append(low)
            return bytes(out)


def _read_varint(data: bytes, pos: int) -> tuple[int, int]:
    result = 0
    for shift_index in range(_MAX_VARINT_BYTES):
        if pos >= len(data):
            raise DecodeError("truncated varint")
        byte = data[pos]
        pos += 1
        result |= (byte & 0x7F) << (7 * shift_index)
        if not byte & 0x80:
            return result % _U64, pos
    raise DecodeError("varint too long")


def _key(tag: int, wire_type: int) -> bytes:
    return _encode_varint((tag << 3) | wire_type)


class ProtoMessage:
    """Base of protocol messages: proto3 encoding of their dataclass fields."""

    def encode(self) -> bytes:
        out = bytearray()
        for spec in fields(self):
            tag, kind = spec.metadata["tag"], spec.metadata["kind"]
            value = getattr(self, spec.name)
            if kind is _Kind.STRING:
                payload = value.encode("utf-8")
                if payload:
                    out += _key(tag, _WIRE_LENGTH) + _encode_varint(len(payload)) + payload
            elif kind is _Kind.BYTES:
                payload = bytes(value)
                if payload:
                    out += _key(tag, _WIRE_LENGTH) + _encode_varint(len(payload)) + payload
            elif kind is _Kind.BOOL:
                if value:
                    out += _key(tag, _WIRE_VARINT) + b"\x01"
            else:
                if not _INT32_MIN <= value <= _INT32_MAX:
                    raise ValueError(f"{spec.name}={value} does not fit in int32")
                if value:
                    out += _key(tag, _WIRE_VARINT) + _encode_varint(value)
        return bytes(out)

    @classmethod
    def decode(cls, data: bytes):
        data = bytes(data)
        by_tag = {spec.metadata["tag"]: spec for spec in fields(cls)}
        values = {}
        pos = 0
        while pos < len(data):
            key, pos = _read_varint(data, pos)
            tag, wire_type = key >> 3, key & 0x7
            if tag == 0:
                raise DecodeError("field number 0 is invalid")
            if wire_type == _WIRE_VARINT:
                raw, pos = _read_varint(data, pos)
            elif wire_type == _WIRE_LENGTH:
                length, pos = _read_varint(data, pos)
                end = pos + length
                if end > len(data):
                    raise DecodeError("truncated length-delimited field")
                raw, pos = data[pos:end], end
            elif wire_type in (_WIRE_FIXED64, _WIRE_FIXED32):
                end = pos + (8 if wire_type == _WIRE_FIXED64 else 4)
                if end > len(data):
                    raise DecodeError("truncated fixed-width field")
                raw, pos = data[pos:end], end
            else:
                raise DecodeError(f"unsupported wire type {wire_type}")

            spec = by_tag.get(tag)
            if spec is None:
                continue
            kind = spec.metadata["kind"]
            if wire_type != kind.wire_type:
                raise DecodeError(f"field {spec.name} has wire type {wire_type}")
            values[spec.name] = _convert(kind, raw, spec.name)
        return cls(**values)


def _convert(kind: _Kind, raw, name: str):
    if kind is _Kind.STRING:
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecodeError(f"field {name} is not valid UTF-8") from exc
    if kind is _Kind.BYTES:
        return raw
    if kind is _Kind.BOOL:
        return raw != 0
    value = raw & 0xFFFFFFFF
    return value - (1 << 32) if value > _INT32_MAX else value


@dataclass
class PushRequest(ProtoMessage):
    queue: str = _proto_field(1, _Kind.STRING, "")
    data: bytes = _proto_field(2, _Kind.BYTES, b"")
    is_broadcast: bool = _proto_field(3, _Kind.BOOL, False)


@dataclass
class PushResponse(ProtoMessage):
    success: bool = _proto_field(1, _Kind.BOOL, False)


@dataclass
class PullRequest(ProtoMessage):
    queue: str = _proto_field(1, _Kind.STRING, "")
    application: str = _proto_field(2, _Kind.STRING, "")
    invisibility_timeout_ms: int = _proto_field(3, _Kind.INT32, 0)


@dataclass
class PullResponse(ProtoMessage):
    id: str = _proto_field(1, _Kind.STRING, "")
    data: bytes = _proto_field(2, _Kind.BYTES, b"")


@dataclass
class CommitRequest(ProtoMessage):
    id: str = _proto_field(1, _Kind.STRING, "")
    queue: str = _proto_field(2, _Kind.STRING, "")
    application: str = _proto_field(3, _Kind.STRING, "")


@dataclass
class CommitResponse(ProtoMessage):
    success: bool = _proto_field(1, _Kind.BOOL, False)


@dataclass
class RollbackRequest(ProtoMessage):
    id: str = _proto_field(1, _Kind.STRING, "")
    queue: str = _proto_field(2, _Kind.STRING, "")
    application: str = _proto_field(3, _Kind.STRING, "")


@dataclass
class RollbackResponse(ProtoMessage):
    success: bool = _proto_field(1, _Kind.BOOL, False)


class RpcMethod(NamedTuple):
    name: str
    request: type
    response: type
    server_streaming: bool

    @property
    def path(self) -> str:
        return f"/{SERVICE_NAME}/{self.name}"


METHODS = (
    RpcMethod("Push", PushRequest, PushResponse, False),
    RpcMethod("Pull", PullRequest, PullResponse, True),
    RpcMethod("Commit", CommitRequest, CommitResponse, False),
    RpcMethod("Rollback", RollbackRequest, RollbackResponse, False),
)

_MESSAGES = (
    PushRequest,
    PushResponse,
    PullRequest,
    PullResponse,
    CommitRequest,
    CommitResponse,
    RollbackRequest,
    RollbackResponse,
)


def _render_proto() -> str:
    package, service = SERVICE_NAME.rsplit(".", 1)
    lines = ['syntax = "proto3";', "", f"package {package};", ""]
    for message_cls in _MESSAGES:
        lines.append(f"message {message_cls.__name__} {{")
        for spec in fields(message_cls):
            lines.append(f"  {spec.metadata['kind'].value} {spec.name} = {spec.metadata['tag']};")
        lines.extend(["}", ""])
    lines.append(f"service {service} {{")
    for method in METHODS:
        stream = "stream " if method.server_streaming else ""
        lines.append(
            f"  rpc {method.name}({method.request.__name__}) "
            f"returns ({stream}{method.response.__name__});"
        )
    lines.append("}")
    return "\n".join(lines) + "\n"


PROTOFILE = _render_proto().encode("utf-8")