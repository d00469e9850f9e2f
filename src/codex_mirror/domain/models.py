"""Dataclass domain models with strict read-boundary validation and camelCase serialization."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, TypeVar

from codex_mirror.constants import REGISTRY_SCHEMA_VERSION
from codex_mirror.errors import SchemaError

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

TEnum = TypeVar("TEnum", bound=StrEnum)


class RuntimeKind(StrEnum):
    NPM_PACKAGE = "npm-package"
    BINARY = "binary"


class CloneTemplate(StrEnum):
    OFFICIAL = "official"
    MINIMAX = "minimax"


class AuthStatus(StrEnum):
    LOGGED_IN = "logged_in"
    NOT_LOGGED_IN = "not_logged_in"
    UNKNOWN = "unknown"


def utc_now_iso() -> str:
    """Current UTC time as ``YYYY-MM-DDTHH:MM:SS.mmmZ``."""

    return datetime.now(tz=UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True, slots=True)
class RuntimeInfo:
    """Installed runtime copy as reported by a runtime provider."""

    kind: RuntimeKind
    entry_path: str
    source_path: str
    version: str
    source_codex_path: str


@dataclass(frozen=True, slots=True)
class CloneRecord:
    """One registered clone. ``name`` is the natural key; ``id`` never changes."""

    id: str
    name: str
    root_path: str
    runtime_path: str
    runtime_entry_path: str
    runtime_kind: RuntimeKind
    wrapper_path: str
    codex_version_pinned: str
    created_at: str
    updated_at: str
    template: CloneTemplate = CloneTemplate.OFFICIAL
    default_codex_args: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "id": self.id,
            "name": self.name,
            "template": self.template.value,
            "rootPath": self.root_path,
            "runtimePath": self.runtime_path,
            "runtimeEntryPath": self.runtime_entry_path,
            "runtimeKind": self.runtime_kind.value,
            "wrapperPath": self.wrapper_path,
            "codexVersionPinned": self.codex_version_pinned,
            "defaultCodexArgs": list(self.default_codex_args),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: object, *, where: str = "CloneRecord") -> CloneRecord:
        parsed = _expect_object(data, where)
        return cls(
            id=_as_str(parsed, "id", where),
            name=_as_str(parsed, "name", where),
            template=_as_enum(parsed, "template", CloneTemplate, where, CloneTemplate.OFFICIAL),
            root_path=_as_str(parsed, "rootPath", where),
            runtime_path=_as_str(parsed, "runtimePath", where),
            runtime_entry_path=_as_str(parsed, "runtimeEntryPath", where),
            runtime_kind=_as_enum(parsed, "runtimeKind", RuntimeKind, where, None),
            wrapper_path=_as_str(parsed, "wrapperPath", where),
            codex_version_pinned=_as_str(parsed, "codexVersionPinned", where),
            default_codex_args=_as_str_tuple(parsed, "defaultCodexArgs", where),
            created_at=_as_str(parsed, "createdAt", where),
            updated_at=_as_str(parsed, "updatedAt", where),
        )


@dataclass(slots=True)
class Registry:
    """The versioned document listing every clone."""

    clones: list[CloneRecord] = field(default_factory=list)
    version: int = REGISTRY_SCHEMA_VERSION

    def find(self, name: str) -> CloneRecord | None:
        for clone in self.clones:
            if clone.name == name:
                return clone
        return None

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "version": self.version,
            "clones": [clone.to_dict() for clone in self.clones],
        }

    @classmethod
    def from_dict(cls, data: object, *, source: str = "registry") -> Registry:
        if not isinstance(data, Mapping):
            raise SchemaError(f"Unsupported registry schema at {source}: root must be an object")
        version = data.get("version")
        if isinstance(version, bool) or version != REGISTRY_SCHEMA_VERSION:
            raise SchemaError(f"Unsupported registry schema at {source}: version {version!r}")
        raw_clones = data.get("clones")
        if not isinstance(raw_clones, list):
            raise SchemaError(f"Unsupported registry schema at {source}: 'clones' must be a list")

        clones = [
            CloneRecord.from_dict(item, where=f"{source}: clones[{index}]")
            for index, item in enumerate(raw_clones)
        ]
        seen: set[str] = set()
        for clone in clones:
            if clone.name in seen:
                raise SchemaError(f"Duplicate clone name {clone.name!r} in {source}")
            seen.add(clone.name)
        return cls(clones=clones, version=REGISTRY_SCHEMA_VERSION)


@dataclass(frozen=True, slots=True)
class DoctorResult:
    name: str
    ok: bool
    runtime_path: str
    wrapper_path: str
    auth_status: AuthStatus
    writable: bool
    errors: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "name": self.name,
            "ok": self.ok,
            "runtimePath": self.runtime_path,
            "wrapperPath": self.wrapper_path,
            "authStatus": self.auth_status.value,
            "writable": self.writable,
            "errors": list(self.errors),
        }


def _expect_object(data: object, where: str) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        raise SchemaError(f"{where} must be an object")
    return data


def _as_str(data: Mapping[str, Any], key: str, where: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise SchemaError(f"{where}.{key} must be a non-empty string")
    return value


def _as_enum(
    data: Mapping[str, Any],
    key: str,
    enum_type: type[TEnum],
    where: str,
    default: TEnum | None,
) -> TEnum:
    value = data.get(key)
    if value is None and default is not None:
        return default
    try:
        return enum_type(value)
    except ValueError as exc:
        allowed = ", ".join(item.value for item in enum_type)
        raise SchemaError(f"{where}.{key} must be one of: {allowed}") from exc


def _as_str_tuple(data: Mapping[str, Any], key: str, where: str) -> tuple[str, ...]:
    value = data.get(key)
    if value is None:
        return ()
    if not isinstance(value, Sequence) or isinstance(value, (str, bytes, bytearray)):
        raise SchemaError(f"{where}.{key} must be an array of strings")
    items: list[str] = []
    for index, item in enumerate(value):
        if not isinstance(item, str):
            raise SchemaError(f"{where}.{key}[{index}] must be a string")
        items.append(item)
    return tuple(items)


__all__ = [
    "AuthStatus",
    "CloneRecord",
    "CloneTemplate",
    "DoctorResult",
    "JSONScalar",
    "JSONValue",
    "Registry",
    "RuntimeInfo",
    "RuntimeKind",
    "utc_now_iso",
]
