"""Domain models for clones, the registry document, and health reports."""

from codex_mirror.domain.models import (
    AuthStatus,
    CloneRecord,
    CloneTemplate,
    DoctorResult,
    Registry,
    RuntimeInfo,
    RuntimeKind,
    utc_now_iso,
)

__all__ = [
    "AuthStatus",
    "CloneRecord",
    "CloneTemplate",
    "DoctorResult",
    "Registry",
    "RuntimeInfo",
    "RuntimeKind",
    "utc_now_iso",
]
