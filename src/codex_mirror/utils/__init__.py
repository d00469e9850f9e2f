"""Utility exports for filesystem, subprocess, and concurrency helpers."""

from codex_mirror.utils.concurrency import IndexedWorkerPool, PollDeadline
from codex_mirror.utils.fs import atomic_write, read_json, remove_path, write_json_atomic
from codex_mirror.utils.process import CaptureResult, run_capture, run_interactive

__all__ = [
    "CaptureResult",
    "IndexedWorkerPool",
    "PollDeadline",
    "atomic_write",
    "read_json",
    "remove_path",
    "run_capture",
    "run_interactive",
    "write_json_atomic",
]
