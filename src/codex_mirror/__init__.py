"""
codex-mirror — isolated side-by-side clones of a locally installed agent CLI.

Purpose
- Package root. Exposes the version and keeps import-time side effects out.

Functional requirements
- Must not load config, configure logging, or touch the filesystem at import time.
"""

__version__ = "0.4.0"

__all__ = ["__version__"]
