"""CLI command modules for multi-repo.

    - init: Discover repositories and write the workspace document
    - feature: Feature lifecycle, status, planning and teardown
"""

from __future__ import annotations

from . import feature, init

__all__ = ["feature", "init"]
