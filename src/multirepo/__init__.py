"""multirepo - coordinate features that span several git repositories.

This package provides the `multi-repo` command-line tool: one worktree per
repository on a shared `feature/<id>` branch, status tracking in a workspace
JSON document, and conflict-aware scheduling of concurrent features.

Exports:
    __version__: Package version string.
"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.3.0"
