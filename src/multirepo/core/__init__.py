"""Core shared infrastructure for multirepo.

This package contains:
    - config: Application configuration management
    - console: Rich console output and logging
    - result: Result type and error hierarchy
    - models / store: The workspace document and its persistence
    - scheduler: Conflict detection and execution planning
    - orchestrator: Feature-level flows across repositories
"""

from __future__ import annotations

from . import config, console

__all__ = ["config", "console"]
