from __future__ import annotations

import importlib
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Protocol

import typer

logger = logging.getLogger(__name__)


class CommandModule(Protocol):
    app: typer.Typer


@dataclass
class CommandSpec:
    name: str
    handler: Callable[..., None]


# Modules listed here contribute top-level commands; any other module with an
# `app` Typer becomes a command group named after the module.
_FUNCTION_COMMANDS: dict[str, dict[str, str]] = {
    "init": {"init": "init"},
}


def _import_module(module_name: str) -> object | None:
    try:
        return importlib.import_module(module_name)
    except ImportError as exc:
        logger.error("Failed to import command module %s: %s", module_name, exc)
        return None


def _build_function_commands(module_name: str, module: object) -> list[CommandSpec]:
    specs: list[CommandSpec] = []
    mapping = _FUNCTION_COMMANDS.get(module_name, {})
    for cmd_name, attr in mapping.items():
        handler = getattr(module, attr, None)
        if callable(handler):
            specs.append(CommandSpec(name=cmd_name, handler=handler))
        else:
            logger.error("Command %s.%s not found or not callable", module_name, attr)
    return specs


def discover_commands(
    package_path: Path, package: str = "multirepo.commands"
) -> tuple[list[tuple[str, CommandModule]], list[CommandSpec]]:
    """
    Discover Typer command modules and standalone command callables.

    Returns:
        A tuple of (typer_modules, function_commands).
    """
    typer_modules: list[tuple[str, CommandModule]] = []
    function_commands: list[CommandSpec] = []

    for file in sorted(package_path.glob("*.py")):
        if file.name.startswith("_"):
            continue
        module_name = file.stem
        module = _import_module(f"{package}.{module_name}")
        if module is None:
            continue

        if module_name in _FUNCTION_COMMANDS:
            function_commands.extend(_build_function_commands(module_name, module))
            continue

        app = getattr(module, "app", None)
        if isinstance(app, typer.Typer):
            typer_modules.append((module_name.replace("_", "-"), module))  # type: ignore[arg-type]

    return typer_modules, function_commands
