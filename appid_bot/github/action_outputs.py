"""Publishing step outputs and failures for downstream workflow steps."""

from __future__ import annotations

import uuid
from pathlib import Path
from typing import Any, Callable


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _format_output(name: str, value: str) -> str:
    if "\n" in value:
        delimiter = f"ghadelimiter_{uuid.uuid4()}"
        return f"{name}<<{delimiter}\n{value}\n{delimiter}\n"
    return f"{name}={value}\n"


class ActionOutputs:
    """Write ``name=value`` pairs to ``$GITHUB_OUTPUT`` or, when unset, to stdout."""

    def __init__(self, output_path: Path | None = None, echo: Callable[[str], None] = print):
        self.output_path = output_path
        self.echo = echo
        self.values: dict[str, str] = {}

    def set_output(self, name: str, value: Any) -> None:
        formatted = _format_value(value)
        self.values[name] = formatted
        line = _format_output(name, formatted)
        if self.output_path is None:
            self.echo(line.rstrip("\n"))
            return
        with self.output_path.open("a", encoding="utf-8") as handle:
            handle.write(line)

    def set_many(self, values: dict[str, Any]) -> None:
        for name, value in values.items():
            self.set_output(name, value)

    def set_failed(self, message: str) -> None:
        self.echo(f"::error::{message}")
