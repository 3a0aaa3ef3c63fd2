"""Slash commands typed into the message box."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, Tuple

from .errors import CommandError

COMMAND_PREFIX = "/"

Handler = Callable[..., Awaitable[Any]]


@dataclass(frozen=True)
class Command:
    name: str
    args: Tuple[str, ...]
    handler: Handler

    @property
    def usage(self) -> str:
        return " ".join([f"{COMMAND_PREFIX}{self.name}", *self.args])


def is_command(text: str) -> bool:
    return text.startswith(COMMAND_PREFIX)


def tokenize(text: str) -> tuple[str, list[str]]:
    parts = text.strip().split()
    if not parts:
        raise CommandError("Empty command")
    return parts[0][len(COMMAND_PREFIX):], parts[1:]


class CommandRegistry:
    def __init__(self) -> None:
        self._commands: Dict[str, Command] = {}

    def register(self, name: str, args: Iterable[str], handler: Handler) -> Command:
        command = Command(name=name, args=tuple(args), handler=handler)
        self._commands[name] = command
        return command

    def get(self, name: str) -> Command | None:
        return self._commands.get(name)

    def names(self) -> list[str]:
        return sorted(self._commands)

    def parse(self, text: str) -> tuple[Command, Dict[str, str]]:
        """Validate ``text`` and bind its tokens to the command's argument names."""

        name, tokens = tokenize(text)
        command = self._commands.get(name)
        if command is None:
            raise CommandError(f"Unknown command: {COMMAND_PREFIX}{name}")
        if len(tokens) != len(command.args):
            raise CommandError(f"Invalid command arguments. Expected: {command.usage}")
        return command, dict(zip(command.args, tokens))

    async def dispatch(self, text: str, **context: Any) -> Any:
        command, params = self.parse(text)
        return await command.handler(**context, **params)
