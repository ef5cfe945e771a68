"""Workflow commands echoed on a step's standard output.

Lines of the form ``::command key=value,key=value::data`` are interpreted
after the step finishes. ``set-env`` and ``add-path`` are disabled unless
unsecure commands are explicitly allowed; the env-file protocol replaces them.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

_COMMAND_PATTERN = re.compile(r"^::([^ :]+)( (.+?))?::(.*)$")

_DATA_ESCAPES = (("%0D", "\r"), ("%0A", "\n"), ("%25", "%"))
_PROPERTY_ESCAPES = (("%0D", "\r"), ("%0A", "\n"), ("%3A", ":"), ("%2C", ","), ("%25", "%"))

MESSAGE_COMMANDS = ("debug", "notice", "warning", "error")


@dataclass
class CommandResult:
    """Effects of the workflow commands found in one step's output.

    Attributes:
        env: Variables set with set-env (only when allowed)
        path: Entries added with add-path (only when allowed)
        outputs: Values set with set-output
        state: Values saved with save-state
        masks: Secrets registered with add-mask
        messages: (level, message) annotations in output order
        ignored: Commands that were recognised but not permitted
    """

    env: Dict[str, str] = field(default_factory=dict)
    path: List[str] = field(default_factory=list)
    outputs: Dict[str, str] = field(default_factory=dict)
    state: Dict[str, str] = field(default_factory=dict)
    masks: Set[str] = field(default_factory=set)
    messages: List[Tuple[str, str]] = field(default_factory=list)
    ignored: List[str] = field(default_factory=list)


def _unescape(value: str, escapes: Tuple[Tuple[str, str], ...]) -> str:
    for escaped, raw in escapes:
        value = value.replace(escaped, raw)
    return value


def parse_properties(text: Optional[str]) -> Dict[str, str]:
    """Parse the comma separated key=value properties of a command."""
    properties: Dict[str, str] = {}
    if not text:
        return properties
    for pair in text.split(","):
        key, sep, value = pair.partition("=")
        if sep and key.strip():
            properties[key.strip()] = _unescape(value, _PROPERTY_ESCAPES)
    return properties


class CommandProcessor:
    """Interprets workflow commands in step output."""

    def __init__(self, allow_unsecure_commands: bool = False) -> None:
        self.allow_unsecure_commands = allow_unsecure_commands

    def process(self, output: Optional[str]) -> CommandResult:
        """Scan output line by line and collect command effects."""
        result = CommandResult()
        if not output:
            return result

        resume_token: Optional[str] = None

        for line in output.splitlines():
            match = _COMMAND_PATTERN.match(line.strip())
            if not match:
                continue

            command = match.group(1)
            if resume_token is not None:
                if command == resume_token:
                    resume_token = None
                continue

            properties = parse_properties(match.group(3))
            data = _unescape(match.group(4), _DATA_ESCAPES)

            if command == "stop-commands":
                resume_token = data
            elif command == "set-output":
                if "name" in properties:
                    result.outputs[properties["name"]] = data
            elif command == "save-state":
                if "name" in properties:
                    result.state[properties["name"]] = data
            elif command == "add-mask":
                if data:
                    result.masks.add(data)
            elif command == "group":
                result.messages.append((command, data))
            elif command in MESSAGE_COMMANDS:
                result.messages.append((command, data))
            elif command == "set-env":
                if not self.allow_unsecure_commands:
                    result.ignored.append(command)
                elif "name" in properties:
                    result.env[properties["name"]] = data
            elif command == "add-path":
                if not self.allow_unsecure_commands:
                    result.ignored.append(command)
                elif data:
                    result.path.append(data)

        return result
