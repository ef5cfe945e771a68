"""Environment file protocol.

A running step talks back to the engine by appending to a handful of files
whose paths it finds in GITHUB_ENV, GITHUB_PATH, GITHUB_OUTPUT, GITHUB_STATE
and GITHUB_STEP_SUMMARY. The env, output and state files share one grammar:

    KEY=VALUE
    KEY<<DELIMITER
    raw line
    ...
    DELIMITER

The path file holds one directory per line.
"""

from __future__ import annotations

import os
import shutil
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Generator, List, Optional, Union

from localci.steps.errors import ProtocolParseError

_BOM = "\ufeff"


@dataclass(frozen=True)
class EnvFiles:
    """Step-scoped backing files for the environment file protocol."""

    directory: Path
    env: Path
    path: Path
    output: Path
    state: Path
    step_summary: Path

    def as_env(self) -> Dict[str, str]:
        """Well-known variables through which a step discovers the files."""
        return {
            "GITHUB_ENV": str(self.env),
            "GITHUB_PATH": str(self.path),
            "GITHUB_OUTPUT": str(self.output),
            "GITHUB_STATE": str(self.state),
            "GITHUB_STEP_SUMMARY": str(self.step_summary),
        }


@dataclass
class FileCommandUpdate:
    """Everything a step wrote through its environment files."""

    env: Dict[str, str] = field(default_factory=dict)
    path: List[str] = field(default_factory=list)
    outputs: Dict[str, str] = field(default_factory=dict)
    state: Dict[str, str] = field(default_factory=dict)
    summary: str = ""


@contextmanager
def env_file_session(root: Optional[Union[str, Path]] = None) -> Generator[EnvFiles, None, None]:
    """Materialise fresh, empty env files and remove them on every exit path."""
    if root is not None:
        Path(root).mkdir(parents=True, exist_ok=True)
    directory = Path(tempfile.mkdtemp(prefix="localci-step-", dir=root))
    try:
        files = EnvFiles(
            directory=directory,
            env=directory / "env",
            path=directory / "path",
            output=directory / "output",
            state=directory / "state",
            step_summary=directory / "step_summary.md",
        )
        for file_path in (files.env, files.path, files.output, files.state, files.step_summary):
            file_path.touch()
        yield files
    finally:
        shutil.rmtree(directory, ignore_errors=True)


def _read_lines(file_path: Path) -> List[str]:
    if not file_path.exists():
        return []
    text = file_path.read_text(encoding="utf-8")
    if text.startswith(_BOM):
        # PowerShell 5 writes UTF-8 with a byte order mark
        text = text[len(_BOM):]
    return text.splitlines()


def parse_env_file(file_path: Union[str, Path]) -> Dict[str, str]:
    """Parse an env/output/state file into key/value assignments.

    Last write wins when a key repeats. Multiline values are joined with the
    platform line separator, verbatim.

    Raises:
        ProtocolParseError: On an empty key, a line with neither '=' nor
            '<<', or a heredoc whose delimiter never appears
    """
    file_path = Path(file_path)
    lines = _read_lines(file_path)
    result: Dict[str, str] = {}

    index = 0
    while index < len(lines):
        line = lines[index]
        line_number = index + 1
        index += 1

        if not line.strip():
            continue

        equals = line.find("=")
        heredoc = line.find("<<")

        if equals != -1 and (heredoc == -1 or equals < heredoc):
            key = line[:equals]
            if not key.strip():
                raise ProtocolParseError(str(file_path), line_number, "empty key")
            result[key] = line[equals + 1:]
            continue

        if heredoc == -1:
            raise ProtocolParseError(
                str(file_path),
                line_number,
                f"invalid format '{line}', expected a line with '=' or '<<'",
            )

        key = line[:heredoc]
        delimiter = line[heredoc + 2:]
        if not key.strip():
            raise ProtocolParseError(str(file_path), line_number, "empty key")
        if not delimiter:
            raise ProtocolParseError(str(file_path), line_number, "empty heredoc delimiter")

        content: List[str] = []
        terminated = False
        while index < len(lines):
            current = lines[index]
            index += 1
            if current == delimiter:
                terminated = True
                break
            content.append(current)

        if not terminated:
            raise ProtocolParseError(
                str(file_path),
                line_number,
                f"delimiter '{delimiter}' not found before end of file",
            )
        result[key] = os.linesep.join(content)

    return result


def parse_path_file(file_path: Union[str, Path]) -> List[str]:
    """Parse a path file into entries, in file order."""
    return [line.strip() for line in _read_lines(Path(file_path)) if line.strip()]


def merge_path(existing: List[str], new_entries: List[str]) -> List[str]:
    """Prepend new entries to an existing path list.

    Earlier entries take precedence over later ones and over the existing
    list. Entries are de-duplicated, so merging the same file twice leaves
    the list unchanged.
    """
    merged: List[str] = []
    for entry in new_entries:
        if entry not in merged:
            merged.append(entry)
    merged.extend(entry for entry in existing if entry not in merged)
    return merged


def read_file_commands(files: EnvFiles) -> FileCommandUpdate:
    """Read and parse everything a step wrote to its env files."""
    summary = ""
    if files.step_summary.exists():
        summary = files.step_summary.read_text(encoding="utf-8")

    return FileCommandUpdate(
        env=parse_env_file(files.env),
        path=parse_path_file(files.path),
        outputs=parse_env_file(files.output),
        state=parse_env_file(files.state),
        summary=summary,
    )
