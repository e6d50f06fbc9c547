#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
# Copyright (c) 2025 The pn contributors
# Project: pn - A thin pnpm front-end

"""
pn - Run package.json scripts and pnpm commands with less typing.

Resolves the project's package.json (optionally from the workspace root),
then runs a named script, forwards a known pnpm subcommand, or runs the
arguments as a shell command with node_modules/.bin on PATH.
"""

import argparse
import json
import os
import stat
import subprocess
import sys
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional, Union

from rich.console import Console
from rich.text import Text

__version__ = "0.1.0"
__license__ = "MIT"

# --- Configuration ---
MANIFEST_FILENAME = "package.json"
WORKSPACE_MANIFEST_FILENAME = "pnpm-workspace.yaml"
NODE_BIN_DIR = os.path.join("node_modules", ".bin")
PNPM_BINARY = "pnpm"
SHELL = "sh"

RUN_COMMANDS = {"run", "run-script"}

PASSED_THROUGH_COMMANDS = frozenset(
    {
        # commands that pnpm passes to npm
        "access",
        "adduser",
        "bugs",
        "deprecate",
        "dist-tag",
        "docs",
        "edit",
        "info",
        "login",
        "logout",
        "owner",
        "ping",
        "prefix",
        "profile",
        "pkg",
        "repo",
        "s",
        "se",
        "search",
        "set-script",
        "show",
        "star",
        "stars",
        "team",
        "token",
        "unpublish",
        "unstar",
        "v",
        "version",
        "view",
        "whoami",
        "xmas",
        # completion
        "install-completion",
        "uninstall-completion",
        # manage deps
        "add",
        "i",
        "install",
        "up",
        "update",
        "remove",
        "link",
        "unlink",
        "import",
        "rebuild",
        "prune",
        "fetch",
        "install-test",
        "dedupe",
        # patch deps
        "patch",
        "patch-commit",
        "patch-remove",
        # review deps
        "audit",
        "list",
        "outdated",
        "why",
        "licenses",
        # run scripts
        "dlx",
        "create",
        # manage environments
        "env",
        # misc
        "publish",
        "pack",
        "server",
        "store",
        "root",
        "bin",
        "setup",
        "init",
        "deploy",
        "doctor",
        "config",
    }
)

# Characters that keep their meaning inside double quotes
_DOUBLE_QUOTE_SPECIAL = set('"$`\\!')

err_console = Console(stderr=True, highlight=False)


# --- Errors ---


class PnError(Exception):
    """Base exception for errors reported by pn itself."""

    exit_code = 1

    def __str__(self) -> str:
        return self.message()

    def message(self) -> str:
        return "Unknown error"


class MissingScript(PnError):
    def __init__(self, name: str):
        super().__init__(name)
        self.name = name

    def message(self) -> str:
        return f"Missing script: {self.name}"


class ScriptError(PnError):
    """A script run by `pn run` exited with a non-zero status."""

    def __init__(self, name: str, status: int):
        super().__init__(name, status)
        self.name = name
        self.status = status

    @property
    def exit_code(self) -> int:  # type: ignore[override]
        return self.status

    def message(self) -> str:
        return f"Command failed with exit code {self.status}"


class UnexpectedTermination(PnError):
    """The child finished without a status code (e.g. killed by a signal)."""

    def __init__(self, command: "ShellQuoted"):
        super().__init__(str(command))
        self.command = command

    def message(self) -> str:
        return f"Command ended unexpectedly: {self.command}"


class SpawnProcessError(PnError):
    def __init__(self, error: Exception):
        super().__init__(error)
        self.error = error

    def message(self) -> str:
        return f"Failed to spawn process: {self.error}"


class WaitProcessError(PnError):
    def __init__(self, error: OSError):
        super().__init__(error)
        self.error = error

    def message(self) -> str:
        return f"Failed to wait for the process: {self.error}"


class NotInWorkspace(PnError):
    def message(self) -> str:
        return "--workspace-root may only be used in a workspace"


class NoManifestFile(PnError):
    def __init__(self, file: Path):
        super().__init__(file)
        self.file = file

    def message(self) -> str:
        return f"File not found: {self.file}"


class FilesystemError(PnError):
    def __init__(self, path: Path, error: OSError):
        super().__init__(path, error)
        self.path = path
        self.error = error

    def message(self) -> str:
        return f"{self.path}: {self.error}"


class FindUpError(PnError):
    def __init__(self, start_dir: Path, file_name: str, error: OSError):
        super().__init__(start_dir, file_name, error)
        self.start_dir = start_dir
        self.file_name = file_name
        self.error = error

    def message(self) -> str:
        return f"Failed to find {self.file_name} from {self.start_dir} upward: {self.error}"


class WriteStdoutError(PnError):
    def __init__(self, error: OSError):
        super().__init__(error)
        self.error = error

    def message(self) -> str:
        return f"Failed to write to stdout: {self.error}"


class ParseError(PnError):
    def __init__(self, file: Path, message: str):
        super().__init__(file, message)
        self.file = file
        self.detail = message

    def message(self) -> str:
        return f"Failed to parse {self.file}: {self.detail}"


class NodeBinPathError(PnError):
    def __init__(self, entry: str):
        super().__init__(entry)
        self.entry = entry

    def message(self) -> str:
        return (
            f"Cannot add `{NODE_BIN_DIR}` to PATH: "
            f"path segment contains separator {os.pathsep!r}: {self.entry!r}"
        )


class SubprocessExit(Exception):
    """A forwarded child exited non-zero; pn exits with the same code, silently."""

    def __init__(self, code: int):
        super().__init__(code)
        self.code = code


# --- Shell quoting ---


def quote_arg(arg: str) -> str:
    """Quote a single argument for a POSIX shell."""
    if "'" not in arg:
        return f"'{arg}'"
    if not _DOUBLE_QUOTE_SPECIAL.intersection(arg):
        return f'"{arg}"'
    return "'" + arg.replace("'", "'\\''") + "'"


class ShellQuoted:
    """An append-only command line that is safe to hand to `sh -c`."""

    __slots__ = ("_text",)

    def __init__(self, text: str = ""):
        self._text = text

    @classmethod
    def from_command(cls, command: str) -> "ShellQuoted":
        """`command` is used verbatim and never quoted."""
        return cls(command)

    @classmethod
    def from_command_and_args(cls, command: str, args: Iterable[str]) -> "ShellQuoted":
        cmd = cls.from_command(command)
        for arg in args:
            cmd.push_arg(arg)
        return cmd

    @classmethod
    def from_args(cls, args: Iterable[str]) -> "ShellQuoted":
        return cls.from_command_and_args("", args)

    def push_arg(self, arg: str) -> None:
        # unix quoting even on Windows: commands always run through `sh -c`
        if self._text:
            self._text += " "
        self._text += quote_arg(arg)

    def __str__(self) -> str:
        return self._text

    def __repr__(self) -> str:
        return f"ShellQuoted({self._text!r})"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ShellQuoted):
            return self._text == other._text
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._text)


# --- Environment ---


def join_paths(entries: Iterable[str]) -> str:
    """Join path entries with the platform separator, rejecting ambiguous ones."""
    checked = []
    for entry in entries:
        if os.pathsep in entry or (os.name == "nt" and '"' in entry):
            raise NodeBinPathError(entry)
        checked.append(entry)
    return os.pathsep.join(checked)


def create_path_env(environ: Optional[Mapping[str, str]] = None) -> str:
    """Return PATH with node_modules/.bin prepended."""
    env = os.environ if environ is None else environ
    existing = env.get("PATH")
    entries = [NODE_BIN_DIR]
    if existing:
        entries.extend(existing.split(os.pathsep))
    return join_paths(entries)


# --- Workspace ---


def find_workspace_root(start_dir: Path) -> Path:
    """Return the closest ancestor of start_dir (inclusive) holding pnpm-workspace.yaml."""
    for directory in (start_dir, *start_dir.parents):
        candidate = directory / WORKSPACE_MANIFEST_FILENAME
        try:
            mode = candidate.stat().st_mode
        except (FileNotFoundError, NotADirectoryError):
            continue
        except OSError as e:
            raise FindUpError(start_dir, WORKSPACE_MANIFEST_FILENAME, e) from e
        if stat.S_ISREG(mode):
            return directory
    raise NotInWorkspace()


# --- Manifest ---


@dataclass(frozen=True)
class Manifest:
    """Structure of package.json (only the fields pn cares about)."""

    name: str = ""
    version: str = ""
    scripts: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # read-only view; the manifest never changes once loaded
        object.__setattr__(self, "scripts", MappingProxyType(dict(self.scripts)))

    @classmethod
    def from_dict(cls, data: Any) -> "Manifest":
        if not isinstance(data, dict):
            raise ValueError(f"invalid type: expected a JSON object, got {type(data).__name__}")
        name = data.get("name", "")
        version = data.get("version", "")
        scripts = data.get("scripts", {})
        for key, value in (("name", name), ("version", version)):
            if not isinstance(value, str):
                raise ValueError(f"invalid type for {key!r}: expected a string")
        if not isinstance(scripts, dict):
            raise ValueError("invalid type for 'scripts': expected a JSON object")
        for script_name, command in scripts.items():
            if not isinstance(command, str):
                raise ValueError(f"invalid type for script {script_name!r}: expected a string")
        return cls(name=name, version=version, scripts=dict(scripts))


def read_manifest(path: Path) -> Manifest:
    """Load package.json at path."""
    try:
        with path.open("rb") as f:
            raw = f.read()
    except FileNotFoundError as e:
        raise NoManifestFile(path) from e
    except OSError as e:
        raise FilesystemError(path, e) from e

    try:
        return Manifest.from_dict(json.loads(raw.decode("utf-8")))
    except (ValueError, UnicodeDecodeError, RecursionError) as e:
        # json.JSONDecodeError is a ValueError; its text carries line/column.
        # RecursionError: nesting deeper than the decoder can follow
        raise ParseError(path, str(e)) from e


# --- Processes ---


def _wait_for(
    argv: list[str], cwd: Optional[Path] = None, env: Optional[dict[str, str]] = None
) -> int:
    """Spawn argv with inherited stdio and block until it exits."""
    try:
        process = subprocess.Popen(argv, cwd=cwd, env=env)
    except (OSError, ValueError) as e:
        raise SpawnProcessError(e) from e
    try:
        return process.wait()
    except OSError as e:
        raise WaitProcessError(e) from e


def _shell_env() -> dict[str, str]:
    env = dict(os.environ)
    env["PATH"] = create_path_env()
    return env


def run_script(name: str, command: ShellQuoted, cwd: Path) -> None:
    """Run a package script through `sh -c`."""
    status = _wait_for([SHELL, "-c", str(command)], cwd=cwd, env=_shell_env())
    if status == 0:
        return
    if status < 0:
        raise UnexpectedTermination(command)
    raise ScriptError(name, status)


def pass_to_sub(command: ShellQuoted, cwd: Path) -> None:
    """Run an arbitrary shell command, relaying its exit code."""
    status = _wait_for([SHELL, "-c", str(command)], cwd=cwd, env=_shell_env())
    if status == 0:
        return
    if status < 0:
        raise UnexpectedTermination(command)
    raise SubprocessExit(status)


def pass_to_pnpm(args: list[str]) -> None:
    """Forward args to pnpm as-is (no shell, inherited cwd and PATH)."""
    status = _wait_for([PNPM_BINARY, *args])
    if status == 0:
        return
    if status < 0:
        raise UnexpectedTermination(ShellQuoted.from_command_and_args(PNPM_BINARY, args))
    raise SubprocessExit(status)


# --- Command resolution ---


@dataclass(frozen=True)
class Config:
    workspace_root: bool
    cwd: Path


@dataclass(frozen=True)
class RunCommand:
    script: Optional[str]
    args: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class OtherCommand:
    tokens: list[str]


Command = Union[RunCommand, OtherCommand]


def resolve_directory(config: Config) -> Path:
    """Directory pn operates in: the workspace root if requested, else cwd."""
    if config.workspace_root:
        return find_workspace_root(config.cwd)
    return config.cwd


def run_named_script(manifest: Manifest, name: str, args: list[str], cwd: Path) -> None:
    command_text = manifest.scripts.get(name)
    if command_text is None:
        raise MissingScript(name)
    command = ShellQuoted.from_command_and_args(command_text, args)
    print(f"\n> {manifest.name}@{manifest.version} {cwd}", file=sys.stderr)
    print(f"> {command}\n", file=sys.stderr)
    run_script(name, command, cwd)


def list_scripts(manifest: Manifest) -> None:
    """Print the available scripts to stdout."""
    if not manifest.scripts:
        lines = ["There are no scripts in package.json"]
    else:
        lines = ["Commands available via `pn run`:"]
        for name, command in manifest.scripts.items():
            lines.append(f"  {name}")
            lines.append(f"    {command}")
    try:
        sys.stdout.write("\n".join(lines) + "\n")
        sys.stdout.flush()
    except OSError as e:
        raise WriteStdoutError(e) from e


def run_run(config: Config, command: RunCommand) -> None:
    cwd = resolve_directory(config)
    manifest = read_manifest(cwd / MANIFEST_FILENAME)
    if command.script is None:
        list_scripts(manifest)
        return
    run_named_script(manifest, command.script, command.args, cwd)


def run_other(config: Config, command: OtherCommand) -> None:
    """Dispatch order: pnpm passthrough, then package scripts, then raw shell."""
    tokens = command.tokens
    if tokens[0] in PASSED_THROUGH_COMMANDS:
        pass_to_pnpm(tokens)
        return

    cwd = resolve_directory(config)
    try:
        manifest = read_manifest(cwd / MANIFEST_FILENAME)
    except NoManifestFile:
        manifest = None
    if manifest is not None and tokens[0] in manifest.scripts:
        run_named_script(manifest, tokens[0], tokens[1:], cwd)
        return

    pass_to_sub(ShellQuoted.from_command(" ".join(tokens)), cwd)


def execute(config: Config, command: Command) -> None:
    if isinstance(command, RunCommand):
        run_run(config, command)
    else:
        run_other(config, command)


# --- CLI and Main Execution ---


def create_parser() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="pn",
        description="Run package.json scripts, pnpm commands, or shell commands",
        epilog=(
            "commands:\n"
            "  run [SCRIPT] [ARGS...]  run a package script (lists scripts if SCRIPT is omitted)\n"
            "  <pnpm command> ...      forwarded to pnpm as-is\n"
            "  <anything else> ...     run as a shell command with node_modules/.bin on PATH"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "-w",
        "--workspace-root",
        action="store_true",
        help="Run the command on the root workspace project",
    )
    parser.add_argument("--version", action="version", version=f"pn {__version__}")
    parser.add_argument("command", nargs=argparse.REMAINDER, help="Command to execute")
    return parser


def parse_command(tokens: list[str]) -> Command:
    """Split the raw command tokens into a run or other command."""
    if tokens[0] in RUN_COMMANDS:
        rest = tokens[1:]
        return RunCommand(script=rest[0] if rest else None, args=rest[1:])
    return OtherCommand(tokens=list(tokens))


def print_error(error: PnError) -> None:
    err_console.print(
        Text.assemble((" ERROR ", "black on red"), " ", (str(error), "red")),
        soft_wrap=True,
    )


def main() -> int:
    """Run the main entry point."""
    parser = create_parser()
    args = parser.parse_args()
    if not args.command:
        parser.error("a command is required")

    config = Config(workspace_root=args.workspace_root, cwd=Path.cwd())
    command = parse_command(args.command)

    try:
        execute(config, command)
        return 0
    except SubprocessExit as e:
        return e.code
    except PnError as e:
        print_error(e)
        return e.exit_code
    except KeyboardInterrupt:
        print("\nCancelled by user", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"Unexpected error: {e}", file=sys.stderr)
        return 1


def cli_entrypoint() -> None:
    """Console entry point (kept tiny so tests can patch sys.exit)."""
    sys.exit(main())


if __name__ == "__main__":
    cli_entrypoint()
