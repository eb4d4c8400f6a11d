"""Synchronous client for the tmux CLI."""

from __future__ import annotations

import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path

from .utils import sanitize_environment

EXECUTE_KEYS = frozenset({"C-m", "Enter"})


class TmuxError(RuntimeError):
    """Raised when a tmux command exits with a non-zero status."""

    def __init__(self, message: str, *, args: tuple[str, ...] = (), stderr: str = "") -> None:
        super().__init__(message)
        self.command = args
        self.stderr = stderr


class TmuxNotFoundError(TmuxError):
    """Raised when the tmux executable cannot be located."""


@dataclass(slots=True)
class TmuxResult:
    """Holds the outcome of a tmux CLI invocation."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class TmuxClient:
    """Execute tmux commands against the default server."""

    def __init__(self, executable: Path | None = None, *, timeout: float = 10.0) -> None:
        self._executable_path = self._resolve_executable(executable)
        self._timeout = timeout

    @staticmethod
    def _resolve_executable(explicit: Path | None) -> Path:
        if explicit is not None:
            candidate = Path(explicit)
            if candidate.exists() and candidate.is_file():
                return candidate
            raise TmuxNotFoundError(f"tmux executable not found at {candidate}")

        binary = shutil.which("tmux")
        if binary is None:
            raise TmuxNotFoundError("tmux executable not found on PATH")
        return Path(binary)

    @property
    def executable(self) -> Path:
        return self._executable_path

    def has_session(self, name: str) -> bool:
        # "=" forces an exact match; tmux otherwise accepts a unique prefix.
        return self._invoke("has-session", "-t", f"={name}", check=False).ok

    def new_session(self, name: str, working_dir: Path | str) -> None:
        self._invoke("new-session", "-d", "-s", name, "-c", str(working_dir))

    def kill_session(self, name: str) -> None:
        self._invoke("kill-session", "-t", f"={name}")

    def list_sessions(self) -> list[str]:
        result = self._invoke("list-sessions", "-F", "#{session_name}", check=False)
        if not result.ok:
            return []
        return [line for line in result.stdout.splitlines() if line]

    def capture_pane(self, name: str, lines: int = 1000) -> str:
        return self._invoke("capture-pane", "-p", "-t", name, "-S", f"-{lines}").stdout

    def select_pane(self, name: str) -> None:
        self._invoke("select-pane", "-t", name)

    def send_keys(self, name: str, *keys: str, literal: bool = False) -> None:
        args = ["send-keys", "-t", name]
        if literal:
            args.append("-l")
        self._invoke(*args, *keys)

    def current_session(self) -> str | None:
        result = self._invoke("display-message", "-p", "#S", check=False)
        name = result.stdout.strip()
        return name if result.ok and name else None

    def pane_command(self, name: str) -> str | None:
        result = self._invoke("list-panes", "-t", name, "-F", "#{pane_current_command}", check=False)
        if not result.ok:
            return None
        return result.stdout.strip() or None

    def _invoke(self, *args: str, check: bool = True) -> TmuxResult:
        cmd = (str(self._executable_path), *args)
        try:
            completed = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                env=sanitize_environment(),
                timeout=self._timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise TmuxError(f"tmux {args[0]} failed: {exc}", args=cmd) from exc

        result = TmuxResult(
            args=cmd,
            returncode=completed.returncode,
            stdout=completed.stdout,
            stderr=completed.stderr,
        )
        if check and not result.ok:
            raise TmuxError(
                f"tmux {args[0]} exited with {result.returncode}: {result.stderr.strip()}",
                args=cmd,
                stderr=result.stderr,
            )
        return result


@dataclass
class FakePane:
    """In-memory stand-in for a tmux session with a single pane."""

    working_dir: str
    lines: list[str] = field(default_factory=list)
    input_line: str = ""
    executed: list[str] = field(default_factory=list)
    command: str = "zsh"


class FakeTmuxClient(TmuxClient):
    """Test double that simulates tmux sessions in memory.

    Literal keys accumulate on the pane's input line; an execute key submits a
    non-empty input line and is a no-op on an empty one.
    """

    def __init__(self) -> None:  # type: ignore[override]
        self._executable_path = Path("/tmp/fake-tmux")
        self._timeout = 0.0
        self.panes: dict[str, FakePane] = {}
        self.invocations: list[tuple[str, ...]] = []
        self.failing: set[str] = set()
        self.scripted_captures: dict[str, list[str]] = {}

    def add_session(self, name: str, content: str = "", working_dir: str = "/tmp") -> FakePane:
        pane = FakePane(working_dir=working_dir, lines=content.splitlines())
        self.panes[name] = pane
        return pane

    def set_content(self, name: str, content: str) -> None:
        self.panes[name].lines = content.splitlines()

    def script_captures(self, name: str, contents: list[str]) -> None:
        """Queue capture results; the last one repeats once the queue drains."""

        self.scripted_captures[name] = list(contents)

    def _record(self, *args: str) -> None:
        self.invocations.append(tuple(args))
        if args[0] in self.failing:
            raise TmuxError(f"tmux {args[0]} failed (simulated)", args=tuple(args))

    def _pane(self, name: str) -> FakePane:
        pane = self.panes.get(name)
        if pane is None:
            raise TmuxError(f"can't find session: {name}", args=(name,))
        return pane

    def has_session(self, name: str) -> bool:
        self.invocations.append(("has-session", name))
        return name in self.panes

    def new_session(self, name: str, working_dir: Path | str) -> None:
        self._record("new-session", name, str(working_dir))
        if name in self.panes:
            raise TmuxError(f"duplicate session: {name}", args=(name,))
        self.add_session(name, working_dir=str(working_dir))

    def kill_session(self, name: str) -> None:
        self._record("kill-session", name)
        self._pane(name)
        del self.panes[name]

    def list_sessions(self) -> list[str]:
        self.invocations.append(("list-sessions",))
        return list(self.panes)

    def capture_pane(self, name: str, lines: int = 1000) -> str:
        self._record("capture-pane", name, str(lines))
        queued = self.scripted_captures.get(name)
        if queued:
            return queued.pop(0) if len(queued) > 1 else queued[0]
        pane = self._pane(name)
        return "\n".join(pane.lines[-lines:]) + "\n"

    def select_pane(self, name: str) -> None:
        self._record("select-pane", name)
        self._pane(name)

    def send_keys(self, name: str, *keys: str, literal: bool = False) -> None:
        self._record("send-keys", name, *keys, *(("-l",) if literal else ()))
        pane = self._pane(name)
        for key in keys:
            if not literal and key in EXECUTE_KEYS:
                if pane.input_line:
                    pane.executed.append(pane.input_line)
                    pane.lines.append(f"> {pane.input_line}")
                    pane.input_line = ""
                continue
            pane.input_line += key

    def current_session(self) -> str | None:
        return next(iter(self.panes), None)

    def pane_command(self, name: str) -> str | None:
        pane = self.panes.get(name)
        return pane.command if pane else None


__all__ = [
    "EXECUTE_KEYS",
    "FakePane",
    "FakeTmuxClient",
    "TmuxClient",
    "TmuxError",
    "TmuxNotFoundError",
    "TmuxResult",
]
