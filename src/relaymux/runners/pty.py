"""Shells behind pseudo-terminals, one per pane.

A `PtySession` owns the child process, the PTY master and a reader thread.
The reader decodes output incrementally as UTF-8, so a character split across
two reads reaches `on_output` whole, and keeps a bounded tail of raw bytes.
`PtySupervisor` maps pane ids to sessions and doubles as the `SessionWriter`
the dispatch orchestrator writes relayed commands through.
"""
from __future__ import annotations

import codecs
import fcntl
import logging
import os
import pty
import selectors
import signal
import struct
import subprocess
import threading
import time
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

import termios

from ..relay.dispatch import SessionWriter, WriteError


logger = logging.getLogger("relaymux.pty")

PTY_SUPPORTED = True

OutputCallback = Callable[[str], None]

_READ_SIZE = 64 * 1024
# Give up on a write after this long without the master accepting a byte.
_WRITE_STALL_S = 5.0


def default_shell() -> str:
    shell = os.environ.get("SHELL", "").strip()
    if shell and Path(shell).exists():
        return shell
    return "/bin/bash" if Path("/bin/bash").exists() else "sh"


def _apply_winsize(fd: int, cols: int, rows: int) -> None:
    try:
        fcntl.ioctl(fd, termios.TIOCSWINSZ, struct.pack("HHHH", rows, cols, 0, 0))
    except OSError:
        pass


def _signal_group(pid: int, sig: signal.Signals) -> None:
    """Signal the session's process group, falling back to the pid alone."""
    if pid <= 0:
        return
    for send in (os.killpg, os.kill):
        try:
            send(pid, sig)
            return
        except OSError:
            continue


def _become_session_leader() -> None:
    # Runs in the child: new session, the PTY slave (fd 0) as controlling tty.
    try:
        os.setsid()
        fcntl.ioctl(0, termios.TIOCSCTTY, 0)
    except OSError:
        pass


def _child_env(extra: Dict[str, str]) -> Dict[str, str]:
    env = dict(os.environ)
    env.update({k: v for k, v in extra.items() if isinstance(k, str) and isinstance(v, str)})
    env.setdefault("TERM", "xterm-256color")
    # zsh session restore exits early inside embedded terminals.
    env.setdefault("SHELL_SESSIONS_DISABLE", "1")
    return env


class PtySession:
    def __init__(
        self,
        *,
        pane_id: str,
        cwd: Path,
        command: Iterable[str],
        env: Dict[str, str],
        on_output: Optional[OutputCallback] = None,
        on_exit: Optional[Callable[["PtySession"], None]] = None,
        max_backlog_bytes: int = 2_000_000,
        cols: int = 80,
        rows: int = 24,
    ) -> None:
        self.pane_id = pane_id
        self._on_output = on_output
        self._on_exit = on_exit
        self._tail_limit = max(0, int(max_backlog_bytes))
        self._tail = bytearray()
        self._tail_lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._stopping = threading.Event()

        argv: List[str] = [str(x) for x in command if isinstance(x, str) and x.strip()] or [default_shell()]
        master, slave = pty.openpty()
        _apply_winsize(master, cols, rows)
        try:
            self._proc = subprocess.Popen(
                argv,
                stdin=slave,
                stdout=slave,
                stderr=slave,
                cwd=str(cwd),
                env=_child_env(env),
                close_fds=True,
                preexec_fn=_become_session_leader,
            )
        except OSError:
            os.close(master)
            raise
        finally:
            os.close(slave)
        os.set_blocking(master, False)
        self._master = master

        self._reader = threading.Thread(target=self._read_loop, name=f"relaymux-pty:{pane_id}", daemon=True)
        self._reader.start()
        logger.info("pty session started: %s", " ".join(argv), extra={"pane_id": pane_id})

    @property
    def pid(self) -> int:
        return int(self._proc.pid or 0)

    def is_running(self) -> bool:
        return not self._stopping.is_set() and self._proc.poll() is None

    def tail_output(self) -> bytes:
        """The most recent raw output, at most `max_backlog_bytes` long."""
        with self._tail_lock:
            return bytes(self._tail)

    def resize(self, *, cols: int, rows: int) -> None:
        if cols > 0 and rows > 0:
            _apply_winsize(self._master, int(cols), int(rows))
            _signal_group(self.pid, signal.SIGWINCH)

    def write_input(self, data: bytes) -> bool:
        view = memoryview(data)
        with self._write_lock:
            stalled_since = time.monotonic()
            while view:
                try:
                    n = os.write(self._master, view)
                except BlockingIOError:
                    if time.monotonic() - stalled_since > _WRITE_STALL_S:
                        return False
                    time.sleep(0.05)
                    continue
                except OSError:
                    return False
                view = view[n:]
                stalled_since = time.monotonic()
        return True

    def stop(self) -> None:
        self._stopping.set()
        _signal_group(self.pid, signal.SIGTERM)
        try:
            self._proc.wait(timeout=1.0)
        except subprocess.TimeoutExpired:
            _signal_group(self.pid, signal.SIGKILL)
            try:
                self._proc.wait(timeout=1.0)
            except subprocess.TimeoutExpired:
                logger.warning("pty child ignored SIGKILL", extra={"pane_id": self.pane_id})

    def _remember(self, chunk: bytes) -> None:
        with self._tail_lock:
            self._tail += chunk
            if self._tail_limit and len(self._tail) > self._tail_limit:
                del self._tail[: len(self._tail) - self._tail_limit]

    def _deliver(self, text: str) -> None:
        if not text or self._on_output is None:
            return
        try:
            self._on_output(text)
        except Exception:
            logger.exception("pty output handler failed", extra={"pane_id": self.pane_id})

    def _drain(self) -> bool:
        """Read everything available; False once the master reports EOF or EIO."""
        while True:
            try:
                chunk = os.read(self._master, _READ_SIZE)
            except BlockingIOError:
                return True
            except OSError:
                return False
            if not chunk:
                return False
            self._remember(chunk)
            self._deliver(self._decoder.decode(chunk))

    def _read_loop(self) -> None:
        sel = selectors.DefaultSelector()
        sel.register(self._master, selectors.EVENT_READ, "pty")
        open_ = True
        try:
            while open_ and self.is_running():
                # The timeout doubles as the stop() poll interval.
                if sel.select(timeout=0.1):
                    open_ = self._drain()
            # Output written just before exit is still queued on the master.
            if open_:
                self._drain()
            self._deliver(self._decoder.decode(b"", final=True))
        finally:
            sel.close()
            try:
                os.close(self._master)
            except OSError:
                pass
            if self._on_exit is not None:
                try:
                    self._on_exit(self)
                except Exception:
                    logger.exception("pty exit hook failed", extra={"pane_id": self.pane_id})


class PtySupervisor(SessionWriter):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sessions: Dict[str, PtySession] = {}

    def _forget(self, session: PtySession) -> None:
        with self._lock:
            if self._sessions.get(session.pane_id) is session:
                del self._sessions[session.pane_id]
        logger.info("pty session exited", extra={"pane_id": session.pane_id})

    def _live(self, pane_id: str) -> Optional[PtySession]:
        with self._lock:
            s = self._sessions.get(pane_id)
        return s if s is not None and s.is_running() else None

    def pane_running(self, pane_id: str) -> bool:
        return self._live(pane_id) is not None

    def start_pane(
        self,
        *,
        pane_id: str,
        cwd: Path,
        command: Iterable[str] = (),
        env: Optional[Dict[str, str]] = None,
        on_output: Optional[OutputCallback] = None,
        max_backlog_bytes: int = 2_000_000,
        cols: int = 80,
        rows: int = 24,
    ) -> PtySession:
        if not pane_id:
            raise ValueError("missing pane_id")
        running = self._live(pane_id)
        if running is not None:
            return running
        session = PtySession(
            pane_id=pane_id,
            cwd=cwd,
            command=command,
            env=dict(env or {}),
            on_output=on_output,
            on_exit=self._forget,
            max_backlog_bytes=max_backlog_bytes,
            cols=cols,
            rows=rows,
        )
        with self._lock:
            self._sessions[pane_id] = session
        return session

    def stop_pane(self, pane_id: str) -> None:
        with self._lock:
            s = self._sessions.pop(pane_id, None)
        if s is not None:
            s.stop()

    def stop_all(self) -> None:
        with self._lock:
            sessions, self._sessions = list(self._sessions.values()), {}
        for s in sessions:
            s.stop()

    def resize(self, pane_id: str, *, cols: int, rows: int) -> None:
        s = self._live(pane_id)
        if s is not None:
            s.resize(cols=cols, rows=rows)

    def write_input(self, pane_id: str, data: bytes) -> bool:
        s = self._live(pane_id)
        return s is not None and s.write_input(data)

    def write(self, target: str, data: str) -> None:
        s = self._live(target)
        if s is None:
            raise WriteError(f"pane not running: {target}")
        if not s.write_input(data.encode("utf-8", errors="replace")):
            raise WriteError(f"pty write failed: {target}")


SUPERVISOR = PtySupervisor()
