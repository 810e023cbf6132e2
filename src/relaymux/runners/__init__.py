from __future__ import annotations

import os

from . import tmux

if os.name == "nt":
    # Windows has no POSIX PTY (termios/fcntl); panes must run under tmux/WSL.
    from . import pty_stub as pty  # type: ignore
else:
    try:
        from . import pty
    except ImportError:
        # Some Python builds lack termios/fcntl.
        from . import pty_stub as pty  # type: ignore

__all__ = ["pty", "tmux"]
