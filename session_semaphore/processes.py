"""Process liveness and ancestry helpers.

Used by the hook to capture the owning process, its controlling terminal
and the terminal application, and by the monitor for dead-process cleanup
and focus matching.

Every query is best-effort: a process that vanished or cannot be inspected
yields None / False instead of raising.

Typical process tree (hook → assistant → shell → terminal application):
    foot (terminal_pid)
      └─ zsh
          └─ claude (pid, tty=/dev/pts/3)
              └─ session-semaphore-hook
"""

import logging
from typing import Optional

import psutil

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 10


class ProcessInspector:
    """Process queries backed by psutil."""

    def is_alive(self, pid: int) -> bool:
        """True if pid exists and is not a zombie."""
        if pid <= 0:
            return False
        if not psutil.pid_exists(pid):
            return False
        try:
            return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
        except psutil.NoSuchProcess:
            return False
        except psutil.Error:
            # Exists but cannot be inspected (e.g. another user's process)
            return True

    def parent_of(self, pid: int) -> Optional[int]:
        """Parent pid, or None if unknown."""
        try:
            ppid = psutil.Process(pid).ppid()
        except (psutil.Error, ValueError):
            return None
        return ppid if ppid > 0 else None

    def parent_chain(self, pid: int, max_depth: int = DEFAULT_MAX_DEPTH) -> list[int]:
        """Walk the process tree upwards.

        Args:
            pid: Starting process ID.
            max_depth: Maximum number of hops (guards against corrupt trees).

        Returns:
            PIDs from pid upwards, e.g. [12345, 12340, 1].
        """
        chain = [pid]
        current = pid
        for _ in range(max_depth):
            if current <= 1:
                break
            parent = self.parent_of(current)
            if parent is None or parent == current or parent in chain:
                break
            chain.append(parent)
            current = parent
        return chain

    def is_descendant(self, pid: int, ancestor: int, max_depth: int = DEFAULT_MAX_DEPTH) -> bool:
        """True if ancestor appears in pid's parent chain (pid itself included)."""
        return ancestor in self.parent_chain(pid, max_depth=max_depth)

    def tty_of(self, pid: int) -> Optional[str]:
        """Controlling terminal device path, e.g. "/dev/pts/3"."""
        try:
            tty = psutil.Process(pid).terminal()
        except psutil.Error:
            return None
        return tty or None

    def child_ttys(self, pid: int) -> list[str]:
        """Distinct controlling terminals of pid's direct children.

        For a terminal emulator these are the ptys of its shells, in
        child creation order.
        """
        try:
            children = psutil.Process(pid).children(recursive=False)
        except psutil.Error:
            return []

        ttys: list[str] = []
        for child in children:
            try:
                tty = child.terminal()
            except psutil.Error:
                continue
            if tty and tty not in ttys:
                ttys.append(tty)
        return ttys

    def terminal_app_of(self, pid: int) -> Optional[int]:
        """Terminal application pid for an assistant process.

        The assistant runs inside a shell started by the terminal, so the
        terminal is the grandparent: assistant → shell → terminal.
        """
        shell = self.parent_of(pid)
        if shell is None:
            return None
        return self.parent_of(shell)
