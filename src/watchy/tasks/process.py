"""Process-control boundary: spawn group leaders, signal groups, probe PIDs."""

from __future__ import annotations

import os
import signal
import subprocess
from pathlib import Path
from typing import BinaryIO


def spawn_group_leader(
    *,
    command: str,
    shell: str,
    log_handle: BinaryIO,
    cwd: Path | None = None,
) -> subprocess.Popen[bytes]:
    """Run ``command`` through ``shell -c`` as the leader of a new process group.

    stdout and stderr are both written to ``log_handle``.
    """

    return subprocess.Popen(  # noqa: S603
        [shell, "-c", command],
        stdin=subprocess.DEVNULL,
        stdout=log_handle,
        stderr=subprocess.STDOUT,
        cwd=cwd,
        start_new_session=True,
    )


def signal_group(pid: int, sig: signal.Signals) -> None:
    """Send ``sig`` to the process group led by ``pid``.

    Raises ``OSError`` when the signal cannot be delivered.
    """

    if pid <= 0:
        raise ProcessLookupError(f"invalid pid: {pid}")
    os.killpg(pid, sig)


def pid_alive(pid: int) -> bool:
    """Probe ``pid`` with signal 0; no signal is actually delivered."""

    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return False
    return True
