"""Process directory over libproc.dylib.

Enumerates PIDs and resolves their short names for the GPU process ranking.
Processes come and go between calls; a PID that has already exited simply
has no name.
"""

import ctypes
from ctypes import c_int, c_uint32

import structlog

log = structlog.get_logger()

# ─────────────────────────────────────────────────────────────────────────────
# Library loading
# ─────────────────────────────────────────────────────────────────────────────

libproc = ctypes.CDLL("/usr/lib/libproc.dylib", use_errno=True)

# ─────────────────────────────────────────────────────────────────────────────
# Constants
# ─────────────────────────────────────────────────────────────────────────────

# proc_name() copies pbi_name (2 * MAXCOMLEN) into any buffer size
NAME_BUFSIZE = 2 * 16 + 1

# Spare slots for processes spawned between sizing and listing
PID_HEADROOM = 32
PID_LIST_ATTEMPTS = 3

# int proc_listallpids(void *buffer, int buffersize)
libproc.proc_listallpids.argtypes = [ctypes.c_void_p, c_int]
libproc.proc_listallpids.restype = c_int

# int proc_name(int pid, void *buffer, uint32_t buffersize)
libproc.proc_name.argtypes = [c_int, ctypes.c_void_p, c_uint32]
libproc.proc_name.restype = c_int


# ─────────────────────────────────────────────────────────────────────────────
# Public API
# ─────────────────────────────────────────────────────────────────────────────


def list_all_pids() -> list[int]:
    """Return every live PID, or an empty list if the table can't be read."""
    slots = libproc.proc_listallpids(None, 0)
    for _ in range(PID_LIST_ATTEMPTS):
        if slots <= 0:
            break
        buffer = (c_int * (slots + PID_HEADROOM))()
        count = libproc.proc_listallpids(buffer, ctypes.sizeof(buffer))
        if count <= 0:
            break
        if count < len(buffer):
            return [pid for pid in buffer[:count] if pid > 0]
        # Table filled the buffer; it may have been cut short
        slots = count * 2

    log.debug("pid_list_failed", errno=ctypes.get_errno())
    return []


def get_process_name(pid: int) -> str:
    """Short name for pid ("" once the process is gone)."""
    buffer = ctypes.create_string_buffer(NAME_BUFSIZE)
    if libproc.proc_name(pid, buffer, NAME_BUFSIZE) <= 0:
        return ""
    return buffer.value.decode("utf-8", errors="replace")
