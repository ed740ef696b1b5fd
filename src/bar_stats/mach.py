"""Low-level Mach host interface for macOS CPU and VM counters.

Uses ctypes to call the Mach host APIs in libSystem directly:
- host_statistics(HOST_CPU_LOAD_INFO): aggregate CPU ticks
- host_processor_info(PROCESSOR_CPU_LOAD_INFO): per-core CPU ticks
- host_statistics64(HOST_VM_INFO64): VM page counts
- host_page_size: page size in bytes

All read functions return None when the kernel call fails.
"""

import ctypes
from ctypes import POINTER, Structure, byref, c_int, c_size_t, c_uint32, c_uint64

# ─────────────────────────────────────────────────────────────────────────────
# Library loading
# ─────────────────────────────────────────────────────────────────────────────

libc = ctypes.CDLL(None, use_errno=True)

# ─────────────────────────────────────────────────────────────────────────────
# Constants
# ─────────────────────────────────────────────────────────────────────────────

KERN_SUCCESS = 0

# host_statistics flavors (mach/host_info.h)
HOST_CPU_LOAD_INFO = 3
HOST_VM_INFO64 = 4

# host_processor_info flavors (mach/processor_info.h)
PROCESSOR_CPU_LOAD_INFO = 2

# cpu_ticks indices (mach/machine.h)
CPU_STATE_USER = 0
CPU_STATE_SYSTEM = 1
CPU_STATE_IDLE = 2
CPU_STATE_NICE = 3
CPU_STATE_MAX = 4

mach_port_t = c_uint32
natural_t = c_uint32
integer_t = c_int
vm_size_t = c_size_t


# ─────────────────────────────────────────────────────────────────────────────
# Structures
# ─────────────────────────────────────────────────────────────────────────────


class HostCpuLoadInfo(Structure):
    """host_cpu_load_info from mach/host_info.h."""

    _fields_ = [("cpu_ticks", natural_t * CPU_STATE_MAX)]


class VmStatistics64(Structure):
    """vm_statistics64 from mach/vm_statistics.h."""

    _fields_ = [
        ("free_count", natural_t),
        ("active_count", natural_t),
        ("inactive_count", natural_t),
        ("wire_count", natural_t),
        ("zero_fill_count", c_uint64),
        ("reactivations", c_uint64),
        ("pageins", c_uint64),
        ("pageouts", c_uint64),
        ("faults", c_uint64),
        ("cow_faults", c_uint64),
        ("lookups", c_uint64),
        ("hits", c_uint64),
        ("purges", c_uint64),
        ("purgeable_count", natural_t),
        ("speculative_count", natural_t),
        ("decompressions", c_uint64),
        ("compressions", c_uint64),
        ("swapins", c_uint64),
        ("swapouts", c_uint64),
        ("compressor_page_count", natural_t),
        ("throttled_count", natural_t),
        ("external_page_count", natural_t),
        ("internal_page_count", natural_t),
        ("total_uncompressed_pages_in_compressor", c_uint64),
    ]


HOST_CPU_LOAD_INFO_COUNT = ctypes.sizeof(HostCpuLoadInfo) // ctypes.sizeof(integer_t)
HOST_VM_INFO64_COUNT = ctypes.sizeof(VmStatistics64) // ctypes.sizeof(integer_t)


# ─────────────────────────────────────────────────────────────────────────────
# Function signatures
# ─────────────────────────────────────────────────────────────────────────────

# mach_task_self() is a macro over this global
_mach_task_self = mach_port_t.in_dll(libc, "mach_task_self_")

libc.mach_host_self.argtypes = []
libc.mach_host_self.restype = mach_port_t

libc.mach_port_deallocate.argtypes = [mach_port_t, mach_port_t]
libc.mach_port_deallocate.restype = c_int

libc.host_statistics.argtypes = [mach_port_t, c_int, ctypes.c_void_p, POINTER(natural_t)]
libc.host_statistics.restype = c_int

libc.host_statistics64.argtypes = [mach_port_t, c_int, ctypes.c_void_p, POINTER(natural_t)]
libc.host_statistics64.restype = c_int

libc.host_processor_info.argtypes = [
    mach_port_t,
    c_int,
    POINTER(natural_t),
    POINTER(POINTER(integer_t)),
    POINTER(natural_t),
]
libc.host_processor_info.restype = c_int

libc.vm_deallocate.argtypes = [mach_port_t, c_size_t, vm_size_t]
libc.vm_deallocate.restype = c_int

libc.host_page_size.argtypes = [mach_port_t, POINTER(vm_size_t)]
libc.host_page_size.restype = c_int


# ─────────────────────────────────────────────────────────────────────────────
# Public API
# ─────────────────────────────────────────────────────────────────────────────

CpuTicksTuple = tuple[int, int, int, int]


def host_self() -> int:
    """Return a send right to the host port. Release with release_port()."""
    return libc.mach_host_self()


def release_port(port: int) -> None:
    """Release a port right obtained from host_self()."""
    libc.mach_port_deallocate(_mach_task_self.value, port)


def get_cpu_load(host: int) -> CpuTicksTuple | None:
    """Read aggregate CPU ticks as (user, system, idle, nice)."""
    info = HostCpuLoadInfo()
    count = natural_t(HOST_CPU_LOAD_INFO_COUNT)
    kr = libc.host_statistics(host, HOST_CPU_LOAD_INFO, byref(info), byref(count))
    if kr != KERN_SUCCESS:
        return None
    ticks = info.cpu_ticks
    return (
        ticks[CPU_STATE_USER],
        ticks[CPU_STATE_SYSTEM],
        ticks[CPU_STATE_IDLE],
        ticks[CPU_STATE_NICE],
    )


def get_core_loads(host: int) -> list[CpuTicksTuple] | None:
    """Read per-core CPU ticks, one (user, system, idle, nice) tuple per core.

    The kernel allocates the result array in our address space; it is copied
    into Python ints and deallocated before returning.
    """
    ncores = natural_t()
    info = POINTER(integer_t)()
    info_count = natural_t()
    kr = libc.host_processor_info(
        host, PROCESSOR_CPU_LOAD_INFO, byref(ncores), byref(info), byref(info_count)
    )
    if kr != KERN_SUCCESS:
        return None

    try:
        # cpu_ticks are unsigned; integer_t view needs masking
        cores = []
        for i in range(ncores.value):
            base = i * CPU_STATE_MAX
            cores.append(
                (
                    info[base + CPU_STATE_USER] & 0xFFFFFFFF,
                    info[base + CPU_STATE_SYSTEM] & 0xFFFFFFFF,
                    info[base + CPU_STATE_IDLE] & 0xFFFFFFFF,
                    info[base + CPU_STATE_NICE] & 0xFFFFFFFF,
                )
            )
        return cores
    finally:
        address = ctypes.cast(info, ctypes.c_void_p).value or 0
        libc.vm_deallocate(
            _mach_task_self.value, address, info_count.value * ctypes.sizeof(integer_t)
        )


def get_vm_statistics(host: int) -> VmStatistics64 | None:
    """Read 64-bit VM statistics (page counts)."""
    vmstat = VmStatistics64()
    count = natural_t(HOST_VM_INFO64_COUNT)
    kr = libc.host_statistics64(host, HOST_VM_INFO64, byref(vmstat), byref(count))
    return vmstat if kr == KERN_SUCCESS else None


def get_page_size(host: int) -> int | None:
    """Return the VM page size in bytes."""
    size = vm_size_t()
    kr = libc.host_page_size(host, byref(size))
    return size.value if kr == KERN_SUCCESS else None
