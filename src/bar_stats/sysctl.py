"""sysctl reads for physical memory and per-interface byte counters.

Interface counters come from the ifmib generic data row, the same source
netstat -ib uses, so no subprocess is needed per tick.
"""

import ctypes
from ctypes import Structure, byref, c_char, c_int, c_int64, c_size_t, c_uint8, c_uint32, c_uint64

# Symbols resolve from the process image; only macOS exports the ifmib MIB
libc = ctypes.CDLL(None)
libc.sysctlbyname.argtypes = [
    ctypes.c_char_p,
    ctypes.c_void_p,
    ctypes.POINTER(c_size_t),
    ctypes.c_void_p,
    c_size_t,
]
libc.sysctlbyname.restype = c_int

# int sysctl(int *name, u_int namelen, void *oldp, size_t *oldlenp, void *newp, size_t newlen)
libc.sysctl.argtypes = [
    ctypes.POINTER(c_int),
    c_uint32,
    ctypes.c_void_p,
    ctypes.POINTER(c_size_t),
    ctypes.c_void_p,
    c_size_t,
]
libc.sysctl.restype = c_int

# MIB components for the per-interface generic data (net/if_mib.h)
CTL_NET = 4
PF_LINK = 18
NETLINK_GENERIC = 0
IFMIB_IFDATA = 2
IFDATA_GENERAL = 1

IFNAMSIZ = 16


class IfData64(Structure):
    """struct if_data64 from net/if_var.h."""

    _fields_ = [
        ("ifi_type", c_uint8),
        ("ifi_typelen", c_uint8),
        ("ifi_physical", c_uint8),
        ("ifi_addrlen", c_uint8),
        ("ifi_hdrlen", c_uint8),
        ("ifi_recvquota", c_uint8),
        ("ifi_xmitquota", c_uint8),
        ("ifi_unused1", c_uint8),
        ("ifi_mtu", c_uint32),
        ("ifi_metric", c_uint32),
        ("ifi_baudrate", c_uint64),
        ("ifi_ipackets", c_uint64),
        ("ifi_ierrors", c_uint64),
        ("ifi_opackets", c_uint64),
        ("ifi_oerrors", c_uint64),
        ("ifi_collisions", c_uint64),
        ("ifi_ibytes", c_uint64),
        ("ifi_obytes", c_uint64),
        ("ifi_imcasts", c_uint64),
        ("ifi_omcasts", c_uint64),
        ("ifi_iqdrops", c_uint64),
        ("ifi_noproto", c_uint64),
        ("ifi_recvtiming", c_uint32),
        ("ifi_xmittiming", c_uint32),
        ("ifi_lastchange_sec", ctypes.c_int32),
        ("ifi_lastchange_usec", ctypes.c_int32),
    ]


class IfMibData(Structure):
    """struct ifmibdata from net/if_mib.h."""

    _fields_ = [
        ("ifmd_name", c_char * IFNAMSIZ),
        ("ifmd_pcount", c_uint32),
        ("ifmd_flags", c_uint32),
        ("ifmd_snd_len", c_uint32),
        ("ifmd_snd_maxlen", c_uint32),
        ("ifmd_snd_drops", c_uint32),
        ("ifmd_filler", c_uint32 * 4),
        ("ifmd_data", IfData64),
    ]


def sysctl_int(name: str) -> int | None:
    """Integer sysctl by name (e.g. "hw.memsize"), or None if it can't be read.

    A 64-bit buffer holds both 32- and 64-bit values; the kernel writes
    only as many bytes as the value has.
    """
    value = c_int64()
    size = c_size_t(ctypes.sizeof(value))
    result = libc.sysctlbyname(name.encode(), byref(value), byref(size), None, 0)
    return value.value if result == 0 else None


def get_interface_data(row: int) -> IfMibData | None:
    """Read generic interface statistics for an interface index.

    Args:
        row: Interface index as returned by socket.if_nametoindex()

    Returns:
        IfMibData on success, None if the interface row doesn't exist.
    """
    if row <= 0:
        return None
    mib = (c_int * 6)(CTL_NET, PF_LINK, NETLINK_GENERIC, IFMIB_IFDATA, row, IFDATA_GENERAL)
    data = IfMibData()
    size = c_size_t(ctypes.sizeof(data))
    result = libc.sysctl(mib, 6, byref(data), byref(size), None, 0)
    return data if result == 0 else None
