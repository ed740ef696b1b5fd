"""IOKit interface for macOS GPU and thermal metrics.

Reads straight from IORegistry and the HID event system via ctypes:
- Per-process GPU time via AGXDeviceUserClient entries in IORegistry
- Device GPU utilization via IOAccelerator PerformanceStatistics
- CPU/GPU die temperatures via IOHID temperature services

Readers return empty results or -1 when a value is unavailable.
"""

import ctypes
import math
import re
from collections.abc import Iterable, Iterator
from ctypes import POINTER, byref, c_double, c_int, c_int32, c_int64, c_uint32, c_void_p

# ─────────────────────────────────────────────────────────────────────────────
# Library loading
# ─────────────────────────────────────────────────────────────────────────────

try:
    _iokit = ctypes.CDLL("/System/Library/Frameworks/IOKit.framework/IOKit", use_errno=True)
    _cf = ctypes.CDLL(
        "/System/Library/Frameworks/CoreFoundation.framework/CoreFoundation",
        use_errno=True,
    )
    _IOKIT_AVAILABLE = True
except OSError:
    _IOKIT_AVAILABLE = False
    _iokit = None
    _cf = None


# ─────────────────────────────────────────────────────────────────────────────
# Constants
# ─────────────────────────────────────────────────────────────────────────────

kIOMainPortDefault = 0
kCFStringEncodingUTF8 = 0x08000100
kCFNumberSInt64Type = 4

# IOHID temperature services (vendor usage page 0xff00, usage 5)
kHIDPage_AppleVendor = 0xFF00
kHIDUsage_AppleVendor_TemperatureSensor = 5
kIOHIDEventTypeTemperature = 15
kIOHIDEventSystemClientTypeMonitor = 1

CPU_SENSOR_TAG = "PMU tdie"
GPU_SENSOR_TAG = "PMU tdev"

UNAVAILABLE = -1


# ─────────────────────────────────────────────────────────────────────────────
# Type aliases for readability
# ─────────────────────────────────────────────────────────────────────────────

mach_port_t = c_uint32
io_iterator_t = c_uint32
io_object_t = c_uint32
io_registry_entry_t = c_uint32
CFTypeRef = c_void_p
CFStringRef = c_void_p
CFDictionaryRef = c_void_p
CFArrayRef = c_void_p
CFNumberRef = c_void_p
CFIndex = ctypes.c_long


# ─────────────────────────────────────────────────────────────────────────────
# Function signatures
# ─────────────────────────────────────────────────────────────────────────────

if _IOKIT_AVAILABLE and _iokit and _cf:
    _iokit.IOServiceGetMatchingServices.argtypes = [
        mach_port_t,
        CFDictionaryRef,
        POINTER(io_iterator_t),
    ]
    _iokit.IOServiceGetMatchingServices.restype = c_int

    _iokit.IOServiceMatching.argtypes = [ctypes.c_char_p]
    _iokit.IOServiceMatching.restype = CFDictionaryRef

    _iokit.IOIteratorNext.argtypes = [io_iterator_t]
    _iokit.IOIteratorNext.restype = io_object_t

    _iokit.IOObjectRelease.argtypes = [io_object_t]
    _iokit.IOObjectRelease.restype = c_int

    _iokit.IORegistryEntryCreateCFProperty.argtypes = [
        io_registry_entry_t,
        CFStringRef,
        c_void_p,  # CFAllocatorRef
        c_uint32,  # IOOptionBits
    ]
    _iokit.IORegistryEntryCreateCFProperty.restype = CFTypeRef

    _iokit.IORegistryEntryGetChildIterator.argtypes = [
        io_registry_entry_t,
        ctypes.c_char_p,  # plane name
        POINTER(io_iterator_t),
    ]
    _iokit.IORegistryEntryGetChildIterator.restype = c_int

    _iokit.IOObjectGetClass.argtypes = [io_object_t, ctypes.c_char_p]
    _iokit.IOObjectGetClass.restype = c_int

    # IOHID event system (private but exported)
    _iokit.IOHIDEventSystemClientCreateWithType.argtypes = [c_void_p, c_int, CFDictionaryRef]
    _iokit.IOHIDEventSystemClientCreateWithType.restype = c_void_p

    _iokit.IOHIDEventSystemClientCopyServices.argtypes = [c_void_p]
    _iokit.IOHIDEventSystemClientCopyServices.restype = CFArrayRef

    _iokit.IOHIDServiceClientConformsTo.argtypes = [c_void_p, c_uint32, c_uint32]
    _iokit.IOHIDServiceClientConformsTo.restype = ctypes.c_bool

    _iokit.IOHIDServiceClientCopyProperty.argtypes = [c_void_p, CFStringRef]
    _iokit.IOHIDServiceClientCopyProperty.restype = CFTypeRef

    _iokit.IOHIDServiceClientCopyEvent.argtypes = [c_void_p, c_int32, c_int64, c_uint32]
    _iokit.IOHIDServiceClientCopyEvent.restype = c_void_p

    _iokit.IOHIDEventGetFloatValue.argtypes = [c_void_p, c_int32]
    _iokit.IOHIDEventGetFloatValue.restype = c_double

    # CoreFoundation functions
    _cf.CFStringCreateWithCString.argtypes = [c_void_p, ctypes.c_char_p, c_uint32]
    _cf.CFStringCreateWithCString.restype = CFStringRef

    _cf.CFStringGetCString.argtypes = [
        CFStringRef,
        ctypes.c_char_p,
        CFIndex,
        c_uint32,
    ]
    _cf.CFStringGetCString.restype = ctypes.c_bool

    _cf.CFStringGetLength.argtypes = [CFStringRef]
    _cf.CFStringGetLength.restype = CFIndex

    _cf.CFArrayGetCount.argtypes = [CFArrayRef]
    _cf.CFArrayGetCount.restype = CFIndex

    _cf.CFArrayGetValueAtIndex.argtypes = [CFArrayRef, CFIndex]
    _cf.CFArrayGetValueAtIndex.restype = c_void_p

    _cf.CFDictionaryGetValue.argtypes = [CFDictionaryRef, c_void_p]
    _cf.CFDictionaryGetValue.restype = c_void_p

    _cf.CFNumberGetValue.argtypes = [CFNumberRef, c_int, c_void_p]
    _cf.CFNumberGetValue.restype = ctypes.c_bool

    _cf.CFRelease.argtypes = [CFTypeRef]
    _cf.CFRelease.restype = None

    _cf.CFGetTypeID.argtypes = [CFTypeRef]
    _cf.CFGetTypeID.restype = ctypes.c_ulong

    _cf.CFStringGetTypeID.argtypes = []
    _cf.CFStringGetTypeID.restype = ctypes.c_ulong

    _cf.CFArrayGetTypeID.argtypes = []
    _cf.CFArrayGetTypeID.restype = ctypes.c_ulong

    _cf.CFDictionaryGetTypeID.argtypes = []
    _cf.CFDictionaryGetTypeID.restype = ctypes.c_ulong

    _cf.CFNumberGetTypeID.argtypes = []
    _cf.CFNumberGetTypeID.restype = ctypes.c_ulong


# ─────────────────────────────────────────────────────────────────────────────
# Helper functions
# ─────────────────────────────────────────────────────────────────────────────


def _cfstr(s: str) -> CFStringRef:
    """New CFString; the caller releases it."""
    return _cf.CFStringCreateWithCString(None, s.encode("utf-8"), kCFStringEncodingUTF8)


def _cfstr_to_str(cfstr: CFStringRef) -> str | None:
    """Decode a CFString, or None if ref is not one."""
    if not cfstr or not _is_cf_type(cfstr, _cf.CFStringGetTypeID):
        return None
    length = _cf.CFStringGetLength(cfstr)
    buf_size = length * 4 + 1  # worst-case UTF-8
    buf = ctypes.create_string_buffer(buf_size)
    if _cf.CFStringGetCString(cfstr, buf, buf_size, kCFStringEncodingUTF8):
        return buf.value.decode("utf-8")
    return None


def _cf_number_to_int(cfnum: CFNumberRef) -> int | None:
    """Read a CFNumber as int64, or None if ref is not one."""
    if not cfnum or not _is_cf_type(cfnum, _cf.CFNumberGetTypeID):
        return None
    value = ctypes.c_int64()
    if _cf.CFNumberGetValue(cfnum, kCFNumberSInt64Type, byref(value)):
        return value.value
    return None


def _is_cf_type(ref: CFTypeRef, type_id_fn) -> bool:
    """Check a CFTypeRef against a CF*GetTypeID function."""
    return _cf.CFGetTypeID(ref) == type_id_fn()


def _iterate(iterator: io_iterator_t) -> Iterator[int]:
    """Yield IOKit objects from an iterator, releasing each after use."""
    while True:
        obj = _iokit.IOIteratorNext(iterator)
        if not obj:
            return
        try:
            yield obj
        finally:
            _iokit.IOObjectRelease(obj)


def _matching_services(class_name: bytes) -> Iterator[int]:
    """Yield registered services matching an IOKit class name."""
    matching = _iokit.IOServiceMatching(class_name)
    if not matching:
        return
    iterator = io_iterator_t()
    # IOServiceMatching dict is consumed by IOServiceGetMatchingServices
    kr = _iokit.IOServiceGetMatchingServices(kIOMainPortDefault, matching, byref(iterator))
    if kr != 0:
        return
    try:
        yield from _iterate(iterator)
    finally:
        _iokit.IOObjectRelease(iterator)


def _children(entry: int) -> Iterator[int]:
    """Yield IOService-plane children of a registry entry."""
    child_iterator = io_iterator_t()
    kr = _iokit.IORegistryEntryGetChildIterator(entry, b"IOService", byref(child_iterator))
    if kr != 0 or not child_iterator.value:
        return
    try:
        yield from _iterate(child_iterator)
    finally:
        _iokit.IOObjectRelease(child_iterator)


def _copy_property(entry: int, key: str) -> CFTypeRef:
    """Copy a registry property; caller must CFRelease a non-null result."""
    cf_key = _cfstr(key)
    try:
        return _iokit.IORegistryEntryCreateCFProperty(entry, cf_key, None, 0)
    finally:
        _cf.CFRelease(cf_key)


# ─────────────────────────────────────────────────────────────────────────────
# Per-process GPU time
# ─────────────────────────────────────────────────────────────────────────────

# IOUserClientCreator reads like "pid 410, WindowServer"
_PID_PATTERN = re.compile(r"pid\s+(\d+)")


def _client_pid(client: int) -> int | None:
    """Extract the owning PID from an AGXDeviceUserClient entry."""
    creator_ref = _copy_property(client, "IOUserClientCreator")
    if not creator_ref:
        return None
    try:
        creator = _cfstr_to_str(creator_ref)
    finally:
        _cf.CFRelease(creator_ref)
    match = _PID_PATTERN.search(creator or "")
    return int(match.group(1)) if match else None


def _client_gpu_time(client: int, gpu_time_key: CFStringRef) -> int:
    """Sum accumulatedGPUTime over a user client's AppUsage array."""
    usage_ref = _copy_property(client, "AppUsage")
    if not usage_ref:
        return 0
    try:
        if not _is_cf_type(usage_ref, _cf.CFArrayGetTypeID):
            return 0
        total = 0
        for i in range(_cf.CFArrayGetCount(usage_ref)):
            usage_dict = _cf.CFArrayGetValueAtIndex(usage_ref, i)
            if not usage_dict or not _is_cf_type(usage_dict, _cf.CFDictionaryGetTypeID):
                continue
            gpu_time = _cf_number_to_int(_cf.CFDictionaryGetValue(usage_dict, gpu_time_key))
            if gpu_time is not None:
                total += gpu_time
        return total
    finally:
        _cf.CFRelease(usage_ref)


def get_gpu_usage() -> dict[int, int]:
    """Map PID to cumulative GPU nanoseconds for every GPU client process.

    Walks the AGXDeviceUserClient children of each AGXAccelerator. The
    owning PID comes from the client's creator string and the time from
    its AppUsage entries. Empty when IOKit is unavailable.
    """
    if not _IOKIT_AVAILABLE or not _iokit or not _cf:
        return {}

    result: dict[int, int] = {}
    gpu_time_key = _cfstr("accumulatedGPUTime")
    try:
        for accelerator in _matching_services(b"AGXAccelerator"):
            for child in _children(accelerator):
                classname = ctypes.create_string_buffer(128)
                _iokit.IOObjectGetClass(child, classname)
                if classname.value != b"AGXDeviceUserClient":
                    continue
                pid = _client_pid(child)
                if pid is None:
                    continue
                gpu_time = _client_gpu_time(child, gpu_time_key)
                if gpu_time > 0:
                    # One process may hold several GPU contexts
                    result[pid] = result.get(pid, 0) + gpu_time
    finally:
        _cf.CFRelease(gpu_time_key)
    return result


# ─────────────────────────────────────────────────────────────────────────────
# Device GPU utilization
# ─────────────────────────────────────────────────────────────────────────────

_UTILIZATION_KEYS = ("Device Utilization %", "Renderer Utilization %")


def get_gpu_utilization() -> int:
    """Return the highest device utilization across IOAccelerator services.

    Returns:
        Utilization percentage clamped to 0-100, or -1 if unavailable.
    """
    if not _IOKIT_AVAILABLE or not _iokit or not _cf:
        return UNAVAILABLE

    best = UNAVAILABLE
    keys = [_cfstr(k) for k in _UTILIZATION_KEYS]
    try:
        for service in _matching_services(b"IOAccelerator"):
            stats = _copy_property(service, "PerformanceStatistics")
            if not stats:
                continue
            try:
                if not _is_cf_type(stats, _cf.CFDictionaryGetTypeID):
                    continue
                for key in keys:
                    value = _cf_number_to_int(_cf.CFDictionaryGetValue(stats, key))
                    if value is not None:
                        best = max(best, value)
                        break
            finally:
                _cf.CFRelease(stats)
    finally:
        for key in keys:
            _cf.CFRelease(key)

    return max(0, min(100, best)) if best >= 0 else UNAVAILABLE


# ─────────────────────────────────────────────────────────────────────────────
# Temperatures
# ─────────────────────────────────────────────────────────────────────────────


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def summarize_temperatures(readings: Iterable[tuple[str, float]]) -> tuple[int, int]:
    """Reduce (product, celsius) sensor readings to (cpu_temp, gpu_temp).

    CPU temperature is the mean of all die sensors, GPU temperature the
    hottest device sensor. Non-finite or non-positive readings are ignored.
    Either value is -1 when no usable sensor was found.
    """
    cpu_sum = 0.0
    cpu_count = 0
    gpu_max = -1.0
    for product, temp in readings:
        if not math.isfinite(temp) or temp <= 0.0:
            continue
        if CPU_SENSOR_TAG in product:
            cpu_sum += temp
            cpu_count += 1
        if GPU_SENSOR_TAG in product:
            gpu_max = max(gpu_max, temp)

    cpu_temp = _round_half_up(cpu_sum / cpu_count) if cpu_count else UNAVAILABLE
    gpu_temp = _round_half_up(gpu_max) if gpu_max > 0.0 else UNAVAILABLE
    return cpu_temp, gpu_temp


class ThermalSensors:
    """IOHID temperature services.

    The event-system client and its service list are opened on first use
    and held until close().
    """

    def __init__(self) -> None:
        self._client: int | None = None
        self._services: int | None = None

    def _ensure_open(self) -> bool:
        if self._services:
            return True
        if not _IOKIT_AVAILABLE or not _iokit or not _cf:
            return False
        client = _iokit.IOHIDEventSystemClientCreateWithType(
            None, kIOHIDEventSystemClientTypeMonitor, None
        )
        if not client:
            return False
        services = _iokit.IOHIDEventSystemClientCopyServices(client)
        if not services:
            _cf.CFRelease(client)
            return False
        self._client = client
        self._services = services
        return True

    def _service_temperature(self, service: int) -> float:
        event = _iokit.IOHIDServiceClientCopyEvent(service, kIOHIDEventTypeTemperature, 0, 0)
        if not event:
            return -1.0
        try:
            return _iokit.IOHIDEventGetFloatValue(event, kIOHIDEventTypeTemperature << 16)
        finally:
            _cf.CFRelease(event)

    def _readings(self) -> Iterator[tuple[str, float]]:
        product_key = _cfstr("Product")
        try:
            for i in range(_cf.CFArrayGetCount(self._services)):
                service = _cf.CFArrayGetValueAtIndex(self._services, i)
                if not _iokit.IOHIDServiceClientConformsTo(
                    service, kHIDPage_AppleVendor, kHIDUsage_AppleVendor_TemperatureSensor
                ):
                    continue
                product_ref = _iokit.IOHIDServiceClientCopyProperty(service, product_key)
                if not product_ref:
                    continue
                try:
                    product = _cfstr_to_str(product_ref) or ""
                finally:
                    _cf.CFRelease(product_ref)
                if CPU_SENSOR_TAG in product or GPU_SENSOR_TAG in product:
                    yield product, self._service_temperature(service)
        finally:
            _cf.CFRelease(product_key)

    def read(self) -> tuple[int, int]:
        """Return (cpu_temp, gpu_temp) in whole degrees Celsius, -1 if unavailable."""
        if not self._ensure_open():
            return UNAVAILABLE, UNAVAILABLE
        return summarize_temperatures(self._readings())

    def close(self) -> None:
        """Release the event-system client and service list."""
        if self._services:
            _cf.CFRelease(self._services)
            self._services = None
        if self._client:
            _cf.CFRelease(self._client)
            self._client = None
