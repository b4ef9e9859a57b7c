"""
SvcHarness Address Allocation

Derives the loopback address a run binds its service to from the harness
pid, so concurrent runs on one host very likely get distinct addresses
without any coordination between them.
"""

from svcharness.models import BindAddress

# Private block inside 127.0.0.0/8; every address in it is loopback on Linux.
LOOPBACK_PREFIX = "127.1"


def allocate_address(pid: int) -> BindAddress:
    """
    Map a process id to an address in 127.1.0.0/16.

    The low two octets are the pid's low two bytes, so pids that differ in
    their low 16 bits always map to different addresses.
    """
    high = (pid >> 8) & 255
    low = pid & 255
    return BindAddress(f"{LOOPBACK_PREFIX}.{high}.{low}")
