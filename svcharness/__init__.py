"""
SvcHarness: ephemeral-service test harness

Boots one instance of a network service on a private loopback address,
waits until it is protocol ready, runs an external test suite against it
and tears everything down exactly once.
"""

__version__ = "0.1.0"
__all__ = [
    "__version__",
]
