"""
Port Manager - local port probing and conflict-aware port allocation
"""
from .probe import PortProbe, ProbeStrategy, FailClosedStrategy
from .allocator import PortAllocator

__all__ = [
    'PortProbe',
    'ProbeStrategy',
    'FailClosedStrategy',
    'PortAllocator',
]
