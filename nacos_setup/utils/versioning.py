"""
Version string helpers
"""
from typing import List

from ..models import major_version

MINIMUM_NACOS_VERSION = "2.4.0"


def _components(version: str) -> List[int]:
    parts = []
    for piece in str(version).split('.')[:3]:
        digits = ''.join(ch for ch in piece if ch.isdigit())
        parts.append(int(digits) if digits else 0)
    while len(parts) < 3:
        parts.append(0)
    return parts


def version_ge(v1: str, v2: str) -> bool:
    """True if v1 >= v2, comparing major.minor.patch numerically"""
    return _components(v1) >= _components(v2)


def is_supported_version(version: str) -> bool:
    return version_ge(version, MINIMUM_NACOS_VERSION)


__all__ = ['MINIMUM_NACOS_VERSION', 'major_version', 'version_ge', 'is_supported_version']
