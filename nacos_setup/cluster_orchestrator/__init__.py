"""
Cluster Orchestrator - node lifecycle, on-disk topology and the create/join/leave/standalone flows

Components:
- ClusterTopologyStore: membership files and shared secrets of one cluster
- NodeLifecycle: start, readiness-poll and stop of one node process
- ClusterOrchestrator: create, join, leave and clean
- StandaloneRunner: single-node install and run
- TeardownGuard: stops started processes on any exit path
"""
from .topology import ClusterTopologyStore
from .lifecycle import NodeLifecycle
from .orchestrator import ClusterOrchestrator, ClusterRunContext, TeardownGuard
from .standalone import StandaloneRunner

__all__ = [
    'ClusterTopologyStore',
    'NodeLifecycle',
    'ClusterOrchestrator',
    'ClusterRunContext',
    'TeardownGuard',
    'StandaloneRunner',
]
