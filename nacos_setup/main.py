"""
Main entry point for Nacos Setup
"""
from typing import Optional

from .cluster_orchestrator import ClusterOrchestrator, StandaloneRunner
from .models import ClusterOptions, OperationResult, StandaloneOptions


class NacosSetup:
    """Facade over the four outward operations: standalone run, create, join, leave"""

    def __init__(self, orchestrator: Optional[ClusterOrchestrator] = None,
                 standalone_runner: Optional[StandaloneRunner] = None):
        self.orchestrator = orchestrator or ClusterOrchestrator()
        self.standalone_runner = standalone_runner or StandaloneRunner(
            package_manager=self.orchestrator.package_manager,
            probe=self.orchestrator.probe,
            lifecycle=self.orchestrator.lifecycle,
            allocator=self.orchestrator.allocator,
        )

    def run_standalone(self, options: StandaloneOptions) -> OperationResult:
        return self.standalone_runner.run(options)

    def create_cluster(self, options: ClusterOptions) -> OperationResult:
        return self.orchestrator.create_cluster(options)

    def join_cluster(self, options: ClusterOptions) -> OperationResult:
        return self.orchestrator.join_cluster(options)

    def leave_cluster(self, options: ClusterOptions) -> OperationResult:
        """
        Remove one node (options.leave_index) from the cluster.
        """
        return self.orchestrator.leave_cluster(options)
