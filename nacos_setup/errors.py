"""
Error taxonomy for Nacos Setup

Every failure the orchestrator can surface carries a category and,
where one exists, a remediation hint that the CLI prints under the message.
"""
from enum import Enum
from typing import Optional


class ErrorCategory(Enum):
    """Categories of errors for targeted handling"""
    PORT_ALLOCATION = "port_allocation"
    PORT_CONFLICT = "port_conflict"
    NODE_STARTUP = "node_startup"
    PASSWORD_INIT = "password_init"
    CLUSTER_STATE = "cluster_state"
    PROVISIONING = "provisioning"
    JAVA_RUNTIME = "java_runtime"
    PACKAGE = "package"
    CONFIGURATION = "configuration"


class NacosSetupError(Exception):
    """Base class for all errors raised by Nacos Setup"""
    category = ErrorCategory.CONFIGURATION

    def __init__(self, message: str, hint: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.hint = hint


class AllocationExhausted(NacosSetupError):
    """No free port (set) below the search ceiling"""
    category = ErrorCategory.PORT_ALLOCATION

    def __init__(self, start: int, ceiling: int, what: str = "port"):
        super().__init__(
            f"No available {what} found in range {start}-{ceiling - 1}",
            hint="Free some ports or choose a different base port with -p",
        )
        self.start = start
        self.ceiling = ceiling


class PortConflict(NacosSetupError):
    """Requested port is held by a process we may not (or could not) stop"""
    category = ErrorCategory.PORT_CONFLICT

    def __init__(self, port: int, message: Optional[str] = None, hint: Optional[str] = None):
        super().__init__(
            message or f"Port {port} unavailable",
            hint=hint or "Use -p to specify a different port, or --kill to stop an existing Nacos on it",
        )
        self.port = port


class NodeStartError(NacosSetupError):
    """Launcher ran but no server process could be found"""
    category = ErrorCategory.NODE_STARTUP


class StartupTimeout(NacosSetupError):
    """Node process did not become ready in time"""
    category = ErrorCategory.NODE_STARTUP

    def __init__(self, node_name: str, timeout: float):
        super().__init__(
            f"Node {node_name} startup timeout after {timeout:.0f}s",
            hint="Check the node's logs/start.out for startup errors",
        )
        self.node_name = node_name
        self.timeout = timeout


class PasswordInitFailed(NacosSetupError):
    """Admin password could not be set; the default credentials stay valid"""
    category = ErrorCategory.PASSWORD_INIT


class MissingClusterState(NacosSetupError):
    """Cluster, node or shared secrets not found on disk"""
    category = ErrorCategory.CLUSTER_STATE


class ClusterAlreadyExists(NacosSetupError):
    category = ErrorCategory.CLUSTER_STATE

    def __init__(self, cluster_id: str):
        super().__init__(
            f"Cluster '{cluster_id}' already exists",
            hint="Use --clean to recreate",
        )
        self.cluster_id = cluster_id


class ProvisioningError(NacosSetupError):
    """Node directory or its configuration could not be prepared"""
    category = ErrorCategory.PROVISIONING


class JavaRuntimeError(NacosSetupError):
    category = ErrorCategory.JAVA_RUNTIME


class PackageError(NacosSetupError):
    """Server package download, verification or extraction failed"""
    category = ErrorCategory.PACKAGE
