"""
Core data models for Nacos Setup
"""
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

DEFAULT_VERSION = "3.1.1"
DEFAULT_PORT = 8848
DEFAULT_NODE_COUNT = 3
DEFAULT_BASE_DIR = os.path.join(os.path.expanduser("~"), "ai-infra", "nacos")
DEFAULT_ADMIN_USER = "nacos"
DEFAULT_ADMIN_PASSWORD = "nacos"

GRPC_CLIENT_OFFSET = 1000
GRPC_SERVER_OFFSET = 1001
RAFT_OFFSET = -1000


def major_version(version: str) -> int:
    """Major component of a dotted version string ("3.1.1" -> 3)"""
    head = str(version).strip().split('.')[0]
    try:
        return int(head)
    except ValueError:
        raise ValueError(f"Invalid version string: {version}")


@dataclass
class PortSet:
    """Ports used by one server node; everything except the console port is derived from main"""
    main: int
    console: Optional[int] = None

    @property
    def grpc_client(self) -> int:
        return self.main + GRPC_CLIENT_OFFSET

    @property
    def grpc_server(self) -> int:
        return self.main + GRPC_SERVER_OFFSET

    @property
    def raft(self) -> int:
        return self.main + RAFT_OFFSET

    def derived_ports(self) -> List[int]:
        """Main port plus the three fixed-offset ports"""
        return [self.main, self.grpc_client, self.grpc_server, self.raft]

    def all_ports(self) -> List[int]:
        ports = self.derived_ports()
        if self.console:
            ports.append(self.console)
        return ports

    def to_dict(self) -> Dict[str, int]:
        data = {
            'main': self.main,
            'grpc_client': self.grpc_client,
            'grpc_server': self.grpc_server,
            'raft': self.raft,
        }
        if self.console:
            data['console'] = self.console
        return data


class NodeState(Enum):
    """Lifecycle states of a single node"""
    PROVISIONED = "provisioned"
    STARTING = "starting"
    READY = "ready"
    STOPPING = "stopping"
    STOPPED = "stopped"
    FAILED_TO_START = "failed_to_start"


@dataclass
class ProcessHandle:
    """OS process of a started node; only NodeLifecycle acts on it"""
    pid: int
    stopped: bool = False


@dataclass
class SharedSecrets:
    """Security material shared by every node of one cluster"""
    token_secret: str
    identity_key: str
    identity_value: str
    admin_password: str = ""


@dataclass
class NodeDescriptor:
    """A provisioned cluster node"""
    index: int
    version: str
    directory: Path
    ports: Optional[PortSet] = None
    process_handle: Optional[ProcessHandle] = None
    state: NodeState = NodeState.PROVISIONED

    @property
    def name(self) -> str:
        return node_name(self.index, self.version)

    @property
    def config_file(self) -> Path:
        return Path(self.directory) / "conf" / "application.properties"


def node_name(index: int, version: str) -> str:
    return f"{index}-v{version}"


@dataclass
class ClusterState:
    """On-disk cluster plus the nodes known to this invocation"""
    cluster_id: str
    version: str
    cluster_dir: Path
    nodes: List[NodeDescriptor] = field(default_factory=list)
    shared_secrets: Optional[SharedSecrets] = None


@dataclass
class StandaloneInstall:
    """Single-node installation"""
    version: str
    install_dir: Path
    ports: Optional[PortSet] = None
    secrets: Optional[SharedSecrets] = None
    process_handle: Optional[ProcessHandle] = None


@dataclass
class ClusterOptions:
    """Validated options for the cluster operations"""
    cluster_id: str
    version: str = DEFAULT_VERSION
    node_count: int = DEFAULT_NODE_COUNT
    base_port: int = DEFAULT_PORT
    auto_start: bool = True
    detach: bool = False
    clean: bool = False
    leave_index: Optional[int] = None
    base_dir: str = DEFAULT_BASE_DIR
    datasource_file: Optional[str] = None
    ready_timeout: int = 60

    @property
    def cluster_dir(self) -> Path:
        return Path(self.base_dir) / "cluster" / self.cluster_id


@dataclass
class StandaloneOptions:
    """Validated options for a standalone run"""
    version: str = DEFAULT_VERSION
    port: int = DEFAULT_PORT
    install_dir: Optional[str] = None
    advanced_mode: bool = False
    auto_start: bool = True
    detach: bool = False
    allow_kill: bool = False
    base_dir: str = DEFAULT_BASE_DIR
    datasource_file: Optional[str] = None
    ready_timeout: int = 60

    def resolve_install_dir(self) -> Path:
        if self.install_dir:
            return Path(self.install_dir)
        return Path(self.base_dir) / "standalone" / f"nacos-{self.version}"


@dataclass
class OperationResult:
    """Exit disposition of one orchestrator operation"""
    exit_code: int
    port_layout: List[PortSet] = field(default_factory=list)
    credentials: Optional[SharedSecrets] = None
    cluster_dir: Optional[Path] = None
    install_dir: Optional[Path] = None
    node_index: Optional[int] = None
    error: Optional[str] = None
    error_category: Optional[str] = None
    hint: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.exit_code == 0
