"""
On-disk cluster topology: per-node membership files, the master membership
file and the shared security material
"""
import logging
import re
import shutil
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Tuple, Union

from ..errors import MissingClusterState
from ..models import NodeDescriptor, SharedSecrets, node_name
from ..utils.properties import read_properties

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

MEMBERSHIP_FILE = "cluster.conf"
SECRETS_FILE = "share.properties"
NODE_DIR_PATTERN = re.compile(r'^(\d+)-v(.+)$')

TOKEN_SECRET_KEY = "nacos.core.auth.plugin.nacos.token.secret.key"
IDENTITY_KEY_KEY = "nacos.core.auth.server.identity.key"
IDENTITY_VALUE_KEY = "nacos.core.auth.server.identity.value"
ADMIN_PASSWORD_KEY = "admin.password"


def membership_file(node_dir: PathLike) -> Path:
    return Path(node_dir) / "conf" / MEMBERSHIP_FILE


def member_address(ip: str, port: int) -> str:
    return f"{ip}:{port}"


def _read_lines(path: Path) -> List[str]:
    if not path.is_file():
        return []
    return [line.strip() for line in path.read_text().splitlines() if line.strip()]


def _write_lines(path: Path, lines: Iterable[str]) -> None:
    lines = list(lines)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(''.join(f"{line}\n" for line in lines))


def _append_line(path: Path, line: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    existing = path.read_text() if path.is_file() else ''
    with open(path, 'a') as f:
        if existing and not existing.endswith('\n'):
            f.write('\n')
        f.write(f"{line}\n")


def _without_port(lines: Iterable[str], port: int) -> List[str]:
    suffix = f":{port}"
    return [line for line in lines if not line.endswith(suffix)]


class ClusterTopologyStore:
    """Reads and mutates the membership and secrets files of one cluster directory"""

    def __init__(self, cluster_dir: PathLike):
        self.cluster_dir = Path(cluster_dir)

    @property
    def master_file(self) -> Path:
        return self.cluster_dir / MEMBERSHIP_FILE

    @property
    def secrets_file(self) -> Path:
        return self.cluster_dir / SECRETS_FILE

    def node_dir(self, index: int, version: str) -> Path:
        return self.cluster_dir / node_name(index, version)

    # Per-node membership

    def write_node_membership(self, node_dir: PathLike, members: Iterable[str]) -> None:
        """Overwrite the node's membership file with exactly members, one per line"""
        _write_lines(membership_file(node_dir), members)

    def append_member_to_all(self, node_dirs: Iterable[PathLike], member: str) -> None:
        """Append member to each node's file; existing lines are never rewritten"""
        for node_dir in node_dirs:
            _append_line(membership_file(node_dir), member)

    def remove_member_everywhere(self, node_dirs: Iterable[PathLike], port: int) -> None:
        for node_dir in node_dirs:
            path = membership_file(node_dir)
            if not path.is_file():
                continue
            _write_lines(path, _without_port(_read_lines(path), port))

    def read_membership(self, node_dir: PathLike) -> List[str]:
        return _read_lines(membership_file(node_dir))

    # Master membership (informational copy of the full member list)

    def write_master(self, members: Iterable[str]) -> None:
        self.cluster_dir.mkdir(parents=True, exist_ok=True)
        _write_lines(self.master_file, members)

    def append_master(self, member: str) -> None:
        _append_line(self.master_file, member)

    def read_master(self) -> List[str]:
        return _read_lines(self.master_file)

    def remove_from_master(self, port: int) -> None:
        if self.master_file.is_file():
            _write_lines(self.master_file, _without_port(self.read_master(), port))

    def master_ports(self) -> List[int]:
        ports = []
        for line in self.read_master():
            _, _, port = line.rpartition(':')
            if port.isdigit():
                ports.append(int(port))
        return ports

    # Shared secrets

    def persist_shared_secrets(self, secrets: SharedSecrets) -> Path:
        self.cluster_dir.mkdir(parents=True, exist_ok=True)
        content = (
            "# Nacos Cluster Shared Security Configuration\n"
            f"# Auto-generated on {datetime.now().isoformat(timespec='seconds')}\n"
            "# DO NOT modify these values unless you update ALL cluster nodes\n"
            "\n"
            f"{TOKEN_SECRET_KEY}={secrets.token_secret}\n"
            f"{IDENTITY_KEY_KEY}={secrets.identity_key}\n"
            f"{IDENTITY_VALUE_KEY}={secrets.identity_value}\n"
            "\n"
            "# Stored for reference only; the password itself is set through the admin API\n"
            f"{ADMIN_PASSWORD_KEY}={secrets.admin_password}\n"
        )
        self.secrets_file.write_text(content)
        logger.info(f"Security configuration saved to: {self.secrets_file}")
        return self.secrets_file

    def load_shared_secrets(self) -> SharedSecrets:
        if not self.secrets_file.is_file():
            raise MissingClusterState(
                f"Cluster config not found: {self.secrets_file}",
                hint="The cluster must be created before nodes can join it",
            )
        values = read_properties(self.secrets_file)
        return SharedSecrets(
            token_secret=values.get(TOKEN_SECRET_KEY, ''),
            identity_key=values.get(IDENTITY_KEY_KEY, ''),
            identity_value=values.get(IDENTITY_VALUE_KEY, ''),
            admin_password=values.get(ADMIN_PASSWORD_KEY, ''),
        )

    # Node directories

    def list_nodes(self) -> List[NodeDescriptor]:
        """Provisioned node directories, ordered by index"""
        if not self.cluster_dir.is_dir():
            return []
        found: List[Tuple[int, NodeDescriptor]] = []
        for entry in self.cluster_dir.iterdir():
            match = NODE_DIR_PATTERN.match(entry.name)
            if entry.is_dir() and match:
                index = int(match.group(1))
                found.append((index, NodeDescriptor(index=index, version=match.group(2), directory=entry)))
        return [node for _, node in sorted(found, key=lambda item: item[0])]

    def has_nodes(self) -> bool:
        return bool(self.list_nodes())

    def clean(self) -> int:
        """Remove every node directory plus the master and secrets files; returns nodes removed"""
        nodes = self.list_nodes()
        for node in nodes:
            logger.info(f"Removing {node.name}")
            shutil.rmtree(node.directory, ignore_errors=True)
        for path in (self.master_file, self.secrets_file):
            if path.exists():
                path.unlink()
        logger.info(f"Cleaned {len(nodes)} nodes")
        return len(nodes)
