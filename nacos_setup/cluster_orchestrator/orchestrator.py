import logging
import shutil
import signal
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional

from ..errors import ClusterAlreadyExists, MissingClusterState, NacosSetupError
from ..interfaces import IPackageManager, IPortProbe
from ..models import (
    DEFAULT_ADMIN_USER,
    ClusterOptions,
    ClusterState,
    NodeDescriptor,
    OperationResult,
    PortSet,
    ProcessHandle,
    SharedSecrets,
    major_version,
)
from ..port_manager import PortAllocator, PortProbe
from ..utils.credentials import generate_shared_secrets
from ..utils.java import find_java_runtime, required_java_version
from ..utils.network import get_local_ip
from ..utils.package import PackageManager
from .lifecycle import NodeLifecycle
from .node_config import (
    GLOBAL_DATASOURCE_CONFIG,
    apply_datasource_config,
    apply_security_config,
    configure_embedded_storage,
    load_datasource_config,
    read_main_port,
    read_port_set,
    update_port_config,
)
from .topology import ClusterTopologyStore, member_address

logging.basicConfig(format='%(levelname)-5s | %(filename)s:%(lineno)-3d | %(message)s', level=logging.INFO, force=True)
logger = logging.getLogger(__name__)

MONITOR_INTERVAL = 5.0
LEAVE_STOP_TIMEOUT = 3


@dataclass
class ClusterRunContext:
    """Mutable state of one create/join/standalone invocation"""
    state: Optional[ClusterState] = None
    detach: bool = False
    started: List[ProcessHandle] = field(default_factory=list)
    teardown_done: bool = False
    local_ip: str = "127.0.0.1"
    use_embedded_db: bool = True
    datasource_file: Optional[Path] = None

    def owned_handles(self) -> List[ProcessHandle]:
        """Handles started by this invocation, including a node caught mid-startup"""
        handles = list(self.started)
        if self.state is not None:
            for node in self.state.nodes:
                handle = node.process_handle
                if handle is not None and all(handle is not known for known in handles):
                    handles.append(handle)
        return handles


class TeardownGuard:
    """
    Stops every process the invocation started when the guarded block exits.

    Runs on normal return, on exceptions (including KeyboardInterrupt) and on
    SIGTERM, which is turned into SystemExit while the guard is armed. The
    stop-all action happens at most once per context and never in detach mode.
    """

    def __init__(self, context: ClusterRunContext, lifecycle: NodeLifecycle, label: str = "cluster nodes"):
        self.context = context
        self.lifecycle = lifecycle
        self.label = label
        self._previous_handler = None
        self._installed = False

    def __enter__(self) -> 'TeardownGuard':
        if threading.current_thread() is threading.main_thread():
            self._previous_handler = signal.signal(signal.SIGTERM, self._on_sigterm)
            self._installed = True
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if self._installed:
            signal.signal(signal.SIGTERM, self._previous_handler)
            self._installed = False
        self.teardown()
        return False

    @staticmethod
    def _on_sigterm(signum, frame):
        raise SystemExit(128 + signum)

    def teardown(self) -> int:
        """Stop all owned processes; returns how many were stopped"""
        context = self.context
        if context.teardown_done:
            return 0
        context.teardown_done = True

        if context.detach:
            return 0

        handles = context.owned_handles()
        if not handles:
            return 0

        running = [handle for handle in handles if self.lifecycle.is_running(handle)]
        if not running:
            logger.info(f"No running {self.label} to stop")
            return 0

        owners = {}
        if context.state is not None:
            owners = {id(node.process_handle): node for node in context.state.nodes
                      if node.process_handle is not None}

        print()
        logger.info(f"Stopping {self.label}...")
        stopped = []
        for handle in running:
            node = owners.get(id(handle))
            ok = self.lifecycle.stop_node(node) if node is not None else self.lifecycle.stop(handle)
            if ok:
                stopped.append(str(handle.pid))
            else:
                logger.warning(f"Failed to stop PID {handle.pid}")
        logger.info(f"Stopped {len(stopped)} node(s): {' '.join(stopped)}")
        return len(stopped)


def describe_ports(ports: PortSet, version: str) -> str:
    text = f"Server: {ports.main}"
    if major_version(version) >= 3:
        text += f" | Console: {ports.console}"
    return text + f" | gRPC: {ports.grpc_client},{ports.grpc_server} | Raft: {ports.raft}"


def console_url(host: str, ports: PortSet, version: str) -> str:
    if major_version(version) >= 3:
        return f"http://{host}:{ports.console}/index.html"
    return f"http://{host}:{ports.main}/nacos/index.html"


class ClusterOrchestrator:
    """Create, join, leave and clean local Nacos clusters"""

    def __init__(self,
                 package_manager: Optional[IPackageManager] = None,
                 probe: Optional[IPortProbe] = None,
                 lifecycle: Optional[NodeLifecycle] = None,
                 allocator: Optional[PortAllocator] = None,
                 java_finder: Optional[Callable] = find_java_runtime,
                 local_ip_resolver: Callable[[], str] = get_local_ip,
                 sleep: Callable[[float], None] = time.sleep,
                 monitor_interval: float = MONITOR_INTERVAL,
                 global_datasource_file: str = GLOBAL_DATASOURCE_CONFIG):
        self.package_manager = package_manager or PackageManager()
        self.probe = probe or PortProbe()
        self.lifecycle = lifecycle or NodeLifecycle(probe=self.probe)
        self.allocator = allocator or PortAllocator(self.probe, process_stopper=self.lifecycle.stop_pid)
        self.java_finder = java_finder
        self.local_ip_resolver = local_ip_resolver
        self.sleep = sleep
        self.monitor_interval = monitor_interval
        self.global_datasource_file = global_datasource_file

    # Public operations

    def create_cluster(self, options: ClusterOptions) -> OperationResult:
        try:
            return self._create(options)
        except NacosSetupError as e:
            return self._failure(e, options)

    def join_cluster(self, options: ClusterOptions) -> OperationResult:
        try:
            return self._join(options)
        except NacosSetupError as e:
            return self._failure(e, options)

    def leave_cluster(self, options: ClusterOptions) -> OperationResult:
        try:
            return self._leave(options)
        except NacosSetupError as e:
            return self._failure(e, options)

    def _failure(self, error: NacosSetupError, options: ClusterOptions) -> OperationResult:
        logger.error(error.message)
        return OperationResult(exit_code=1, cluster_dir=options.cluster_dir,
                               error=error.message, error_category=error.category.value,
                               hint=error.hint)

    # Shared steps

    def _prepare_java(self, version: str) -> None:
        if self.java_finder is None:
            return
        self.lifecycle.java = self.java_finder(required_java_version(version))

    def _resolve_datasource(self, context: ClusterRunContext, datasource_file: Optional[str]) -> None:
        context.datasource_file = load_datasource_config(datasource_file, self.global_datasource_file)
        context.use_embedded_db = context.datasource_file is None
        if context.use_embedded_db:
            logger.info("Using embedded Derby database")
        else:
            logger.info(f"Using external database: {context.datasource_file}")

    def _provision_node(self, store: ClusterTopologyStore, archive: Path, index: int, version: str,
                        ports: PortSet, secrets: SharedSecrets, context: ClusterRunContext) -> NodeDescriptor:
        """Extract a node directory and write its port, security and datasource settings"""
        node = NodeDescriptor(index=index, version=version, directory=store.node_dir(index, version), ports=ports)
        logger.info(f"Configuring node {index}...")
        self.package_manager.extract_to(archive, store.cluster_dir, node.name)

        config_file = node.config_file
        if config_file.is_file():
            shutil.copy2(config_file, config_file.with_name(config_file.name + ".original"))
        update_port_config(config_file, ports, version)
        apply_security_config(config_file, secrets)
        if context.datasource_file is not None:
            apply_datasource_config(config_file, context.datasource_file)
        else:
            configure_embedded_storage(config_file)

        logger.info(f"  {describe_ports(ports, version)}")
        return node

    def clean_cluster(self, store: ClusterTopologyStore) -> int:
        """Stop any running node of the cluster and remove its on-disk state"""
        logger.info("Cleaning existing cluster nodes...")
        for node in store.list_nodes():
            pid = self.lifecycle.find_node_process(node.directory)
            if pid:
                logger.info(f"Stopping {node.name} (PID: {pid})")
                node.process_handle = ProcessHandle(pid=pid)
                self.lifecycle.stop_node(node, timeout=LEAVE_STOP_TIMEOUT)
        return store.clean()

    def _start_sequentially(self, store: ClusterTopologyStore, context: ClusterRunContext,
                            ready_timeout: int) -> None:
        """
        Start nodes one at a time in index order.

        Each node is started only after the previous one is ready; once it is up its
        address is appended to the membership file of every node started before it.
        """
        state = context.state
        logger.info("Starting cluster nodes (sequential start)...")
        for position, node in enumerate(state.nodes):
            handle = self.lifecycle.start_node(node, 'cluster', context.use_embedded_db, ready_timeout)
            context.started.append(handle)

            previous = [earlier.directory for earlier in state.nodes[:position]]
            if previous:
                logger.info(f"Updating cluster.conf in previous nodes to include node {node.index}...")
                store.append_member_to_all(previous, member_address(context.local_ip, node.ports.main))
        logger.info("All nodes started successfully!")

    def monitor_nodes(self, context: ClusterRunContext) -> int:
        """Block while at least one started node is alive; returns 1 once all have exited"""
        handles = list(context.started)
        logger.info("Verifying cluster nodes...")
        missing = [handle for handle in handles if not self.lifecycle.is_running(handle)]
        for handle in missing:
            logger.warning(f"Node (PID: {handle.pid}) is not running")
        if missing or not handles:
            logger.error("Some nodes failed verification, exiting...")
            return 1

        logger.info(f"All {len(handles)} nodes verified, monitoring...")
        reported = set()
        while True:
            self.sleep(self.monitor_interval)
            running = [handle for handle in handles if self.lifecycle.is_running(handle)]
            newly_stopped = [handle for handle in handles
                             if handle not in running and handle.pid not in reported]
            if newly_stopped:
                print()
                logger.warning("Detected stopped node(s):")
                for handle in newly_stopped:
                    logger.warning(f"  - PID {handle.pid}")
                    reported.add(handle.pid)
                logger.info(f"Cluster status: {len(running)}/{len(handles)} nodes running")

            if not running:
                print()
                logger.error("All cluster nodes have stopped")
                return 1

    def print_cluster_info(self, context: ClusterRunContext, secrets: SharedSecrets) -> None:
        state = context.state
        print()
        print("=" * 80)
        print("Cluster Started Successfully!")
        print("=" * 80)
        print()
        print(f"Cluster ID: {state.cluster_id}")
        print(f"Nodes: {len(context.started)}")
        print()
        print("Node endpoints:")
        for node in state.nodes:
            print(f"  Node {node.index}: {console_url(context.local_ip, node.ports, state.version)}")
        if secrets.admin_password:
            print()
            print("Login credentials:")
            print(f"  Username: {DEFAULT_ADMIN_USER}")
            print(f"  Password: {secrets.admin_password}")
        print()
        print("=" * 80)

    # Create

    def _create(self, options: ClusterOptions) -> OperationResult:
        store = ClusterTopologyStore(options.cluster_dir)
        if store.has_nodes():
            if not options.clean:
                raise ClusterAlreadyExists(options.cluster_id)
            logger.warning("Cleaning existing cluster...")
            self.clean_cluster(store)

        options.cluster_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Cluster ID: {options.cluster_id}")
        logger.info(f"Nacos version: {options.version}")
        logger.info(f"Replica count: {options.node_count}")
        logger.info(f"Cluster directory: {options.cluster_dir}")

        self._prepare_java(options.version)
        archive = self.package_manager.fetch(options.version)

        secrets = generate_shared_secrets("nacos_cluster")
        store.persist_shared_secrets(secrets)

        state = ClusterState(cluster_id=options.cluster_id, version=options.version,
                             cluster_dir=options.cluster_dir, shared_secrets=secrets)
        context = ClusterRunContext(state=state, detach=options.detach)

        with TeardownGuard(context, self.lifecycle):
            self._resolve_datasource(context, options.datasource_file)

            logger.info(f"Allocating ports for {options.node_count} nodes...")
            layout = self.allocator.allocate_cluster(options.base_port, options.node_count,
                                                     major_version(options.version))
            context.local_ip = self.local_ip_resolver()
            logger.info(f"Local IP: {context.local_ip}")
            members = [member_address(context.local_ip, ports.main) for ports in layout]

            for index, ports in enumerate(layout):
                node = self._provision_node(store, archive, index, options.version, ports, secrets, context)
                # Node i only knows nodes 0..i until it has been started
                store.write_node_membership(node.directory, members[:index + 1])
                state.nodes.append(node)

            store.write_master(members)
            logger.info("Final cluster configuration:")
            for member in members:
                logger.info(f"  {member}")

            result = OperationResult(exit_code=0, port_layout=layout, credentials=secrets,
                                     cluster_dir=options.cluster_dir)
            if not options.auto_start:
                logger.info("Cluster created (auto-start disabled)")
                logger.info("To start nodes manually, run startup.sh in each node directory")
                return result

            self._start_sequentially(store, context, options.ready_timeout)

            if not self.lifecycle.initialize_admin_password(layout[0], options.version, secrets.admin_password):
                logger.warning("Password initialization failed, you can change it manually after login")
            self.print_cluster_info(context, secrets)

            if options.detach:
                logger.info("Detach mode: nodes keep running after exit")
                return result

            logger.info("Press Ctrl+C to stop cluster")
            result.exit_code = self.monitor_nodes(context)
            return result

    # Join

    def _existing_port_sets(self, store: ClusterTopologyStore, nodes: List[NodeDescriptor]) -> List[PortSet]:
        recorded = []
        for node in nodes:
            ports = read_port_set(node.config_file, node.version)
            if ports is not None:
                node.ports = ports
                recorded.append(ports)
        known = {ports.main for ports in recorded}
        recorded.extend(PortSet(port) for port in store.master_ports() if port not in known)
        return recorded

    def _join(self, options: ClusterOptions) -> OperationResult:
        store = ClusterTopologyStore(options.cluster_dir)
        if not options.cluster_dir.is_dir():
            raise MissingClusterState(f"Cluster not found: {options.cluster_id}")
        existing = store.list_nodes()
        if not existing:
            raise MissingClusterState(f"No existing nodes found in cluster {options.cluster_id}")
        secrets = store.load_shared_secrets()

        new_index = max(node.index for node in existing) + 1
        logger.info(f"Existing nodes: {len(existing)}")
        logger.info(f"New node: {new_index}-v{options.version}")

        self._prepare_java(options.version)
        archive = self.package_manager.fetch(options.version)

        state = ClusterState(cluster_id=options.cluster_id, version=options.version,
                             cluster_dir=options.cluster_dir, shared_secrets=secrets)
        context = ClusterRunContext(state=state, detach=options.detach)

        with TeardownGuard(context, self.lifecycle, label="joined node"):
            self._resolve_datasource(context, options.datasource_file)
            existing_ports = self._existing_port_sets(store, existing)
            ports = self.allocator.allocate_join(existing_ports, new_index, major_version(options.version))
            logger.info(f"Ports: main={ports.main}, console={ports.console}")

            context.local_ip = self.local_ip_resolver()
            node = self._provision_node(store, archive, new_index, options.version, ports, secrets, context)
            new_member = member_address(context.local_ip, ports.main)

            current_members = store.read_master()
            if not current_members:
                current_members = [member_address(context.local_ip, p.main) for p in existing_ports]
                store.write_master(current_members)

            logger.info("Updating cluster.conf in existing nodes...")
            store.append_member_to_all([member.directory for member in existing], new_member)
            store.append_master(new_member)
            store.write_node_membership(node.directory, current_members + [new_member])
            state.nodes.append(node)

            result = OperationResult(exit_code=0, port_layout=[ports], credentials=secrets,
                                     cluster_dir=options.cluster_dir, node_index=new_index)
            if not options.auto_start:
                logger.info("Node provisioned (auto-start disabled)")
                return result

            handle = self.lifecycle.start_node(node, 'cluster', context.use_embedded_db, options.ready_timeout)
            context.started.append(handle)
            logger.info("Node joined successfully!")

            if options.detach:
                logger.info("Detach mode: node keeps running after exit")
                return result

            logger.info("Press Ctrl+C to stop node")
            result.exit_code = self.monitor_nodes(context)
            return result

    # Leave

    def _leave(self, options: ClusterOptions) -> OperationResult:
        store = ClusterTopologyStore(options.cluster_dir)
        if not options.cluster_dir.is_dir():
            raise MissingClusterState(f"Cluster not found: {options.cluster_id}")

        nodes = store.list_nodes()
        target = next((node for node in nodes if node.index == options.leave_index), None)
        if target is None:
            raise MissingClusterState(f"Node {options.leave_index} not found")
        logger.info(f"Removing node: {target.name}")

        port = read_main_port(target.config_file, target.version)
        if port is not None:
            remaining = [node.directory for node in nodes if node.index != target.index]
            store.remove_from_master(port)
            store.remove_member_everywhere(remaining, port)
        else:
            logger.warning(f"No port configured for {target.name}; membership files left unchanged")

        pid = self.lifecycle.find_node_process(target.directory)
        if pid:
            logger.info(f"Stopping node (PID: {pid})")
            target.process_handle = ProcessHandle(pid=pid)
            if not self.lifecycle.stop_node(target, timeout=LEAVE_STOP_TIMEOUT):
                logger.warning(f"Failed to stop node {target.name} (PID: {pid}), removing its directory anyway")

        shutil.rmtree(target.directory)
        logger.info("Node removed successfully")
        return OperationResult(exit_code=0, cluster_dir=options.cluster_dir, node_index=target.index)
