"""
Conflict-aware port assignment for standalone and cluster nodes

Every node owns a main port plus three ports derived from it (gRPC client and
server, Raft); Nacos 3.x nodes also get an independently chosen console port.
Searches always return the lowest free candidate at or above their start so the
layout is repeatable for identical inputs and host state.
"""
import logging
import time
from typing import Callable, Collection, Iterable, List, Optional, Set

from ..errors import AllocationExhausted, PortConflict
from ..interfaces import IPortProbe
from ..models import PortSet

logger = logging.getLogger(__name__)

PORT_CEILING = 65535
MAIN_PORT_CEILING = 64535
SIMPLIFIED_SEARCH_START = 18848
NODE_PORT_STRIDE = 10
CONSOLE_BASE = 8080
CONSOLE_FALLBACK_BASE = 18080
CONSOLE_MAX_ATTEMPTS = 10
KILL_SETTLE_SECONDS = 2.0


class PortAllocator:
    """Computes PortSets using a PortProbe; never binds anything itself"""

    def __init__(self, probe: IPortProbe,
                 process_stopper: Optional[Callable[[int], bool]] = None,
                 settle_interval: float = KILL_SETTLE_SECONDS,
                 sleep: Callable[[float], None] = time.sleep):
        self.probe = probe
        self.process_stopper = process_stopper
        self.settle_interval = settle_interval
        self.sleep = sleep

    def _is_free(self, port: int, claimed: Collection[int] = ()) -> bool:
        return port not in claimed and self.probe.is_port_free(port)

    def is_port_set_free(self, main: int, claimed: Collection[int] = ()) -> bool:
        """True if main and its three derived ports are all free and raft stays positive"""
        ports = PortSet(main)
        if ports.raft <= 0:
            return False
        return all(self._is_free(port, claimed) for port in ports.derived_ports())

    def find_available_port(self, start: int, ceiling: int = PORT_CEILING,
                            claimed: Collection[int] = ()) -> int:
        for port in range(max(start, 1), ceiling):
            if self._is_free(port, claimed):
                return port
        raise AllocationExhausted(start, ceiling)

    def find_available_port_set(self, start: int, claimed: Collection[int] = ()) -> int:
        """Lowest main port >= start whose full 4-port set is free"""
        for main in range(max(start, 1), MAIN_PORT_CEILING):
            if self.is_port_set_free(main, claimed):
                return main
        raise AllocationExhausted(start, MAIN_PORT_CEILING, what="port set")

    def handle_port_conflict(self, port: int, allow_kill: bool) -> bool:
        """
        Try to reclaim an occupied port.

        Only a managed (nacos) process is ever stopped, and only with allow_kill.
        Returns True when the port is free afterwards, False when the caller has
        to pick another port.
        """
        logger.warning(f"Port {port} is already in use")
        pid = self.probe.owner_of_port(port)

        if not pid or not self.probe.is_managed_process(pid):
            if pid:
                logger.warning(f"Port occupied by non-Nacos process (PID: {pid})")
            return False

        if not allow_kill:
            logger.warning(f"Port held by Nacos (PID: {pid}); use --kill to replace it, using a different port")
            return False

        if self.process_stopper is None:
            logger.warning("No process stopper configured, cannot reclaim port")
            return False

        logger.warning(f"Stopping existing Nacos process (PID: {pid})...")
        if not self.process_stopper(pid):
            logger.error(f"Failed to stop process {pid}")
            return False

        self.sleep(self.settle_interval)
        if self.probe.is_port_free(port):
            logger.info(f"Port {port} is now available")
            return True
        logger.warning(f"Port {port} still in use after stopping PID {pid}")
        return False

    def allocate_standalone(self, base_port: int, major_version: int,
                            advanced_mode: bool = False, allow_kill: bool = False) -> PortSet:
        main = base_port
        if not self.probe.is_port_free(main):
            if not self.handle_port_conflict(main, allow_kill):
                if advanced_mode:
                    raise PortConflict(main, f"Port {main} unavailable",
                                       hint="Use -p to specify a different port")
                main = self.find_available_port_set(SIMPLIFIED_SEARCH_START)
                logger.info(f"Auto-selected port: {main}")

        ports = PortSet(main)
        if not self.probe.is_port_free(ports.grpc_client):
            logger.warning(f"gRPC port {ports.grpc_client} is in use")
            ports = PortSet(self.find_available_port_set(main + 1))
            logger.info(f"Reallocated to port pair: {ports.main} (gRPC: {ports.grpc_client})")

        if major_version >= 3:
            ports.console = self._standalone_console_port(ports, base_port)
        return ports

    def _standalone_console_port(self, ports: PortSet, base_port: int) -> int:
        start = CONSOLE_BASE + (ports.main - base_port) // NODE_PORT_STRIDE
        claimed = ports.derived_ports()
        if self._is_free(start, claimed):
            return start

        for search_start in (start, CONSOLE_BASE, CONSOLE_FALLBACK_BASE):
            try:
                console = self.find_available_port(search_start, claimed=claimed)
            except AllocationExhausted:
                continue
            logger.info(f"Console port: {console}")
            return console
        raise AllocationExhausted(CONSOLE_FALLBACK_BASE, PORT_CEILING, what="console port")

    def _cluster_console_port(self, index: int, claimed: Set[int]) -> int:
        # Bounded nearby probe first, then an independent range per node
        start = CONSOLE_BASE + index * NODE_PORT_STRIDE
        for console in range(start, start + CONSOLE_MAX_ATTEMPTS):
            if self._is_free(console, claimed):
                return console

        fallback = CONSOLE_FALLBACK_BASE + index * NODE_PORT_STRIDE
        logger.warning(f"Console ports {start}-{start + CONSOLE_MAX_ATTEMPTS - 1} busy for node {index}, "
                       f"searching from {fallback}")
        return self.find_available_port(fallback, claimed=claimed)

    def _allocate_node(self, index: int, target: int, major_version: int, claimed: Set[int]) -> PortSet:
        if self.is_port_set_free(target, claimed):
            main = target
        else:
            logger.warning(f"Port {target} or related ports are in use for node {index}")
            main = self.find_available_port_set(target + 1, claimed)
            logger.info(f"Node {index} using alternative port: {main} "
                        f"(gRPC: {main + 1000},{main + 1001}, Raft: {main - 1000})")

        ports = PortSet(main)
        claimed.update(ports.derived_ports())
        if major_version >= 3:
            ports.console = self._cluster_console_port(index, claimed)
            claimed.add(ports.console)
        return ports

    def allocate_cluster(self, base_port: int, node_count: int, major_version: int) -> List[PortSet]:
        """One PortSet per node index, targeting base_port + i*10 and pairwise disjoint"""
        claimed: Set[int] = set()
        layout = []
        for index in range(node_count):
            target = base_port + index * NODE_PORT_STRIDE
            layout.append(self._allocate_node(index, target, major_version, claimed))
        return layout

    def allocate_join(self, existing_ports: Iterable[PortSet], new_index: int, major_version: int) -> PortSet:
        """PortSet for a node joining a cluster, disjoint from every recorded port"""
        existing = list(existing_ports)
        claimed: Set[int] = set()
        for ports in existing:
            claimed.update(ports.all_ports())

        if existing:
            target = max(ports.main for ports in existing) + NODE_PORT_STRIDE
        else:
            target = SIMPLIFIED_SEARCH_START
        return self._allocate_node(new_index, target, major_version, claimed)
