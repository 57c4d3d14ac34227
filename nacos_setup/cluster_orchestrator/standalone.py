"""
Single-node install/run: the degenerate create/teardown case without cluster membership
"""
import logging
import time
from typing import Callable, Optional

from ..errors import NacosSetupError, NodeStartError
from ..interfaces import IPackageManager, IPortProbe
from ..models import (
    DEFAULT_ADMIN_USER,
    OperationResult,
    StandaloneInstall,
    StandaloneOptions,
    major_version,
)
from ..port_manager import PortAllocator, PortProbe
from ..utils.credentials import generate_shared_secrets
from ..utils.java import find_java_runtime, required_java_version
from ..utils.package import PackageManager
from .lifecycle import NodeLifecycle
from .node_config import (
    GLOBAL_DATASOURCE_CONFIG,
    apply_datasource_config,
    apply_security_config,
    load_datasource_config,
    update_port_config,
)
from .orchestrator import MONITOR_INTERVAL, ClusterRunContext, TeardownGuard, console_url

logger = logging.getLogger(__name__)


class StandaloneRunner:
    """Installs one Nacos node, starts it and watches it until exit"""

    def __init__(self,
                 package_manager: Optional[IPackageManager] = None,
                 probe: Optional[IPortProbe] = None,
                 lifecycle: Optional[NodeLifecycle] = None,
                 allocator: Optional[PortAllocator] = None,
                 java_finder: Optional[Callable] = find_java_runtime,
                 sleep: Callable[[float], None] = time.sleep,
                 monitor_interval: float = MONITOR_INTERVAL,
                 global_datasource_file: str = GLOBAL_DATASOURCE_CONFIG):
        self.package_manager = package_manager or PackageManager()
        self.probe = probe or PortProbe()
        self.lifecycle = lifecycle or NodeLifecycle(probe=self.probe)
        self.allocator = allocator or PortAllocator(self.probe, process_stopper=self.lifecycle.stop_pid)
        self.java_finder = java_finder
        self.sleep = sleep
        self.monitor_interval = monitor_interval
        self.global_datasource_file = global_datasource_file

    def run(self, options: StandaloneOptions) -> OperationResult:
        try:
            return self._run(options)
        except NacosSetupError as e:
            logger.error(e.message)
            return OperationResult(exit_code=1, install_dir=options.resolve_install_dir(),
                                   error=e.message, error_category=e.category.value, hint=e.hint)

    def _run(self, options: StandaloneOptions) -> OperationResult:
        install_dir = options.resolve_install_dir()
        logger.info(f"Target Nacos version: {options.version}")
        logger.info(f"Installation directory: {install_dir}")

        if self.java_finder is not None:
            self.lifecycle.java = self.java_finder(required_java_version(options.version))
        archive = self.package_manager.fetch(options.version)

        install = StandaloneInstall(version=options.version, install_dir=install_dir)
        context = ClusterRunContext(detach=options.detach)

        with TeardownGuard(context, self.lifecycle, label="Nacos"):
            self.package_manager.extract_to(archive, install_dir.parent, install_dir.name)
            config_file = install_dir / "conf" / "application.properties"

            ports = self.allocator.allocate_standalone(options.port, major_version(options.version),
                                                       options.advanced_mode, options.allow_kill)
            install.ports = ports
            update_port_config(config_file, ports, options.version)
            logger.info(f"Ports configured: Server={ports.main}, Console={ports.console}")

            install.secrets = generate_shared_secrets("nacos_identity")
            apply_security_config(config_file, install.secrets)

            datasource = load_datasource_config(options.datasource_file, self.global_datasource_file)
            if datasource is not None:
                logger.info("Applying external datasource configuration...")
                apply_datasource_config(config_file, datasource)
            else:
                logger.info("Using embedded Derby database")
            logger.info("Configuration completed")

            result = OperationResult(exit_code=0, port_layout=[ports], credentials=install.secrets,
                                     install_dir=install_dir)
            if not options.auto_start:
                logger.info("Installation completed (auto-start disabled)")
                logger.info(f"To start manually, run: cd {install_dir} && bash bin/startup.sh -m standalone")
                return result

            logger.info("Starting Nacos in standalone mode...")
            started_at = time.monotonic()
            try:
                install.process_handle = self.lifecycle.start(install_dir, 'standalone', use_embedded_db=False)
                context.started.append(install.process_handle)
                logger.info(f"Nacos started with PID: {install.process_handle.pid}")
            except NodeStartError as e:
                logger.warning(f"Could not determine Nacos PID: {e.message}")

            # Standalone is best effort: a slow start only warns
            if self.lifecycle.wait_until_ready(ports, options.version, options.ready_timeout):
                logger.info(f"Nacos is ready in {time.monotonic() - started_at:.0f}s!")
                if not self.lifecycle.initialize_admin_password(ports, options.version,
                                                                install.secrets.admin_password):
                    logger.warning("Password initialization failed, you can change it manually after login")
            else:
                logger.warning("Nacos may still be starting, please wait a moment")

            self.print_completion_info(install)

            if options.detach:
                pid = install.process_handle.pid if install.process_handle else "unknown"
                logger.info(f"Detach mode: Nacos keeps running with PID: {pid}")
                return result

            if install.process_handle is None:
                return result

            logger.info("Press Ctrl+C to stop and clean up Nacos")
            result.exit_code = self._monitor(install)
            return result

    def _monitor(self, install: StandaloneInstall) -> int:
        while self.lifecycle.is_running(install.process_handle):
            self.sleep(self.monitor_interval)
        logger.warning("Nacos process terminated unexpectedly")
        return 1

    def print_completion_info(self, install: StandaloneInstall) -> None:
        ports = install.ports
        print()
        print("=" * 80)
        print("Nacos Started Successfully!")
        print("=" * 80)
        print()
        print(f"Installation Directory: {install.install_dir}")
        print(f"Console URL: {console_url('localhost', ports, install.version)}")
        print()
        print("Port allocation:")
        print(f"  - Server Port: {ports.main}")
        print(f"  - Client gRPC Port: {ports.grpc_client}")
        print(f"  - Server gRPC Port: {ports.grpc_server}")
        print(f"  - Raft Port: {ports.raft}")
        if major_version(install.version) >= 3:
            print(f"  - Console Port: {ports.console}")
        print()
        if install.secrets and install.secrets.admin_password:
            print("Authentication is enabled. Please login with:")
            print(f"  Username: {DEFAULT_ADMIN_USER}")
            print(f"  Password: {install.secrets.admin_password}")
        print()
        print("=" * 80)
