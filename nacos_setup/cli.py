#!/usr/bin/env python3
"""
Command-line interface for Nacos Setup
Provides commands for running a standalone server, creating, joining or leaving a local cluster
and writing the external datasource configuration.
"""
import sys
import argparse
import json
import yaml
import traceback
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from . import __version__
from .cluster_orchestrator.node_config import (
    DATASOURCE_PLATFORMS,
    GLOBAL_DATASOURCE_CONFIG,
    write_datasource_config,
)
from .errors import NacosSetupError
from .main import NacosSetup
from .models import (
    DEFAULT_ADMIN_USER,
    DEFAULT_BASE_DIR,
    DEFAULT_NODE_COUNT,
    DEFAULT_PORT,
    DEFAULT_VERSION,
    ClusterOptions,
    OperationResult,
    StandaloneOptions,
)
from .utils.versioning import MINIMUM_NACOS_VERSION, is_supported_version


class NacosSetupCLI:
    """Command-line interface for Nacos Setup"""

    def __init__(self, setup: Optional[NacosSetup] = None):
        self._setup = setup
        self.config: Dict[str, Any] = {}

    @property
    def setup(self) -> NacosSetup:
        if self._setup is None:
            self._setup = NacosSetup()
        return self._setup

    def load_config_file(self, config_path: str) -> Dict[str, Any]:
        """Load default options from a YAML or JSON file"""
        path = Path(config_path)

        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(path, 'r') as f:
            if path.suffix in ['.yaml', '.yml']:
                data = yaml.safe_load(f)
            elif path.suffix == '.json':
                data = json.load(f)
            else:
                raise ValueError(f"Unsupported config format: {path.suffix}")

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ValueError("Configuration file must contain a mapping of option names to values")
        return data

    def _option(self, args, name: str, default=None):
        """Command-line value if given, else the config file value, else default"""
        value = getattr(args, name, None)
        if value is not None:
            return value
        return self.config.get(name, default)

    def _auto_start(self, args) -> bool:
        if getattr(args, 'no_start', None):
            return False
        return bool(self.config.get('auto_start', True))

    def _load_config(self, args) -> bool:
        if not getattr(args, 'config', None):
            return True
        try:
            self.config = self.load_config_file(args.config)
            print(f"Loaded configuration from {args.config}")
            return True
        except Exception as e:
            print(f"Error: Failed to load config file: {e}")
            print(f"\nConfig file must be YAML (.yaml, .yml) or JSON (.json)")
            return False

    def _validate(self, version: str, port: int) -> bool:
        if not is_supported_version(version):
            print(f"Error: Nacos version {version} is not supported (minimum: {MINIMUM_NACOS_VERSION})")
            return False
        if not 1000 < port <= 64534:
            print(f"Error: Port {port} is out of range; the Raft port (port - 1000) must stay positive")
            return False
        return True

    def build_standalone_options(self, args) -> StandaloneOptions:
        return StandaloneOptions(
            version=str(self._option(args, 'version', DEFAULT_VERSION)),
            port=int(self._option(args, 'port', DEFAULT_PORT)),
            install_dir=self._option(args, 'install_dir'),
            advanced_mode=bool(self._option(args, 'advanced_mode', False)),
            auto_start=self._auto_start(args),
            detach=bool(self._option(args, 'detach', False)),
            allow_kill=bool(self._option(args, 'allow_kill', False)),
            base_dir=str(self._option(args, 'base_dir', DEFAULT_BASE_DIR)),
            datasource_file=self._option(args, 'datasource_file'),
            ready_timeout=int(self._option(args, 'ready_timeout', 60)),
        )

    def build_cluster_options(self, args) -> ClusterOptions:
        return ClusterOptions(
            cluster_id=args.cluster_id,
            version=str(self._option(args, 'version', DEFAULT_VERSION)),
            node_count=int(self._option(args, 'node_count', DEFAULT_NODE_COUNT)),
            base_port=int(self._option(args, 'port', DEFAULT_PORT)),
            auto_start=self._auto_start(args),
            detach=bool(self._option(args, 'detach', False)),
            clean=bool(self._option(args, 'clean', False)),
            leave_index=args.leave,
            base_dir=str(self._option(args, 'base_dir', DEFAULT_BASE_DIR)),
            datasource_file=self._option(args, 'datasource_file'),
            ready_timeout=int(self._option(args, 'ready_timeout', 60)),
        )

    def run_standalone(self, args) -> int:
        """Install and run a single Nacos node"""
        self._print_header("Nacos Standalone Installation")
        if not self._load_config(args):
            return 1

        options = self.build_standalone_options(args)
        if not self._validate(options.version, options.port):
            return 1

        result = self.setup.run_standalone(options)
        self._print_result(result, options.version)
        return result.exit_code

    def run_cluster(self, args) -> int:
        """Create a cluster, or join/leave an existing one"""
        if not self._load_config(args):
            return 1

        options = self.build_cluster_options(args)
        if not self._validate(options.version, options.base_port):
            return 1

        if args.join:
            self._print_header(f"Join Cluster: {options.cluster_id}")
            result = self.setup.join_cluster(options)
        elif args.leave is not None:
            self._print_header(f"Leave Cluster: {options.cluster_id}")
            result = self.setup.leave_cluster(options)
        else:
            if options.node_count < 1:
                print(f"Error: Node count must be at least 1 (got {options.node_count})")
                return 1
            self._print_header(f"Nacos Cluster Installation: {options.cluster_id}")
            result = self.setup.create_cluster(options)

        self._print_result(result, options.version)
        return result.exit_code

    def run_datasource(self, args) -> int:
        """Write the external database settings used by every new node"""
        self._print_header("Nacos Datasource Configuration")
        try:
            path = write_datasource_config(
                platform=args.platform,
                user=args.user,
                password=args.password,
                host=args.host,
                port=args.db_port,
                database=args.database,
                path=args.file,
                overwrite=args.force,
            )
        except NacosSetupError as e:
            print(f"Error: {e.message}")
            if e.hint:
                print(f"Hint: {e.hint}")
            return 1

        print(f"Platform: {args.platform}")
        print(f"Database: {args.host}:{args.db_port or DATASOURCE_PLATFORMS[args.platform]}/{args.database}")
        print(f"User:     {args.user}")
        print(f"\nSaved to: {path}")
        return 0

    def _print_header(self, title: str):
        """Print formatted header"""
        print()
        print("=" * 80)
        print(title)
        print("=" * 80)
        print()

    def _print_result(self, result: OperationResult, version: str):
        """Print the resolved layout and credentials, or the error and its remediation hint"""
        if not result.success:
            if result.error:
                label = f"Error [{result.error_category}]" if result.error_category else "Error"
                print(f"\n{label}: {result.error}")
                if result.hint:
                    print(f"Hint: {result.hint}")
            return

        if result.port_layout:
            print("\nPort layout:")
            for index, ports in enumerate(result.port_layout):
                label = f"Node {result.node_index}" if result.node_index is not None else f"Node {index}"
                if len(result.port_layout) == 1 and result.node_index is None:
                    label = "Server"
                line = (f"  {label}: main={ports.main} grpc={ports.grpc_client},{ports.grpc_server} "
                        f"raft={ports.raft}")
                if ports.console:
                    line += f" console={ports.console}"
                print(line)

        if result.credentials and result.credentials.admin_password:
            print("\nCredentials:")
            print(f"  Username: {DEFAULT_ADMIN_USER}")
            print(f"  Password: {result.credentials.admin_password}")

        location = result.cluster_dir or result.install_dir
        if location:
            print(f"\nLocation: {location}")


def _add_common_arguments(parser: argparse.ArgumentParser):
    parser.add_argument(
        '-v', '--nacos-version',
        dest='version',
        type=str,
        help=f'Nacos version (default: {DEFAULT_VERSION}, minimum: {MINIMUM_NACOS_VERSION})'
    )
    parser.add_argument(
        '-p', '--port',
        type=int,
        help=f'Base server port (default: {DEFAULT_PORT})'
    )
    parser.add_argument(
        '--no-start',
        dest='no_start',
        action='store_true',
        default=None,
        help='Install and configure only, do not start'
    )
    parser.add_argument(
        '--detach',
        action='store_true',
        default=None,
        help='Exit after startup and leave the server running'
    )
    parser.add_argument(
        '--base-dir',
        type=str,
        help=f'Base directory for installations (default: {DEFAULT_BASE_DIR})'
    )
    parser.add_argument(
        '--datasource',
        dest='datasource_file',
        type=str,
        metavar='FILE',
        help='Properties file with external database settings'
    )
    parser.add_argument(
        '--timeout',
        dest='ready_timeout',
        type=int,
        help='Seconds to wait for each node to become ready (default: 60)'
    )
    parser.add_argument(
        '--config',
        type=str,
        help='Path to configuration file (YAML or JSON)'
    )
    parser.add_argument(
        '--verbose',
        action='store_true',
        help='Enable verbose output'
    )


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser for CLI"""
    parser = argparse.ArgumentParser(
        prog='nacos-setup',
        description='Nacos Setup - install and run a local Nacos server or cluster',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Standalone server on the default port
  nacos-setup standalone

  # Specific version and port, replacing an existing Nacos on that port
  nacos-setup standalone -v 2.5.1 -p 18848 --kill

  # Three-node cluster
  nacos-setup cluster prod -n 3

  # Recreate an existing cluster
  nacos-setup cluster prod -n 3 --clean

  # Add a node to / remove node 2 from a cluster
  nacos-setup cluster prod --join
  nacos-setup cluster prod --leave 2

  # External MySQL used by every new node
  nacos-setup datasource --user nacos --password secret --host db.local
        """
    )

    parser.add_argument(
        '--version',
        action='version',
        version=f'Nacos Setup {__version__}'
    )

    subparsers = parser.add_subparsers(dest='command', help='Command to execute')

    standalone_parser = subparsers.add_parser(
        'standalone',
        help='Install and run a single Nacos node'
    )
    _add_common_arguments(standalone_parser)
    standalone_parser.add_argument(
        '-d', '--dir',
        dest='install_dir',
        type=str,
        help='Installation directory (default: <base-dir>/standalone/nacos-<version>)'
    )
    standalone_parser.add_argument(
        '--adv',
        dest='advanced_mode',
        action='store_true',
        default=None,
        help='Advanced mode: fail on port conflicts instead of auto-selecting a port'
    )
    standalone_parser.add_argument(
        '--kill',
        dest='allow_kill',
        action='store_true',
        default=None,
        help='Stop an existing Nacos process that holds the requested port'
    )

    cluster_parser = subparsers.add_parser(
        'cluster',
        help='Create, join or leave a local Nacos cluster'
    )
    cluster_parser.add_argument(
        'cluster_id',
        help='Cluster identifier (directory name under <base-dir>/cluster)'
    )
    _add_common_arguments(cluster_parser)
    cluster_parser.add_argument(
        '-n', '--nodes',
        dest='node_count',
        type=int,
        help=f'Number of nodes to create (default: {DEFAULT_NODE_COUNT})'
    )
    cluster_parser.add_argument(
        '--clean',
        action='store_true',
        default=None,
        help='Remove an existing cluster with the same id before creating'
    )
    membership = cluster_parser.add_mutually_exclusive_group()
    membership.add_argument(
        '--join',
        action='store_true',
        help='Add a new node to an existing cluster'
    )
    membership.add_argument(
        '--leave',
        type=int,
        metavar='INDEX',
        help='Remove the node with this index from the cluster'
    )

    datasource_parser = subparsers.add_parser(
        'datasource',
        help='Write the global external database configuration'
    )
    datasource_parser.add_argument(
        '--platform',
        choices=sorted(DATASOURCE_PLATFORMS),
        default='mysql',
        help='Database type (default: mysql)'
    )
    datasource_parser.add_argument(
        '--host',
        default='localhost',
        help='Database host (default: localhost)'
    )
    datasource_parser.add_argument(
        '--db-port',
        dest='db_port',
        type=int,
        help='Database port (default: 3306 for mysql, 5432 for postgresql)'
    )
    datasource_parser.add_argument(
        '--database',
        default='nacos',
        help='Database name (default: nacos)'
    )
    datasource_parser.add_argument(
        '--user',
        required=True,
        help='Database user'
    )
    datasource_parser.add_argument(
        '--password',
        required=True,
        help='Database password'
    )
    datasource_parser.add_argument(
        '--file',
        default=GLOBAL_DATASOURCE_CONFIG,
        help=f'Output file (default: {GLOBAL_DATASOURCE_CONFIG})'
    )
    datasource_parser.add_argument(
        '--force',
        action='store_true',
        help='Overwrite an existing configuration'
    )
    datasource_parser.add_argument(
        '--verbose',
        action='store_true',
        help='Enable verbose output'
    )

    return parser


def main():
    """Main entry point for CLI"""

    logging.basicConfig(
        level=logging.INFO,
        format='%(levelname)-5s | %(filename)s:%(lineno)-3d | %(message)s',
        handlers=[logging.StreamHandler()]
    )

    parser = create_parser()
    args = parser.parse_args()

    if not args.command:
        print("Error: No command specified\n")
        parser.print_help()
        print("\nCommon commands:")
        print("  nacos-setup standalone                # Run a standalone server")
        print("  nacos-setup cluster <id> -n 3         # Create a 3-node cluster")
        return 1

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    cli = NacosSetupCLI()

    try:
        if args.command == 'standalone':
            return cli.run_standalone(args)
        elif args.command == 'cluster':
            return cli.run_cluster(args)
        elif args.command == 'datasource':
            return cli.run_datasource(args)
    except KeyboardInterrupt:
        print("\n\nNacos Setup was interrupted by user")
        return 130
    except Exception as e:
        print(f"\nUnexpected error: {e}")
        if args.verbose:
            traceback.print_exc()
        return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())
