"""
Command Line Interface for ESXi Deployer

Provides commands for:
- init: Write an example configuration file
- check: Verify tools, source image and directories before a run
- build: Build and publish per-host images
- provision: Provision hosts from images recorded in a state file
- deploy: Build, publish and provision in one go
- status: Show the stored run state
"""

import argparse
import json
import os
import signal
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from loguru import logger
from rich.console import Console
from rich.table import Table

from .configs import ConfigLoader, Credentials, HostOutcome, StateManager
from .image_building import missing_tools
from .main import EsxiDeployer, RunSummary

console = Console()

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_ABORTED = 130

EXAMPLE_CONFIG = """\
# ESXi deployer configuration
# Credentials are read from the environment (or a .env file):
#   ESXI_ROOT_PASSWORD, BMC_USERNAME, BMC_PASSWORD
#   SHARE_USERNAME, SHARE_PASSWORD (only for CIFS distribution)

source_iso = "/home/deploy/isosrc"
staging_dir = "/home/deploy/baremetal/staging"
output_dir = "/home/deploy/baremetal"
state_dir = "./state"
log_file = "./log/esxi-deployer.log"

[distribution]
publish_dir = "/home/stageiso"
http_base_url = "http://10.0.0.5/stageiso"
# cifs_share = "//10.0.0.5/stageiso"

[network]
netmask = "255.255.255.0"
gateway = "10.0.0.1"
dns_servers = ["10.0.0.2", "10.0.0.3"]
ntp_servers = ["10.0.0.4", "10.0.0.5"]
vlan_id = 0

[kickstart]
disabled_network_stack = "ipv6"
enable_shell = true

[driver]
max_attempts = 3
retry_backoff_seconds = 60
poll_interval_seconds = 30
install_timeout_seconds = 1800
verify_window_seconds = 300
verify_successes = 3

[concurrency]
build_workers = 4
provision_workers = 8

[[hosts]]
hostname = "esxi01"
mgmt_ip = "10.0.0.11"
bmc_ip = "10.0.1.11"
vendor = "redfish"

[[hosts]]
hostname = "esxi02"
mgmt_ip = "10.0.0.12"
bmc_ip = "10.0.1.12"
vendor = "ilo"
boot_mode = "legacy"
network = { vlan_id = 20 }
"""


def setup_logger(verbose: bool = False, log_file: Optional[str] = None):
    """Setup logger configuration"""
    logger.remove()
    level = "DEBUG" if verbose else "INFO"
    logger.add(
        sys.stderr,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
               "<level>{level: <8}</level> | "
               "<level>{message}</level>",
        level=level,
    )
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            level="DEBUG",
            rotation="10 MB",
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {extra[host]} | {message}",
        )
    logger.configure(extra={"host": "-"})


def get_deployer(args) -> EsxiDeployer:
    """Get deployer from args"""
    load_dotenv()
    credentials = Credentials.load_from_env()
    state_path = args.state if getattr(args, "state", None) else None
    return EsxiDeployer.from_config_file(args.config, credentials, state_path)


def _install_abort_handler(deployer: EsxiDeployer) -> None:
    def abort_handler(signum=None, frame=None):
        logger.warning(f"Received signal {signum}, aborting...")
        deployer.abort()

    signal.signal(signal.SIGINT, abort_handler)
    signal.signal(signal.SIGTERM, abort_handler)


def _yes_no(value: bool) -> str:
    return "[green]yes[/green]" if value else "[red]no[/red]"


def _outcome_status(outcome: HostOutcome) -> str:
    if outcome.session is not None:
        return outcome.session.state.value
    if outcome.artifact is not None:
        return outcome.artifact.status.value
    return "pending"


def render_summary(outcomes: List[HostOutcome], title: str) -> None:
    """Print the per-host status table"""
    table = Table("Host", "Built", "Published", "Provisioned", "Verified", "Status", "Attempts", "Error", title=title)
    for outcome in outcomes:
        table.add_row(
            outcome.hostname,
            _yes_no(outcome.image_built),
            _yes_no(outcome.published),
            _yes_no(outcome.provisioned),
            _yes_no(outcome.verified),
            _outcome_status(outcome),
            str(outcome.session.attempts) if outcome.session else "-",
            outcome.first_error or "",
        )
    console.print(table)


def _exit_code(deployer: EsxiDeployer, succeeded: bool) -> int:
    if deployer.aborted:
        return EXIT_ABORTED
    return EXIT_OK if succeeded else EXIT_FAILED


# === Check Command ===

def check_command(args):
    """Preflight checks"""
    setup_logger(args.verbose)

    try:
        config = ConfigLoader.load_from_file(args.config)
    except Exception as e:
        logger.error(f"Invalid configuration: {e}")
        return EXIT_FAILED

    problems = []

    for tool in missing_tools():
        problems.append(f"required tool not found on PATH: {tool}")

    try:
        source_iso = ConfigLoader.resolve_source_iso(config.source_iso)
        if not os.access(source_iso, os.R_OK):
            problems.append(f"source image not readable: {source_iso}")
        else:
            logger.info(f"Source image: {source_iso}")
    except FileNotFoundError as e:
        problems.append(str(e))

    for directory in (config.staging_dir, config.output_dir, config.distribution.publish_dir):
        path = Path(directory)
        existing = path if path.exists() else next((p for p in path.parents if p.exists()), path)
        if not os.access(existing, os.W_OK):
            problems.append(f"directory not writable: {directory}")

    try:
        EsxiDeployer._check_unique_hostnames(ConfigLoader.build_host_specs(config))
    except ValueError as e:
        problems.append(str(e))

    load_dotenv()
    try:
        Credentials.load_from_env()
    except ValueError as e:
        problems.append(str(e))

    for problem in problems:
        logger.error(problem)
    if problems:
        return EXIT_FAILED

    logger.success(f"Ready to deploy {len(config.hosts)} host(s)")
    return EXIT_OK


# === Build Command ===

def build_command(args):
    """Build and publish images"""
    try:
        deployer = get_deployer(args)
    except Exception as e:
        setup_logger(args.verbose)
        logger.error(f"Cannot start: {e}")
        return EXIT_FAILED
    setup_logger(args.verbose, deployer.config.log_file)
    _install_abort_handler(deployer)

    try:
        artifacts = deployer.build_all(args.host)
    except Exception as e:
        logger.error(f"Build failed: {e}")
        return EXIT_FAILED

    render_summary(deployer.summary(args.host).outcomes, f"Build {deployer.config.run_id}")
    logger.info(f"State saved to {deployer.state_path}")
    return _exit_code(deployer, all(a.is_published for a in artifacts.values()))


# === Provision Command ===

def provision_command(args):
    """Provision hosts from previously built images"""
    try:
        deployer = get_deployer(args)
    except Exception as e:
        setup_logger(args.verbose)
        logger.error(f"Cannot start: {e}")
        return EXIT_FAILED
    setup_logger(args.verbose, deployer.config.log_file)
    _install_abort_handler(deployer)

    state = deployer.state_manager.load()
    if state is None:
        logger.error(f"No build state found at {deployer.state_path}, run 'build' first or pass -s")
        return EXIT_FAILED
    deployer.config.run_id = state.run_id

    try:
        sessions = deployer.provision_all(hostnames=args.host)
    except Exception as e:
        logger.error(f"Provisioning failed: {e}")
        return EXIT_FAILED
    deployer.state_manager.update_phase("aborted" if deployer.aborted else "completed")

    summary = deployer.summary(args.host)
    render_summary(summary.outcomes, f"Provision {deployer.config.run_id}")
    return _exit_code(deployer, bool(sessions) and all(o.succeeded for o in summary.outcomes))


# === Deploy Command ===

def deploy_command(args):
    """Deploy command handler"""
    try:
        deployer = get_deployer(args)
    except Exception as e:
        setup_logger(args.verbose)
        logger.error(f"Cannot start: {e}")
        return EXIT_FAILED
    setup_logger(args.verbose, deployer.config.log_file)
    _install_abort_handler(deployer)

    logger.info("Starting deployment...")

    try:
        summary: RunSummary = deployer.deploy_all(args.host)
    except Exception as e:
        logger.error(f"Deployment failed: {e}")
        deployer.state_manager.add_error(str(e))
        return EXIT_FAILED

    render_summary(summary.outcomes, f"Deployment {summary.run_id}")

    if args.output:
        with open(args.output, "w") as f:
            json.dump(summary.to_dict(), f, indent=2, default=str)
        logger.info(f"Results saved to {args.output}")

    if summary.succeeded:
        logger.success("All hosts deployed")
    return _exit_code(deployer, summary.succeeded)


# === Status Command ===

def status_command(args):
    """Status command handler"""
    setup_logger(args.verbose)

    if args.state:
        state_path = args.state
    else:
        try:
            config = ConfigLoader.load_from_file(args.config)
        except Exception as e:
            logger.error(f"Status check failed: {e}")
            return EXIT_FAILED
        if not config.run_id:
            logger.error("No run_id in configuration, pass the state file with -s")
            return EXIT_FAILED
        state_path = str(Path(config.state_dir) / f"{config.run_id}.json")

    try:
        state = StateManager(state_path).load()
    except ValueError as e:
        logger.error(f"Status check failed: {e}")
        return EXIT_FAILED

    if not state:
        logger.info("No deployment state found")
        return EXIT_OK

    logger.info(f"Run: {state.run_id}")
    logger.info(f"Phase: {state.phase}")
    logger.info(f"Started: {state.created_at}")
    render_summary(state.outcomes(), f"Run {state.run_id}")

    if state.errors:
        logger.warning(f"Errors: {len(state.errors)}")
        for error in state.errors[-5:]:
            logger.warning(f"  - {error}")

    return EXIT_OK


# === Init Command ===

def init_command(args):
    """Initialize a new configuration file"""
    setup_logger(args.verbose)

    output_path = Path(args.output)

    if output_path.exists() and not args.force:
        logger.error(f"File {args.output} already exists. Use --force to overwrite.")
        return EXIT_FAILED

    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(EXAMPLE_CONFIG)

    logger.info(f"Created example configuration at {args.output}")
    logger.info("Edit the hosts and network sections, and export the credentials before deploying.")
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="esxi-deployer",
        description="Unattended ESXi installs over BMC virtual media",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Write an example config file
  esxi-deployer init -o deploy_config.toml

  # Check prerequisites
  esxi-deployer check -c deploy_config.toml

  # Build, publish and install every host
  esxi-deployer deploy -c deploy_config.toml

  # Only rebuild and reinstall one host
  esxi-deployer deploy -c deploy_config.toml --host esxi01

  # Show a previous run
  esxi-deployer status -s state/run-20240101-120000-ab12cd34.json
        """
    )

    # Global arguments
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    parser.add_argument("-c", "--config", default="deploy_config.toml", help="Configuration file path")
    parser.add_argument("-s", "--state", help="State file path (default: <state_dir>/<run_id>.json)")

    subparsers = parser.add_subparsers(dest="command", required=True)

    init_parser = subparsers.add_parser("init", help="Write an example configuration file")
    init_parser.add_argument("-o", "--output", default="deploy_config.toml", help="Output config file path")
    init_parser.add_argument("-f", "--force", action="store_true", help="Overwrite existing file")
    init_parser.set_defaults(func=init_command)

    check_parser = subparsers.add_parser("check", help="Check tools, source image and directories")
    check_parser.set_defaults(func=check_command)

    build_parser_ = subparsers.add_parser("build", help="Build and publish images")
    build_parser_.add_argument("--host", action="append", help="Only this host (repeatable)")
    build_parser_.set_defaults(func=build_command)

    provision_parser = subparsers.add_parser("provision", help="Provision hosts from built images")
    provision_parser.add_argument("--host", action="append", help="Only this host (repeatable)")
    provision_parser.set_defaults(func=provision_command)

    deploy_parser = subparsers.add_parser("deploy", help="Build, publish and provision")
    deploy_parser.add_argument("--host", action="append", help="Only this host (repeatable)")
    deploy_parser.add_argument("-o", "--output", help="Output results to JSON file")
    deploy_parser.set_defaults(func=deploy_command)

    status_parser = subparsers.add_parser("status", help="Show the stored run state")
    status_parser.set_defaults(func=status_command)

    return parser


def main():
    """Main CLI entry point"""
    parser = build_parser()
    args = parser.parse_args()

    if hasattr(args, "func"):
        sys.exit(args.func(args))
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
