"""CLI entrypoint for agent-secretsync."""
import argparse
import logging
import signal
import sys
import time
from pathlib import Path

from .validators import validate_config_file, validate_secret_name

VERSION = "0.1.0"

# Configure logging to stderr
logging.basicConfig(
    level=logging.WARNING,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    stream=sys.stderr
)
logger = logging.getLogger(__name__)


def _set_log_level(args, default=logging.WARNING):
    if getattr(args, "verbose", False):
        level = logging.DEBUG
    elif getattr(args, "quiet", False):
        level = logging.ERROR
    else:
        level = default
    logging.getLogger().setLevel(level)


def build_store(config, token=None):
    """Create the secret store adapter selected in the config."""
    store_type = config.store["type"]
    if store_type == "vault":
        from agent_secretsync.secrets.domains.vault_client import VaultClient
        return VaultClient.from_config(config.store, token=token)
    if store_type == "gcp":
        from agent_secretsync.secrets.domains.gcp_client import GCPSecretStore
        return GCPSecretStore.from_config(config.store)
    raise ValueError(f"Unsupported store type: {store_type}")


def build_scheduler(config, stop_event=None):
    """Wire state, store, reloader and readiness notifier for ``config``."""
    from agent_secretsync.secrets.domains.state import LifecycleState
    from agent_secretsync.secrets.workflows.notifier import (
        CommandReloader,
        NotificationDispatcher,
        SystemdNotifier,
    )
    from agent_secretsync.secrets.workflows.scheduler import Scheduler

    state = LifecycleState.load(config.state_path)
    dispatcher = NotificationDispatcher(CommandReloader(config.notifiers))
    dispatcher.add_status_notifier(SystemdNotifier())
    return Scheduler(
        store=build_store(config, token=state.token),
        state=state,
        secrets=config.secrets,
        files=config.files,
        dispatcher=dispatcher,
        retry_period=config.retry_period,
        stop_event=stop_event,
    )


def cmd_version(args):
    """Show version information."""
    print(f"agent-secretsync {VERSION}")


def cmd_run(args):
    """Run the daemon until SIGINT/SIGTERM."""
    from agent_secretsync.secrets.domains.config_loader import load_config

    _set_log_level(args, default=logging.INFO)
    config = load_config(args.config)
    scheduler = build_scheduler(config)

    def _stop(signum, frame):
        logger.info(f"Received signal {signum}, stopping")
        scheduler.stop()

    signal.signal(signal.SIGTERM, _stop)
    signal.signal(signal.SIGINT, _stop)

    scheduler.run()


def cmd_config_set_path(args):
    """Set config file path preference."""
    from agent_secretsync.secrets.domains.preferences import set_preference

    config_path = validate_config_file(args.path)
    set_preference("config_path", str(config_path))
    print(f"Config path set to: {config_path}")


def cmd_config_show(args):
    """Show current config file path."""
    from agent_secretsync.secrets.domains.config_loader import DEFAULT_CONFIG_PATH
    from agent_secretsync.secrets.domains.preferences import get_preference

    config_path_pref = get_preference("config_path")

    if config_path_pref:
        config_path = Path(config_path_pref)
        if config_path.exists():
            print(f"Config path: {config_path}")
        else:
            print(f"Config path (from preference, but file not found): {config_path}")
        print("Source: preference")
    else:
        if DEFAULT_CONFIG_PATH.exists():
            print(f"Config path: {DEFAULT_CONFIG_PATH}")
            print("Source: default")
        else:
            print(f"Config path: {DEFAULT_CONFIG_PATH}")
            print("Source: default (file not found)")


def cmd_config_clear(args):
    """Clear config path preference."""
    from agent_secretsync.secrets.domains.config_loader import DEFAULT_CONFIG_PATH
    from agent_secretsync.secrets.domains.preferences import clear_preference

    clear_preference("config_path")
    print(f"Config path preference cleared. Will use default: {DEFAULT_CONFIG_PATH}")


def cmd_secrets_get(args):
    """Resolve one configured secret and show its fields."""
    from agent_secretsync.secrets.domains.config_loader import load_config
    from agent_secretsync.secrets.domains.state import LifecycleState
    from agent_secretsync.secrets.workflows.resolver import SecretResolver

    validate_secret_name(args.secret_name)
    _set_log_level(args)
    config = load_config(args.config)

    spec = config.secrets.get(args.secret_name)
    if spec is None:
        print(f"Error: Secret '{args.secret_name}' is not configured", file=sys.stderr)
        sys.exit(1)

    store = build_store(config)
    store.login()
    # In-memory state: a one-shot lookup must not touch the daemon's state file
    state = LifecycleState()
    SecretResolver(store, state, retry_period=config.retry_period).resolve(args.secret_name, spec)
    secret = state.secrets[args.secret_name]

    if args.quiet:
        for key in sorted(secret.data):
            print(f"{key}={secret.data[key]}" if args.show_values else key)
        return

    print(f"Secret '{args.secret_name}' (lease {secret.lease_duration}s):")
    for key in sorted(secret.data):
        value = secret.data[key] if args.show_values else "********"
        print(f"  {key}: {value}")


def cmd_state_show(args):
    """Show tracked secrets, their renewal time and the files using them."""
    from agent_secretsync.secrets.domains.config_loader import load_config
    from agent_secretsync.secrets.domains.state import LifecycleState

    config = load_config(args.config)
    state = LifecycleState.load(config.state_path)

    if not state.secrets:
        print(f"No secrets tracked in {config.state_path}")
        return

    for name in sorted(state.secrets):
        secret = state.secrets[name]
        instant = secret.next_update
        when = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(instant)) if instant else "never"
        print(f"{name}: next update {when}")
        for usage in secret.files_using:
            print(f"  {usage.path} (priority {usage.priority})")


def main():
    """Main CLI entrypoint.

    Exit codes:
        0 - Success (including a clean stop of 'run')
        1 - Runtime errors (config, login, fatal secret errors, file writes)
        2 - Usage errors (invalid arguments)
    """
    parser = argparse.ArgumentParser(
        prog="secretsync",
        description="agent-secretsync - render secrets into files and keep them fresh",
        epilog="""
Exit codes:
  0 - Success
  1 - Runtime error (config, login, fatal secret store error, file write)
  2 - Usage error (invalid arguments)

Environment variables:
  VAULT_ADDR, VAULT_TOKEN - Vault address and token (override config file)
  GCP_PROJECT - GCP project ID (overrides config file)

Configuration:
  Default location: ~/.config/agent-secretsync/config.yml
  Custom path: Set with 'secretsync config set-path <path>' or pass --config
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser(
        "version",
        help="Show version information",
        description="Display the current version of agent-secretsync"
    )

    run_parser = subparsers.add_parser(
        "run",
        help="Run the secret distribution daemon",
        description="""
Log in to the secret store, resolve all configured secrets, render all files
and keep them fresh as leases expire. Stops on SIGINT/SIGTERM.
        """
    )
    run_parser.add_argument("--config", help="Path to config file")
    verbosity = run_parser.add_mutually_exclusive_group()
    verbosity.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    verbosity.add_argument("-q", "--quiet", action="store_true", help="Only log errors")

    config_parser = subparsers.add_parser(
        "config",
        help="Configuration management",
        description="Manage agent-secretsync configuration"
    )
    config_subparsers = config_parser.add_subparsers(dest="config_command")

    config_set_path_parser = config_subparsers.add_parser(
        "set-path",
        help="Set config file path",
        description="""
Set the configuration file path preference.

This stores the absolute path to your config file in:
~/.config/agent-secretsync/preferences.json
        """
    )
    config_set_path_parser.add_argument("path", help="Path to config file")
    config_subparsers.add_parser("show", help="Show current config path")
    config_subparsers.add_parser("clear", help="Clear config path preference")

    secrets_parser = subparsers.add_parser(
        "secrets",
        help="Secret operations",
        description="Inspect configured secrets"
    )
    secrets_subparsers = secrets_parser.add_subparsers(dest="secrets_command")

    get_parser = secrets_subparsers.add_parser(
        "get",
        help="Resolve a configured secret",
        description="""
Log in and resolve one configured secret, printing its field names.
Values are masked unless --show-values is given. The daemon state is not modified.
        """
    )
    get_parser.add_argument("secret_name", help="Name of the secret in the config file")
    get_parser.add_argument("--config", help="Path to config file")
    get_parser.add_argument("--show-values", action="store_true", help="Print secret values")
    get_parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Output only keys (or key=value with --show-values), one per line"
    )

    state_parser = subparsers.add_parser(
        "state",
        help="Inspect persisted state",
        description="Inspect the daemon's persisted state"
    )
    state_subparsers = state_parser.add_subparsers(dest="state_command")
    state_show_parser = state_subparsers.add_parser("show", help="Show tracked secrets and files")
    state_show_parser.add_argument("--config", help="Path to config file")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(2)

    try:
        if args.command == "version":
            cmd_version(args)
        elif args.command == "run":
            cmd_run(args)
        elif args.command == "config":
            if args.config_command == "set-path":
                cmd_config_set_path(args)
            elif args.config_command == "show":
                cmd_config_show(args)
            elif args.config_command == "clear":
                cmd_config_clear(args)
            else:
                config_parser.print_help()
                sys.exit(2)
        elif args.command == "secrets":
            if args.secrets_command == "get":
                cmd_secrets_get(args)
            else:
                secrets_parser.print_help()
                sys.exit(2)
        elif args.command == "state":
            if args.state_command == "show":
                cmd_state_show(args)
            else:
                state_parser.print_help()
                sys.exit(2)
        else:
            parser.print_help()
            sys.exit(2)
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
