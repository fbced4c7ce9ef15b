#!/usr/bin/env python3
"""CLI entry point for stack-bootstrap.

Noun subcommands:
- provision: Fetch host configuration and (re)launch the compose stack
- fetch: Retrieve a single file from a URL or git repository
- watch: Signal a container whenever its config file changes
"""

import argparse
import logging
import os
import sys
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

from artifacts import validate_json
from config import load_config
from errors import EXIT_SUCCESS, EXIT_USAGE, BootstrapError
from orchestrator import Orchestrator, ProvisionScenario, RunContext
from sources import WRITE_BACKUP, WRITE_FORCE, SourceResolver
from watcher import (
    DEFAULT_DEBOUNCE,
    DEFAULT_SIGNAL,
    ChangeWatcher,
    DockerSignaler,
    InotifyEventSource,
    WatchTarget,
)

# Noun commands (noun-action subcommands)
NOUN_COMMANDS = {
    "provision": "Fetch host configuration and (re)launch the compose stack",
    "fetch": "Retrieve one file from a URL or <repo>#<branch>:<path>",
    "watch": "Signal a container when its config file changes",
}

logger = logging.getLogger(__name__)


def get_version() -> str:
    """Installed package version, or 'dev' when running from a checkout."""
    try:
        return version('stack-bootstrap')
    except PackageNotFoundError:
        return 'dev'


def setup_logging(verbose: bool = False):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s [%(levelname)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
    )


def print_usage():
    print("Usage: stack-bootstrap <command> [options]")
    print()
    print("Commands:")
    for noun, description in NOUN_COMMANDS.items():
        print(f"  {noun:<10} {description}")
    print()
    print("Run 'stack-bootstrap <command> --help' for command-specific options.")


def provision_main(argv: list) -> int:
    """Handle 'provision' command."""
    phases = ProvisionScenario().get_phases(None)
    phase_names = [name for name, _action, _desc in phases]

    parser = argparse.ArgumentParser(
        prog='stack-bootstrap provision',
        description='Fetch configuration for a host and (re)launch its compose stack',
    )
    parser.add_argument('host', nargs='?', help='Host name ({host} in source strings)')
    parser.add_argument('-y', '--yes', action='store_true', default=None, dest='assume_yes',
                        help='Remove conflicting containers without asking')
    parser.add_argument('-p', '--profiles', help='Comma-separated compose profiles')
    parser.add_argument('--config', type=Path, help='YAML settings file')
    parser.add_argument('--workdir', type=Path, help='Directory for fetched files (default: cwd)')
    parser.add_argument('--cache', action='store_true',
                        help='Allow the image build cache')
    parser.add_argument('--skip', '-s', action='append', default=[], choices=phase_names,
                        help='Phases to skip (can be repeated)')
    parser.add_argument('--dry-run', action='store_true',
                        help='Show phases without executing')
    parser.add_argument('--list-phases', action='store_true',
                        help='List phases and exit')
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')
    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    if args.list_phases:
        print("Phases:")
        for name, _action, description in phases:
            print(f"  {name:<26} {description}")
        return EXIT_SUCCESS

    if not args.host:
        parser.print_usage()
        print("Error: host is required")
        return EXIT_USAGE

    overrides = {
        'compose_profiles': args.profiles,
        'workdir': args.workdir,
        'assume_yes': args.assume_yes,
        'no_cache': False if args.cache else None,
    }
    try:
        config = load_config(config_file=args.config, overrides=overrides)
    except BootstrapError as e:
        logger.error(e.message)
        return e.exit_code

    context = RunContext.create(args.host, config)
    orchestrator = Orchestrator(
        ProvisionScenario(),
        context,
        skip_phases=args.skip,
        dry_run=args.dry_run,
    )
    return orchestrator.run()


def fetch_main(argv: list) -> int:
    """Handle 'fetch' command."""
    parser = argparse.ArgumentParser(
        prog='stack-bootstrap fetch',
        description='Fetch one file from an HTTP(S) URL or <repo>#<branch>:<path>',
    )
    parser.add_argument('source', help='URL or <repo>#<branch>:<path>')
    parser.add_argument('dest', nargs='?', type=Path,
                        help='Destination file or directory (default: cwd, name from source)')
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument('--force', action='store_const', const=WRITE_FORCE, dest='write_mode',
                      help='Overwrite an existing file (default)')
    mode.add_argument('--backup', action='store_const', const=WRITE_BACKUP, dest='write_mode',
                      help='Keep a timestamped copy of a replaced file')
    parser.add_argument('--json', action='store_true', help='Reject content that is not valid JSON')
    parser.add_argument('--insecure', '-k', action='store_true', default=None,
                        help='Skip TLS verification')
    parser.add_argument('--token', '-t', dest='auth_token', help='Bearer token')
    parser.add_argument('--header', dest='auth_header',
                        help="Full auth header ('Name: value'); overrides --token")
    parser.add_argument('--ssh-key', help='Private key for SSH repositories')
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')
    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    overrides = {
        'write_mode': args.write_mode,
        'insecure': args.insecure,
        'auth_token': args.auth_token,
        'auth_header': args.auth_header,
        'ssh_key': args.ssh_key,
    }
    dest, dest_dir = None, None
    if args.dest is None:
        dest_dir = Path.cwd()
    elif args.dest.is_dir():
        dest_dir = args.dest
    else:
        dest = args.dest

    try:
        config = load_config(overrides=overrides)
        resolver = SourceResolver.from_config(config)
        validate = validate_json if args.json else None
        result = resolver.fetch(args.source, dest=dest, dest_dir=dest_dir, validate=validate)
    except BootstrapError as e:
        logger.error(e.message)
        return e.exit_code

    if not result.changed:
        logger.info(f"{result.path} unchanged")
    elif result.backup:
        logger.info(f"Previous version kept at {result.backup}")
    return EXIT_SUCCESS


def watch_main(argv: list) -> int:
    """Handle 'watch' command."""
    parser = argparse.ArgumentParser(
        prog='stack-bootstrap watch',
        description='Send a signal to a container each time a file is rewritten',
    )
    parser.add_argument('--file', '-f', default=os.environ.get('FILE'),
                        help='File to watch (env: FILE)')
    parser.add_argument('--target', default=os.environ.get('TARGET'),
                        help='Container to signal (env: TARGET)')
    parser.add_argument('--docker-api', default=os.environ.get('DOCKER_API'),
                        help='Docker Engine API base URL (env: DOCKER_API)')
    parser.add_argument('--signal', default=os.environ.get('SIGNAL', DEFAULT_SIGNAL),
                        help=f'Signal name (default: {DEFAULT_SIGNAL})')
    parser.add_argument('--debounce', type=float, default=DEFAULT_DEBOUNCE,
                        help=f'Seconds to wait after a change (default: {DEFAULT_DEBOUNCE})')
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')
    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    missing = [flag for flag, value in (
        ('--file', args.file), ('--target', args.target), ('--docker-api', args.docker_api),
    ) if not value]
    if missing:
        print(f"Error: missing {', '.join(missing)}")
        return EXIT_USAGE

    target = WatchTarget.create(args.file, args.target)
    watcher = ChangeWatcher(
        target,
        InotifyEventSource(target.directory),
        DockerSignaler(args.docker_api, signal=args.signal),
        debounce=args.debounce,
    )
    try:
        watcher.run()
    except BootstrapError as e:
        logger.error(e.message)
        return e.exit_code
    except KeyboardInterrupt:
        logger.info("[watch] stopped")
    return EXIT_SUCCESS


def dispatch_noun(noun: str, argv: list) -> int:
    """Dispatch to noun-specific CLI handler.

    Args:
        noun: The noun command (e.g., "provision", "watch")
        argv: Remaining command line arguments

    Returns:
        Exit code
    """
    if noun == "provision":
        return provision_main(argv)
    if noun == "fetch":
        return fetch_main(argv)
    if noun == "watch":
        return watch_main(argv)

    print(f"Error: Unknown command '{noun}'")
    return EXIT_USAGE


def main(argv: list = None) -> int:
    """CLI entry point."""
    argv = sys.argv[1:] if argv is None else argv

    if not argv or argv[0] in ('-h', '--help'):
        print_usage()
        return EXIT_SUCCESS if argv else EXIT_USAGE
    if argv[0] == '--version':
        print(f"stack-bootstrap {get_version()}")
        return EXIT_SUCCESS

    if argv[0] not in NOUN_COMMANDS:
        print(f"Error: Unknown command '{argv[0]}'")
        print_usage()
        return EXIT_USAGE

    return dispatch_noun(argv[0], argv[1:])


if __name__ == '__main__':
    sys.exit(main())
