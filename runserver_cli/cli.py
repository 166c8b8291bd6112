#!/usr/bin/env python3
"""Main CLI entry point for the run-server harness.

This provides the `runserver` command with subcommands for all harness operations.

Usage:
    runserver run --plugin build/libs/my-plugin.jar
    runserver run --plugin build/libs/my-plugin.jar --debug
    runserver fetch --url https://example.com/server.jar
    runserver clean --list
    runserver config --sample
"""

import argparse
import logging
import signal
import sys
from pathlib import Path

__version__ = "0.1.0"


def add_run_parser(subparsers):
    """Add the 'run' subcommand parser."""
    parser = subparsers.add_parser(
        'run',
        help='Download, stage and run the server with your plugin',
        description='Download the server runtime, install the plugin and run it',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  runserver run --plugin build/libs/my-plugin.jar
  runserver run --plugin build/libs/my-plugin.jar --debug
  runserver run --url https://example.com/server.jar --run-dir ./run
"""
    )

    parser.add_argument(
        "--plugin", "-p",
        type=Path,
        help="Built plugin artifact to install (default: from config)"
    )
    parser.add_argument(
        "--url",
        help="Server runtime artifact URL (default: from config)"
    )
    parser.add_argument(
        "--debug", "-d",
        action="store_true",
        default=None,
        help="Start the server with a debugger listening on port 5005"
    )
    parser.add_argument(
        "--run-dir",
        type=Path,
        help="Run directory for the server (default: ./run)"
    )
    parser.add_argument(
        "--java",
        dest="java_binary",
        help="Java launcher to run the server with (default: java)"
    )

    return parser


def add_fetch_parser(subparsers):
    """Add the 'fetch' subcommand parser."""
    parser = subparsers.add_parser(
        'fetch',
        help='Download the server runtime into the cache',
        description='Resolve the server runtime URL into the artifact cache',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  runserver fetch
  runserver fetch --url https://example.com/server.jar
  runserver fetch --refresh
"""
    )

    parser.add_argument(
        "--url",
        help="Server runtime artifact URL (default: from config)"
    )
    parser.add_argument(
        "--refresh",
        action="store_true",
        help="Drop any cached copy of the URL and download it again"
    )

    return parser


def add_clean_parser(subparsers):
    """Add the 'clean' subcommand parser."""
    parser = subparsers.add_parser(
        'clean',
        help='List or clear cached server artifacts',
        description='Clean the run-server artifact cache',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  runserver clean --list
  runserver clean --all
  runserver clean --all --dry-run
  runserver clean --all --force
"""
    )

    parser.add_argument(
        "--list", "-l",
        action="store_true",
        help="List cache contents without deleting"
    )
    parser.add_argument(
        "--all", "-a",
        action="store_true",
        help="Remove every cached artifact"
    )
    parser.add_argument(
        "--dry-run", "-n",
        action="store_true",
        help="Show what would be deleted without actually deleting"
    )
    parser.add_argument(
        "--force", "-f",
        action="store_true",
        help="Skip confirmation prompt"
    )

    return parser


def add_config_parser(subparsers):
    """Add the 'config' subcommand parser."""
    parser = subparsers.add_parser(
        'config',
        help='Show the effective configuration',
        description='Show the effective configuration or a sample config file',
    )

    parser.add_argument(
        "--sample",
        action="store_true",
        help="Print a sample configuration file"
    )

    return parser


def _load(args, **overrides):
    from runharness.config import load_config

    return load_config(cache_dir=args.cache_dir, **overrides)


def _terminate_on_sigterm():
    """Turn SIGTERM into SystemExit so shutdown hooks get to run."""
    def handler(signum, frame):
        raise SystemExit(128 + signum)

    try:
        signal.signal(signal.SIGTERM, handler)
    except (ValueError, OSError):
        # Not the main thread, or the platform has no SIGTERM
        pass


def cmd_run(args):
    """Execute the run command."""
    from runharness.errors import HarnessError
    from runharness.task import RunServerTask, TaskOrchestrator

    try:
        config = _load(
            args,
            url=args.url,
            debug=args.debug,
            run_dir=args.run_dir,
            plugin_artifact=args.plugin,
            java_binary=args.java_binary,
        )
        task = RunServerTask(config)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    _terminate_on_sigterm()
    try:
        return TaskOrchestrator().run(task)
    except HarnessError as e:
        print(f"\nError: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130


def cmd_fetch(args):
    """Execute the fetch command."""
    from runharness.cache import ArtifactCache
    from runharness.clean import remove_entry
    from runharness.errors import DownloadError

    try:
        config = _load(args, url=args.url)
        url = config.harness.url
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    cache = ArtifactCache(config.cache_dir, timeout=config.download_timeout)
    if args.refresh and remove_entry(cache, url):
        print(f"Removed cached copy of {url}")

    if cache.lookup(url) is not None:
        print("Using cached server artifact")
    else:
        print(f"Downloading server from {url}")

    try:
        path = cache.resolve(url)
    except DownloadError as e:
        print(f"\nError: {e}", file=sys.stderr)
        print("Make sure the configured url is correct", file=sys.stderr)
        return 1

    print(path)
    return 0


def cmd_clean(args):
    """Execute the clean command."""
    from runharness.clean import (
        list_cache_contents,
        get_cache_info_totals,
        clean_directory,
        format_size,
    )

    try:
        config = _load(args)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    cache_dir = config.cache_dir

    # Default to --list if no action specified
    if args.list or not args.all:
        list_cache_contents(cache_dir, config.url)
        return 0

    total_items, total_bytes = get_cache_info_totals(cache_dir)
    if total_items == 0:
        print("Nothing to clean.")
        return 0

    print("Will delete:")
    print(f"  Artifact cache: {total_items} items, {format_size(total_bytes)}")

    if args.dry_run:
        print("\n(Dry run - nothing deleted)")
        return 0

    # Confirm unless --force
    if not args.force:
        try:
            response = input("\nProceed? [y/N] ")
            if response.lower() not in ['y', 'yes']:
                print("Cancelled.")
                return 0
        except (EOFError, KeyboardInterrupt):
            print("\nCancelled.")
            return 0

    items, bytes_freed = clean_directory(cache_dir)
    print(f"Cleaned artifact cache: {items} items, {format_size(bytes_freed)}")
    print("Done.")
    return 0


def cmd_config(args):
    """Execute the config command."""
    from runharness.config import generate_sample_config

    if args.sample:
        print(generate_sample_config(), end="")
        return 0

    try:
        config = _load(args)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    print(f"url:              {config.url}")
    print(f"debug:            {config.debug}")
    print(f"cache_dir:        {config.cache_dir}")
    print(f"run_dir:          {config.run_dir}")
    print(f"plugin_artifact:  {config.plugin_artifact or '(not set)'}")
    print(f"runtime_name:     {config.runtime_name}")
    print(f"java_binary:      {config.java_binary}")
    print(f"download_timeout: {config.download_timeout:g}")
    return 0


def build_parser():
    parser = argparse.ArgumentParser(
        prog='runserver',
        description='Run-server harness - run a server runtime with your freshly built plugin',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  run      Download, stage and run the server with your plugin
  fetch    Download the server runtime into the cache
  clean    List or clear cached server artifacts
  config   Show the effective configuration

Examples:
  # Run the server with a plugin
  runserver run --plugin build/libs/my-plugin.jar

  # Attach a debugger on port 5005
  runserver run --plugin build/libs/my-plugin.jar --debug

  # Clear the artifact cache
  runserver clean --all

For help on a specific command:
  runserver <command> --help

Environment Variables:
  RUNSERVER_URL         Server runtime artifact URL
  RUNSERVER_DEBUG       Enable the debugger agent (1/0)
  RUNSERVER_CACHE_DIR   Artifact cache directory
  RUNSERVER_RUN_DIR     Run directory
  RUNSERVER_PLUGIN      Built plugin artifact
  RUNSERVER_JAVA        Java launcher
"""
    )

    parser.add_argument(
        '--version', '-V',
        action='version',
        version=f'%(prog)s {__version__}'
    )
    parser.add_argument(
        '--cache-dir', '-C',
        type=Path,
        metavar='DIR',
        help='Artifact cache directory (default: ~/.cache/runserver-harness/artifacts)'
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Show debug logging'
    )

    subparsers = parser.add_subparsers(dest='command', metavar='<command>')

    # Add subcommand parsers
    add_run_parser(subparsers)
    add_fetch_parser(subparsers)
    add_clean_parser(subparsers)
    add_config_parser(subparsers)

    return parser


def main(argv=None):
    """Main entry point for the runserver command."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )

    # Dispatch to command handler
    handlers = {
        'run': cmd_run,
        'fetch': cmd_fetch,
        'clean': cmd_clean,
        'config': cmd_config,
    }

    handler = handlers.get(args.command)
    if handler:
        return handler(args)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
