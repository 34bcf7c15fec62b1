"""
runetime-db command line.

Usage:
    runetime-db [--config PATH] [--verbose] <command> [args ...]
"""

import argparse
import shlex
import sys
from typing import List, Optional, TextIO

from .commands.dispatcher import USAGE, CommandDispatcher
from .core.config import VERSION, get_config_path, load_config, validate_config
from .core.errors import InvalidArgumentError, RunetimeError
from .util.logging import logger

SHELL_EXIT = ("exit", "quit")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="runetime-db",
        description="Sensor time-series store with daily compression and a vector index",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  init                              Create tables and indexes if absent
  insert <sensor_id> <ts> <value>   Store one reading (ISO-8601 timestamp)
  query <start> <end>               Print readings in [start, end]
  compress                          Roll readings past retention into daily buckets
  purge                             Delete raw readings already covered by buckets
  status                            Store, lease and vector index summary
  daemon                            Start the background compression daemon
  daemon-status / daemon-stop       Inspect or stop the daemon
  vector-add <id> <x> [<y> ...]     Add a vector to the index
  vector-search <x> [<y> ...] <k>   Print the k nearest vectors
  vector-reset [--discard-snapshot] Drop the index handle
  shell                             Read commands from stdin, one per line

Environment variables:
- RUNETIME_CONFIG=config.json (config file location)
- RUNETIME_LOG_LEVEL=WARNING (log threshold)
        """
    )
    parser.add_argument("--config", "-c", help="Path to the JSON config file")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log operations at INFO level")
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    parser.add_argument("command", help="Command to run")
    parser.add_argument("args", nargs=argparse.REMAINDER, help="Command arguments")
    return parser


def report_error(error: RunetimeError, err: TextIO = None) -> None:
    print(f"Error [{error.kind}]: {error}", file=err or sys.stderr)


def emit(lines: List[str], out: TextIO = None) -> None:
    for line in lines:
        print(line, file=out or sys.stdout)


def run_shell(dispatcher: CommandDispatcher, stdin: TextIO = None, out: TextIO = None, err: TextIO = None) -> int:
    """
    Dispatch commands read line by line until EOF or 'exit'.

    One dispatcher serves every line, so the vector index lives for the whole session.
    Returns the exit code of the last failed command, or 0.
    """
    stdin = stdin or sys.stdin
    out = out or sys.stdout
    interactive = stdin.isatty()
    last_error = 0

    while True:
        if interactive:
            print("> ", end="", file=out, flush=True)
        line = stdin.readline()
        if not line:
            break

        try:
            parts = shlex.split(line)
        except ValueError as e:
            report_error(InvalidArgumentError(f"Cannot parse command: {e}"), err)
            last_error = InvalidArgumentError.exit_code
            continue
        if not parts:
            continue
        if parts[0] in SHELL_EXIT:
            break

        try:
            emit(dispatcher.dispatch(parts[0], parts[1:]), out)
        except RunetimeError as e:
            report_error(e, err)
            last_error = e.exit_code

    return last_error


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    if args.verbose:
        logger.set_level("INFO")

    try:
        if args.command not in USAGE and args.command != "shell":
            raise InvalidArgumentError(f"Unknown command: {args.command}")

        config_path = get_config_path(args.config)
        config = load_config(config_path)
        for issue in validate_config(config):
            logger.warning(f"Config: {issue}")

        dispatcher = CommandDispatcher(config, config_path)
        if args.command == "shell":
            return run_shell(dispatcher)
        emit(dispatcher.dispatch(args.command, args.args))
    except RunetimeError as e:
        report_error(e)
        return e.exit_code

    return 0


def run():
    """Console-script entry point."""
    sys.exit(main())


if __name__ == "__main__":
    run()
