#!/usr/bin/env python3
# PYTHON_ARGCOMPLETE_OK
# --------------------
# imports
# --------------------
import argparse
import sys
import json
import logging
import os
from getpass import getpass
from typing import Any, Dict, List, Optional
import argcomplete

from influx_shell import (
    InfluxDBClient,
    InfluxDBError,
    DEFAULT_CONFIG_PATH,
    __version__,
    CLI_EPILOG,
    load_config,
)
from influx_shell.formatter import FORMATS
from influx_shell.importer import Importer
from influx_shell.shell import CONSISTENCY_LEVELS, PRECISIONS, CommandLine

# --- Configuration ---
DEFAULT_HOST = "localhost"
DEFAULT_PORT = InfluxDBClient.DEFAULT_PORT
DEFAULTS: Dict[str, Any] = {
    "host": DEFAULT_HOST,
    "port": DEFAULT_PORT,
    "username": None,
    "password": None,
    "database": "",
    "ssl": False,
    "timeout": InfluxDBClient.DEFAULT_TIMEOUT,
    "format": "column",
    "pretty": False,
    "precision": "rfc3339",
    "consistency": "any",
}
# -------------------
# --- Logging Setup ---
logging.basicConfig(
    level=logging.WARNING, format="%(levelname)s: %(message)s", stream=sys.stderr
)
logger = logging.getLogger(__name__)
# ---------------------


def handle_gen_config(args) -> None:
    """Generates a default config file (~/.influx-shell/config.json unless --config is given)."""
    config_file = os.path.expanduser(args.config or DEFAULT_CONFIG_PATH)
    default_config = {
        "host": DEFAULT_HOST,
        "port": DEFAULT_PORT,
        "username": "",
        "password": "",
        "ssl": False,
        "timeout": InfluxDBClient.DEFAULT_TIMEOUT,
        "database": "",
        "format": "column",
        "precision": "rfc3339",
    }
    try:
        config_dir = os.path.dirname(config_file)
        if config_dir:
            os.makedirs(config_dir, exist_ok=True)
        with open(config_file, "w") as cf:
            json.dump(default_config, cf, indent=2)
        print(f"Default config file generated at {config_file}")
    except OSError as e:
        print(f"Error generating config file: {e}")
        sys.exit(1)
    sys.exit(0)


def resolve_settings(args: argparse.Namespace, config: Dict[str, Any]) -> Dict[str, Any]:
    """Merges settings: command-line values, then the config file, then defaults."""
    settings = {}
    for key, default in DEFAULTS.items():
        cli_value = getattr(args, key, None)
        if cli_value is not None:
            settings[key] = cli_value
        elif key in config and config[key] not in (None, ""):
            settings[key] = config[key]
        else:
            settings[key] = default
    return settings


def _validate_settings(parser: argparse.ArgumentParser, settings: Dict[str, Any]) -> None:
    if settings["format"] not in FORMATS:
        parser.error(f"invalid format {settings['format']!r} (choose from json, csv, column)")
    if settings["precision"] not in PRECISIONS:
        parser.error(
            f"invalid precision {settings['precision']!r} (choose from {', '.join(PRECISIONS)})"
        )
    if settings["consistency"] not in CONSISTENCY_LEVELS:
        parser.error(
            f"invalid consistency {settings['consistency']!r} (choose from {', '.join(CONSISTENCY_LEVELS)})"
        )
    if not isinstance(settings["port"], int) or settings["port"] <= 0:
        parser.error(f"invalid port {settings['port']!r}")


def _add_parser_global(parser: argparse.ArgumentParser):
    """Adds the shell's arguments to the main parser."""
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )
    parser.add_argument("-H", "--host", default=None, help="InfluxDB server host.")
    parser.add_argument("--port", type=int, default=None, help="InfluxDB HTTP API port.")
    parser.add_argument(
        "-u", "--username", default=None, help="Username for basic authentication."
    )
    parser.add_argument(
        "-p",
        "--password",
        nargs="?",
        const="",
        default=None,
        help="Password for basic authentication. Given without a value, the password is prompted for securely.",
    )
    parser.add_argument(
        "-d", "--database", default=None, help="Database to use for queries and inserts."
    )
    parser.add_argument(
        "--ssl",
        action="store_true",
        default=None,
        help="Use https for requests.",
    )
    parser.add_argument(
        "--timeout", type=int, default=None, help="Request timeout in seconds."
    )
    parser.add_argument(
        "-f",
        "--format",
        default=None,
        choices=list(FORMATS),
        help="Format of server responses (default: column).",
    )
    parser.add_argument(
        "--pretty",
        action="store_true",
        default=None,
        help="Turns on pretty print for the json format.",
    )
    parser.add_argument(
        "--precision",
        default=None,
        choices=list(PRECISIONS),
        help="Format of the timestamp (default: rfc3339).",
    )
    parser.add_argument(
        "--consistency",
        default=None,
        choices=list(CONSISTENCY_LEVELS),
        help="Write consistency level (default: any).",
    )
    parser.add_argument(
        "-e",
        "--execute",
        default=None,
        help="Execute a command and quit.",
    )
    import_group = parser.add_argument_group("import")
    import_group.add_argument(
        "--import",
        dest="import_file",
        action="store_true",
        help="Import a previous database export from --path.",
    )
    import_group.add_argument(
        "--path", default=None, help="Path to the file to import."
    )
    import_group.add_argument(
        "--compressed",
        action="store_true",
        help="The import file is gzip-compressed.",
    )
    import_group.add_argument(
        "--pps",
        type=int,
        default=0,
        help="Points per second the import will allow (default: 0, unlimited).",
    )
    log_level_group = parser.add_mutually_exclusive_group()
    log_level_group.add_argument(
        "-i",
        "--info",
        action="store_true",
        help="Use info level logging (default is WARNING).",
    )
    log_level_group.add_argument(
        "-D",
        "--debug",
        action="store_true",
        help="Enable debug level logging to stderr.",
    )
    parser.add_argument(
        "--config",
        help="Path to a specific config JSON file (overrides default ~/.influx-shell/config.json).",
        default=None,
    )
    parser.add_argument(
        "--gen-config",
        action="store_true",
        help="Write a default config file (to --config if given) and exit.",
    )


def build_parser() -> argparse.ArgumentParser:
    """Builds the argument parser."""
    parser = argparse.ArgumentParser(
        prog="influx",
        description="Interactive shell for InfluxDB.\nLogs to stderr, outputs data to stdout.",
        formatter_class=argparse.RawTextHelpFormatter,
        add_help=False,
        epilog=CLI_EPILOG,
    )
    parser.add_argument(
        "-h",
        "--help",
        action="help",
        default=argparse.SUPPRESS,
        help="Show this help message and exit.",
    )
    _add_parser_global(parser)
    return parser


def _configure_logging(args: argparse.Namespace) -> None:
    log_level = logging.WARNING
    if args.info:
        log_level = logging.INFO
    elif args.debug:
        log_level = logging.DEBUG
    logger.setLevel(log_level)
    # Configure logging for the influx_shell library as well
    library_logger = logging.getLogger("influx_shell")
    library_logger.setLevel(log_level)
    if log_level == logging.DEBUG:
        logger.debug("Debug logging enabled for CLI and library.")


def main(argv: Optional[List[str]] = None):
    """Main entry point for the CLI."""
    parser = build_parser()
    argcomplete.autocomplete(parser)
    args = parser.parse_args(argv)
    _configure_logging(args)

    if args.gen_config:
        handle_gen_config(args)

    # --- Config file ---
    try:
        config = load_config(args.config, strict=bool(args.config))
    except FileNotFoundError:
        logger.error(f"Config file not found: {args.config}")
        sys.exit(1)
    except (OSError, ValueError) as conf_err:
        logger.error(f"Error parsing config file {args.config}: {conf_err}")
        sys.exit(1)
    settings = resolve_settings(args, config)
    _validate_settings(parser, settings)

    if args.import_file and not args.path:
        parser.error("--path is required when using --import.")
    if args.pps < 0:
        parser.error("--pps must be a non-negative integer.")

    # --- Password prompt ---
    # -p without a value asks for the password even if the config has one
    if args.password == "":
        try:
            settings["password"] = getpass("password: ")
        except (EOFError, KeyboardInterrupt):
            logger.info("\nOperation cancelled during password input.")
            sys.exit(130)

    precision = settings["precision"]
    shell = CommandLine(
        host=settings["host"],
        port=settings["port"],
        username=settings["username"] or None,
        password=settings["password"],
        database=settings["database"],
        ssl=bool(settings["ssl"]),
        fmt=settings["format"],
        pretty=bool(settings["pretty"]),
        precision="" if precision == "rfc3339" else precision,
        write_consistency=settings["consistency"],
        timeout=settings["timeout"],
    )

    try:
        try:
            shell.connect("")
        except (InfluxDBError, ValueError) as e:
            logger.debug(f"Connection failed: {e}")
            sys.stderr.write(
                f"Failed to connect to {settings['host']}:{settings['port']}\n"
                "Please check your connection settings and ensure 'influxd' is running.\n"
            )
            sys.exit(1)

        if args.execute is not None:
            ok = shell.execute_query(args.execute)
            sys.exit(0 if ok else 1)

        if args.import_file:
            importer = Importer(
                shell.client,
                args.path,
                compressed=args.compressed,
                precision=shell.precision,
                write_consistency=shell.write_consistency,
                pps=args.pps,
            )
            try:
                importer.run()
            except (InfluxDBError, OSError) as e:
                sys.stderr.write(f"ERROR: {e}\n")
                sys.exit(1)
            sys.exit(0)

        sys.exit(shell.run())
    except KeyboardInterrupt:
        logger.info("\nOperation cancelled by user.")
        sys.exit(130)


if __name__ == "__main__":
    main()
