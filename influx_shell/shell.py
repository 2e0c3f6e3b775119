import logging
import os
import signal
import sys
from getpass import getpass
from typing import IO, List, Optional

from tabulate import tabulate

from influx_shell import (
    InfluxDBClient,
    InfluxDBConnectionError,
    InfluxDBError,
    __version__,
    parse_connection_string,
)
from influx_shell.formatter import FORMATS, write_response
from influx_shell.utils import _series_extract_field, parse_insert

try:
    import readline
except ImportError:  # not available on every platform
    readline = None

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_FILE = "~/.influx_history"
PRECISIONS = ("rfc3339", "h", "m", "s", "ms", "u", "ns")
CONSISTENCY_LEVELS = ("any", "one", "quorum", "all")

HELP_TEXT = """Usage:
        connect <host:port>   connects to another node specified by host:port
        auth                  prompts for username and password
        pretty                toggles pretty print for the json format
        use <db_name>         sets current database
        format <format>       specifies the format of the server responses: json, csv, or column
        precision <format>    specifies the format of the timestamp: rfc3339, h, m, s, ms, u or ns
        consistency <level>   sets write consistency level: any, one, quorum, or all
        history               displays command history
        settings              outputs the current settings for the shell
        exit/quit             quits the influx shell

        show databases        show database names
        show series           show series information
        show measurements     show measurement information
        show tag keys         show tag key information
        show field keys       show field key information

        insert <point>        writes a point in line protocol to the current database
        insert into <db>.<rp> <point>
                              writes a point to the given database and retention policy
"""


def _strip_keyword(cmd: str, keyword: str) -> str:
    """Drops a leading keyword (any case) and surrounding whitespace."""
    cmd = cmd.strip()
    if cmd.lower().startswith(keyword):
        cmd = cmd[len(keyword) :]
    return cmd.strip()


class CommandLine:
    """
    Interactive shell session.

    Holds every per-session setting (connection, database, output format,
    precision, write consistency) and dispatches shell commands against them.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = InfluxDBClient.DEFAULT_PORT,
        username: Optional[str] = None,
        password: Optional[str] = None,
        database: str = "",
        retention_policy: str = "",
        ssl: bool = False,
        fmt: str = "column",
        pretty: bool = False,
        precision: str = "",
        write_consistency: str = "any",
        timeout: int = InfluxDBClient.DEFAULT_TIMEOUT,
        history_file: Optional[str] = DEFAULT_HISTORY_FILE,
        out: Optional[IO[str]] = None,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.database = database
        self.retention_policy = retention_policy
        self.ssl = ssl
        self.format = fmt
        self.pretty = pretty
        self.precision = precision
        self.write_consistency = write_consistency
        self.timeout = timeout
        self.history_file = os.path.expanduser(history_file) if history_file else None
        self.out = out or sys.stdout
        self.client: Optional[InfluxDBClient] = None
        self.server_version = ""
        self.history_lines: List[str] = []
        self.quit = False
        self._matches: List[str] = []
        self._reading = False

    def _print(self, text: str = "") -> None:
        self.out.write(text + "\n")

    # --- Commands ---

    def parse_command(self, cmd: str) -> bool:
        """
        Runs one line of shell input.

        Returns:
            False if the line was empty (nothing to record in history),
            True otherwise.
        """
        tokens = cmd.strip().lower().split()
        if not tokens:
            return False
        keyword = tokens[0]
        logger.debug(f"Dispatching command '{keyword}'")
        if keyword in ("exit", "quit"):
            self.quit = True
        elif keyword == "connect":
            try:
                self.connect(cmd)
            except (InfluxDBError, ValueError) as e:
                self._print(f"ERR: {e}")
        elif keyword == "auth":
            self.set_auth(cmd)
        elif keyword == "help":
            self.help()
        elif keyword == "history":
            self.history()
        elif keyword == "format":
            self.set_format(cmd)
        elif keyword == "precision":
            self.set_precision(cmd)
        elif keyword == "consistency":
            self.set_write_consistency(cmd)
        elif keyword == "settings":
            self.settings()
        elif keyword == "pretty":
            self.pretty = not self.pretty
            if self.pretty:
                self._print("Pretty print enabled")
            else:
                self._print("Pretty print disabled")
        elif keyword == "use":
            self.use(cmd)
        elif keyword == "insert":
            self.insert(cmd)
        else:
            self.execute_query(cmd)
        return True

    def connect(self, cmd: str) -> None:
        """
        Connects to the server named in `connect <host:port>`, or to the
        current host and port when none is given.

        Raises:
            ValueError: If the address cannot be parsed.
            InfluxDBConnectionError: If the server does not answer a ping.
        """
        path = _strip_keyword(cmd, "connect")
        if not path:
            if ":" in self.host:
                path = f"[{self.host}]:{self.port}"
            else:
                path = f"{self.host}:{self.port}"
        scheme, host, port = parse_connection_string(path, self.ssl)
        client = InfluxDBClient(
            host=host,
            port=port,
            username=self.username,
            password=self.password,
            timeout=self.timeout,
            scheme=scheme,
            precision=self.precision,
            user_agent=f"InfluxDBShell/{__version__}",
        )
        try:
            _, version = client.ping()
        except InfluxDBError as e:
            logger.debug(f"Ping failed: {e}")
            raise InfluxDBConnectionError(f"Failed to connect to {client.addr()}") from e
        self.client = client
        self.host = host
        self.port = port
        self.ssl = scheme == "https"
        self.server_version = version
        logger.info(f"Connected to {client.addr()} version {version}")

    def set_auth(self, cmd: str) -> None:
        """Sets credentials from `auth <username> <password>`, or prompts for them."""
        args = cmd.split()
        if len(args) == 3:
            self.username, self.password = args[1], args[2]
        else:
            self._reading = True
            try:
                self.username = input("username: ").strip()
                self.password = getpass("password: ")
            except (EOFError, KeyboardInterrupt) as e:
                self._print(f"Unable to process input: {e!r}")
                return
            finally:
                self._reading = False
        if self.client is not None:
            self.client.set_auth(self.username, self.password)

    def use(self, cmd: str) -> None:
        args = cmd.strip().rstrip(";").split(" ")
        if len(args) != 2:
            self._print(f"Could not parse database name from {cmd!r}.")
            return
        self.database = args[1]
        self._print(f"Using database {self.database}")

    def set_precision(self, cmd: str) -> None:
        precision = _strip_keyword(cmd, "precision").lower()
        if precision not in PRECISIONS:
            self._print(
                f"Unknown precision {precision!r}. Please use rfc3339, h, m, s, ms, u or ns."
            )
            return
        self.precision = "" if precision == "rfc3339" else precision
        if self.client is not None:
            self.client.set_precision(self.precision)

    def set_format(self, cmd: str) -> None:
        fmt = _strip_keyword(cmd, "format").lower()
        if fmt not in FORMATS:
            self._print(f"Unknown format {fmt!r}. Please use json, csv, or column.")
            return
        self.format = fmt

    def set_write_consistency(self, cmd: str) -> None:
        level = _strip_keyword(cmd, "consistency").lower()
        if level not in CONSISTENCY_LEVELS:
            self._print(
                f"Unknown consistency level {level!r}. Please use any, one, quorum, or all."
            )
            return
        self.write_consistency = level

    def settings(self) -> None:
        """Prints the current session settings."""
        if self.port > 0:
            host = f"{self.host}:{self.port}"
        else:
            host = self.host
        rows = [
            ["Host", host],
            ["Username", self.username or ""],
            ["Database", self.database],
            ["Retention Policy", self.retention_policy],
            ["Pretty", "true" if self.pretty else "false"],
            ["Format", self.format],
            ["Precision", self.precision or "rfc3339"],
            ["Write Consistency", self.write_consistency],
        ]
        self._print(tabulate(rows, tablefmt="plain", disable_numparse=True))
        self._print()

    def help(self) -> None:
        self.out.write(HELP_TEXT)

    def history(self) -> None:
        for line in self.history_lines:
            self._print(line)

    def insert(self, stmt: str) -> bool:
        """
        Writes the point of an INSERT command.

        `INSERT INTO <db>.<rp> <point>` and `INSERT INTO <rp> <point>` also
        switch the session's database and/or retention policy.

        Returns:
            True if the point was written.
        """
        try:
            database, retention_policy, point = parse_insert(stmt)
        except ValueError as e:
            self._print(f"ERR: {e}")
            return False
        if database is not None:
            self.database = database
            self._print(f"Using database {self.database}")
        if retention_policy is not None:
            self.retention_policy = retention_policy
            self._print(f"Using retention policy {self.retention_policy}")
        if self.client is None:
            self._print("ERR: not connected")
            return False
        try:
            self.client.write(
                point,
                database=self.database,
                retention_policy=self.retention_policy,
                precision="n",
                consistency=self.write_consistency,
            )
        except InfluxDBError as e:
            self._print(f"ERR: {e}")
            if not self.database:
                self._print("Note: error may be due to not setting a database or retention policy.")
                self._print('Please set a database with the command "use <database>" or')
                self._print("INSERT INTO <database>.<retention-policy> <point>")
            return False
        return True

    def execute_query(self, query: str) -> bool:
        """
        Runs a query and prints the formatted response.

        Returns:
            True if neither the request nor any statement failed.
        """
        if self.client is None:
            self._print("ERR: not connected")
            return False
        try:
            response = self.client.query(query, database=self.database)
        except InfluxDBError as e:
            self._print(f"ERR: {e}")
            return False
        write_response(response, self.format, self.pretty, self.out)
        err = response.error()
        if err:
            self._print(f"ERR: {err}")
            if not self.database:
                self._print("Warning: It is possible this error is due to not setting a database.")
                self._print('Please set a database with the command "use <database>".')
            return False
        return True

    def list_databases(self) -> List[str]:
        """Returns the server's database names, or [] if they cannot be fetched."""
        if self.client is None:
            return []
        try:
            response = self.client.query("SHOW DATABASES")
        except InfluxDBError as e:
            logger.debug(f"Could not list databases: {e}")
            return []
        if response.error() or not response.results or not response.results[0].series:
            return []
        try:
            return [str(v) for v in _series_extract_field(response.results[0].series[0], "name")]
        except ValueError as e:
            logger.debug(f"Unexpected SHOW DATABASES result: {e}")
            return []

    # --- Interactive loop ---

    def _complete(self, text: str, state: int) -> Optional[str]:
        """readline completer: database names after `use`, keywords otherwise."""
        if state == 0:
            buffer = readline.get_line_buffer().lstrip() if readline else text
            if buffer.lower().startswith("use "):
                options = self.list_databases()
            else:
                options = [
                    "connect", "auth", "pretty", "use", "format", "precision",
                    "consistency", "history", "settings", "exit", "quit", "insert", "help",
                ]
            self._matches = [o for o in options if o.startswith(text)]
        try:
            return self._matches[state]
        except IndexError:
            return None

    def load_history(self) -> None:
        if not self.history_file or not os.path.exists(self.history_file):
            return
        try:
            with open(self.history_file, "r", encoding="utf-8") as f:
                self.history_lines = [line.rstrip("\n") for line in f if line.strip()]
        except OSError as e:
            logger.warning(f"Could not read history file {self.history_file}: {e}")
            return
        if readline is not None:
            for line in self.history_lines:
                readline.add_history(line)
        logger.debug(f"Loaded {len(self.history_lines)} history line(s)")

    def record_history(self, line: str) -> None:
        self.history_lines.append(line)
        if not self.history_file:
            return
        try:
            with open(self.history_file, "a", encoding="utf-8") as f:
                f.write(line + "\n")
        except OSError as e:
            self._print(f"There was an error writing history file: {e}")

    def _handle_interrupt(self, signum, frame) -> None:
        # a command already running finishes; the loop stops before the next read
        if self._reading:
            raise KeyboardInterrupt
        logger.debug("Interrupt received, quitting after the current command")
        self.quit = True

    def run(self) -> int:
        """
        Reads commands from the `> ` prompt until exit, EOF or Ctrl-C.

        Ctrl-C at the prompt quits at once; Ctrl-C while a command runs lets
        it finish and quits before the next prompt.

        Expects a connected session. Returns the process exit status.
        """
        self._print(f"Connected to {self.client.addr()} version {self.server_version}")
        self._print(f"InfluxDB shell {__version__}")
        self.load_history()
        if readline is not None:
            readline.set_completer(self._complete)
            readline.parse_and_bind("tab: complete")
        previous_handler = signal.signal(signal.SIGINT, self._handle_interrupt)
        try:
            while not self.quit:
                self._reading = True
                try:
                    line = input("> ")
                except EOFError:
                    self._print()
                    break
                except KeyboardInterrupt:
                    self._print()
                    break
                finally:
                    self._reading = False
                if self.parse_command(line):
                    self.record_history(line)
        finally:
            signal.signal(signal.SIGINT, previous_handler)
        return 0
