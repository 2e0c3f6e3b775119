# influx_shell/__init__.py
import requests
import json
import logging
import os
import time
from urllib.parse import urlencode, urljoin
from typing import List, Optional, Dict, Any, Tuple, Union
from influx_shell.response import Response

# --------------------
# consts
# --------------------

__version__ = "0.9.4"
DEFAULT_CONFIG_PATH = "~/.influx-shell/config.json"
CLI_EPILOG = """This CLI can also be used as a Python library.

Settings are read from ~/.influx-shell/config.json when it exists;
command-line options take precedence over the file.

Enable shell completion with this command:
    eval "$(uvx --from argcomplete register-python-argcomplete %(prog)s)"
"""


# --------------------
# logger
# --------------------

logger = logging.getLogger(__name__)

# --- Custom Exceptions ---


class InfluxDBError(Exception):
    """Base exception for influx_shell errors."""

    pass


class InfluxDBConnectionError(InfluxDBError):
    """Raised for network-related errors (connection, timeout)."""

    pass


class InfluxDBAPIError(InfluxDBError):
    """Raised for errors reported by the server API (e.g., bad query, failed write)."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_data: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response_data = response_data

    def __str__(self) -> str:
        if self.status_code:
            return f"HTTP {self.status_code}: {super().__str__()}"
        return super().__str__()


class InfluxDBFormatError(InfluxDBError):
    """Raised when a response cannot be rendered in the requested format."""

    pass


# --- Config ---


def load_config(config_path: Optional[str] = None, strict: bool = False) -> Dict[str, Any]:
    """
    Loads shell settings from a JSON config file.

    Args:
        config_path: File to read. Defaults to ~/.influx-shell/config.json.
        strict: Raise instead of logging when the file is missing or invalid.

    Returns:
        The parsed settings, or an empty dict.
    """
    path = os.path.expanduser(config_path or DEFAULT_CONFIG_PATH)
    if not os.path.exists(path):
        if strict:
            raise FileNotFoundError(f"Config file not found: {path}")
        return {}
    try:
        with open(path, "r") as cf:
            config = json.load(cf)
        if not isinstance(config, dict):
            raise ValueError("top-level JSON value must be an object")
        return config
    except (OSError, ValueError) as e:
        if strict:
            raise
        logger.warning(f"Error loading config file {path}: {e}")
        return {}


def detect_scheme_in_host(host_str: str) -> Tuple[Optional[str], str]:
    """
    Detect if the host string already includes a URL scheme (http:// or https://).
    Returns a tuple of (scheme, actual_host) if scheme is detected, or (None, host_str) if not.
    """
    if not host_str:
        return (None, host_str)
    if host_str.startswith("http://"):
        return ("http", host_str[7:])
    elif host_str.startswith("https://"):
        return ("https", host_str[8:])
    return (None, host_str)


def parse_connection_string(path: str, ssl: bool = False) -> Tuple[str, str, int]:
    """
    Parses `[scheme://]host[:port]` into (scheme, host, port).

    Raises:
        ValueError: If the port is not a positive integer.
    """
    scheme, rest = detect_scheme_in_host(path.strip())
    if scheme is None:
        scheme = "https" if ssl else "http"
    rest = rest.rstrip("/")
    host, port = rest, InfluxDBClient.DEFAULT_PORT
    if rest.startswith("["):  # [ipv6]:port
        bracket_end = rest.find("]")
        host = rest[1:bracket_end]
        port_part = rest[bracket_end + 1 :].lstrip(":")
        if port_part:
            port = _parse_port(port_part)
    elif rest.count(":") == 1:
        host, port_part = rest.split(":")
        port = _parse_port(port_part)
    if not host:
        host = "localhost"
    return scheme, host, port


def _parse_port(port_str: str) -> int:
    try:
        port = int(port_str)
    except ValueError:
        raise ValueError(f"invalid port number \"{port_str}\"")
    if port <= 0:
        raise ValueError(f"invalid port number \"{port_str}\"")
    return port


# --- Client Class ---


class InfluxDBClient:
    """
    A client for the InfluxDB HTTP API (/ping, /query, /write).
    """

    DEFAULT_PORT = 8086
    DEFAULT_TIMEOUT = 60  # Default request timeout in seconds

    def __init__(
        self,
        host: str = "localhost",
        port: int = DEFAULT_PORT,
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout: int = DEFAULT_TIMEOUT,
        scheme: str = "http",
        precision: str = "",
        user_agent: Optional[str] = None,
    ):
        """
        Initializes the InfluxDB HTTP API client.

        Args:
            host: Server host.
            port: HTTP API port.
            username: Username for basic authentication (optional).
            password: Password for basic authentication (optional).
            timeout: Request timeout in seconds.
            scheme: URL scheme (http or https).
            precision: Epoch precision for query timestamps ('' means RFC3339).
            user_agent: User-Agent header sent with every request.
        """
        if not host:
            raise ValueError("Host cannot be empty")
        if not isinstance(port, int) or port <= 0:
            raise ValueError("Port must be a positive integer")

        self.host = host
        self.port = port
        self.scheme = scheme
        self.base_url = f"{scheme}://{host}:{port}/"
        self.timeout = timeout
        self.username = username
        self.password = password
        self.precision = precision
        self.user_agent = user_agent or f"InfluxDBShell/{__version__}"
        logger.debug(f"InfluxDBClient initialized for {self.base_url}")

    @property
    def auth(self) -> Optional[Tuple[str, str]]:
        return (self.username, self.password or "") if self.username else None

    def addr(self) -> str:
        """Returns the server address as host:port."""
        if ":" in self.host:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"

    def set_auth(self, username: Optional[str], password: Optional[str]) -> None:
        self.username = username or None
        self.password = password

    def set_precision(self, precision: str) -> None:
        self.precision = precision

    def _build_url(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> str:
        """Builds the full URL for an API endpoint."""
        url = urljoin(self.base_url, endpoint.lstrip("/"))
        if params:
            # Filter out None values before encoding
            filtered_params = {k: v for k, v in params.items() if v is not None}
            if filtered_params:
                url += "?" + urlencode(filtered_params)
        return url

    def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        data: Optional[Any] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> requests.Response:
        """
        Makes an HTTP request to the server.

        Args:
            method: HTTP method (GET, POST).
            endpoint: API endpoint path (e.g., '/query').
            params: URL query parameters. None values are dropped.
            data: Request body.
            headers: Extra HTTP headers.

        Returns:
            requests.Response object.

        Raises:
            InfluxDBConnectionError: If a connection or timeout error occurs.
            InfluxDBAPIError: If the API returns an error status code.
            InfluxDBError: For other unexpected errors during the request.
        """
        full_url = self._build_url(endpoint, params)
        req_headers = {"User-Agent": self.user_agent}
        req_headers.update(headers or {})

        logger.debug(f"Request: {method} {full_url}")
        if self.auth:
            logger.debug("Using basic authentication.")
        if params:
            logger.debug(f"Params: {params}")

        try:
            response = requests.request(
                method,
                full_url,
                auth=self.auth,
                data=data,
                headers=req_headers,
                timeout=self.timeout,
            )
            logger.debug(f"Response Status: {response.status_code}")
            response.raise_for_status()  # Raise HTTPError for 4xx/5xx
            return response

        except requests.exceptions.ConnectionError as e:
            msg = f"Could not connect to InfluxDB at {self.base_url}. Details: {e}"
            logger.debug(msg)
            raise InfluxDBConnectionError(msg) from e
        except requests.exceptions.Timeout as e:
            msg = f"Request timed out after {self.timeout} seconds."
            logger.debug(msg)
            raise InfluxDBConnectionError(msg) from e
        except requests.exceptions.HTTPError as e:
            status_code = e.response.status_code
            reason = e.response.reason
            error_data = None
            err_msg = reason or "request failed"
            try:
                error_data = e.response.json()
                if isinstance(error_data, dict) and "error" in error_data:
                    err_msg = error_data["error"]
                logger.debug(f"Response Body: {json.dumps(error_data)}")
            except ValueError:
                body = e.response.text.strip()
                if body:
                    err_msg = body
                logger.debug(f"Raw Response Body: {e.response.text}")
            logger.info(f"InfluxDB API Error: HTTP {status_code}: {err_msg}")
            raise InfluxDBAPIError(
                err_msg, status_code=status_code, response_data=error_data
            ) from e
        except requests.exceptions.RequestException as e:
            msg = f"An unexpected request error occurred: {e}"
            logger.warning(msg)
            raise InfluxDBError(msg) from e

    def ping(self) -> Tuple[float, str]:
        """
        Checks that the server is up.

        Returns:
            A (round-trip seconds, server version) tuple. The version is taken
            from the X-Influxdb-Version header and is empty if absent.

        Raises:
            InfluxDBError: For API or connection issues.
        """
        start = time.monotonic()
        response = self._request("GET", "/ping")
        elapsed = time.monotonic() - start
        version = response.headers.get("X-Influxdb-Version", "")
        logger.debug(f"Ping {self.addr()}: {elapsed:.3f}s, version '{version}'")
        return elapsed, version

    def query(
        self,
        command: str,
        database: Optional[str] = None,
        precision: Optional[str] = None,
    ) -> Response:
        """
        Runs one or more statements through the /query endpoint.

        Args:
            command: The query text.
            database: Database the statements run against (optional).
            precision: Epoch precision for timestamps; defaults to the
                       client's precision. Empty means RFC3339 strings.

        Returns:
            The decoded Response. Statement errors are carried inside it.

        Raises:
            InfluxDBError: For API, connection, or JSON parsing issues.
        """
        if not command or not isinstance(command, str):
            raise ValueError("Query must be a non-empty string.")
        epoch = self.precision if precision is None else precision
        params = {
            "q": command,
            "db": database or None,
            "epoch": epoch or None,
        }
        response = self._request("GET", "/query", params=params)
        try:
            return Response.from_dict(response.json())
        except (ValueError, TypeError) as e:
            msg = f"Failed to decode JSON response from /query. Content: {response.text[:200]}"
            logger.error(msg)
            raise InfluxDBError(msg) from e

    def write(
        self,
        points: Union[str, List[str]],
        database: Optional[str] = None,
        retention_policy: Optional[str] = None,
        precision: Optional[str] = None,
        consistency: Optional[str] = None,
    ) -> None:
        """
        Writes line-protocol points through the /write endpoint.

        Args:
            points: One line-protocol string, or a list of them.
            database: Target database.
            retention_policy: Target retention policy (optional).
            precision: Timestamp precision of the points (e.g. 'n', 's').
            consistency: Write consistency level (any, one, quorum, all).

        Raises:
            InfluxDBError: For API or connection issues.
        """
        if isinstance(points, str):
            body = points
        else:
            body = "\n".join(points)
        params = {
            "db": database or "",
            "rp": retention_policy or None,
            "precision": precision or None,
            "consistency": consistency or None,
        }
        logger.debug(f"Writing {body.count(chr(10)) + 1} line(s) to '{database}'")
        self._request(
            "POST",
            "/write",
            params=params,
            data=body.encode("utf-8"),
            headers={"Content-Type": "text/plain; charset=utf-8"},
        )
