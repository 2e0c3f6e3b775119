import json
import sys
from urllib.parse import parse_qs, urlsplit

import pytest
import requests

from influx_shell import InfluxDBClient
from influx_shell.response import Response, Result, Series
from influx_shell.shell import CommandLine


class FakeResponse:
    """Just enough of requests.Response for the client."""

    def __init__(self, status_code=200, body=None, text=None, headers=None, reason="OK"):
        self.status_code = status_code
        self.reason = reason
        self.headers = headers or {}
        if text is None:
            text = json.dumps(body) if body is not None else ""
        self.text = text

    def json(self):
        return json.loads(self.text)

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} Error", response=self)


class FakeServer:
    """Records requests and answers them from per-endpoint handlers."""

    def __init__(self):
        self.calls = []
        self.handlers = {
            "/ping": lambda call: FakeResponse(204, headers={"X-Influxdb-Version": "0.9.4"}),
            "/query": lambda call: FakeResponse(200, {"results": [{}]}),
            "/write": lambda call: FakeResponse(204),
        }

    def __call__(self, method, url, **kwargs):
        parts = urlsplit(url)
        params = {k: v[0] for k, v in parse_qs(parts.query).items()}
        call = {"method": method, "path": parts.path, "params": params, "url": url}
        call.update(kwargs)
        self.calls.append(call)
        handler = self.handlers[parts.path]
        if isinstance(handler, Exception):
            raise handler
        return handler(call)

    def calls_to(self, path):
        return [c for c in self.calls if c["path"] == path]


@pytest.fixture
def server(monkeypatch):
    fake = FakeServer()
    monkeypatch.setattr(requests, "request", fake)
    return fake


@pytest.fixture
def client(server):
    return InfluxDBClient(host="db.example", port=8086)


class CurrentStdout:
    """Writes to whatever sys.stdout is at call time.

    capsys swaps sys.stdout between fixture setup and the test body, so a
    shell built in a fixture must not hold on to the setup-time stream.
    """

    def write(self, text):
        return sys.stdout.write(text)

    def flush(self):
        sys.stdout.flush()


@pytest.fixture
def shell(server, tmp_path, capsys):
    cl = CommandLine(
        host="db.example", port=8086, history_file=str(tmp_path / "history"), out=CurrentStdout()
    )
    cl.connect("")
    capsys.readouterr()
    return cl


@pytest.fixture
def cpu_response():
    return Response(
        results=[
            Result(
                series=[
                    Series(
                        name="cpu",
                        tags={"host": "a"},
                        columns=["time", "value"],
                        values=[[0, 1]],
                    )
                ]
            )
        ]
    )
