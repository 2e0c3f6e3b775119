import builtins
import signal

import pytest

from influx_shell import InfluxDBConnectionError
from influx_shell import shell as shell_module
from influx_shell.shell import CommandLine
from tests.conftest import FakeResponse

CPU_BODY = {
    "results": [
        {
            "series": [
                {
                    "name": "cpu",
                    "tags": {"host": "a"},
                    "columns": ["time", "value"],
                    "values": [[0, 1]],
                }
            ]
        }
    ]
}


class TestConnect:
    def test_connect_uses_current_host(self, shell, server):
        assert shell.server_version == "0.9.4"
        assert server.calls[0]["url"] == "http://db.example:8086/ping"

    def test_connect_to_other_host(self, shell, server):
        shell.parse_command("connect other.example:9999")
        assert server.calls[-1]["url"] == "http://other.example:9999/ping"
        assert (shell.host, shell.port) == ("other.example", 9999)
        assert shell.client.addr() == "other.example:9999"

    def test_failed_connect_keeps_previous_client(self, shell, server, capsys):
        previous = shell.client
        server.handlers["/ping"] = lambda call: FakeResponse(500, text="down")
        shell.parse_command("connect other.example:9999")
        assert shell.client is previous
        assert "ERR: Failed to connect to other.example:9999" in capsys.readouterr().out

    def test_connect_raises(self, server, tmp_path):
        server.handlers["/ping"] = lambda call: FakeResponse(500, text="down")
        cl = CommandLine(host="db.example", history_file=None)
        with pytest.raises(InfluxDBConnectionError):
            cl.connect("")


class TestSettings:
    def test_use(self, shell, capsys):
        shell.parse_command("use mydb;")
        assert shell.database == "mydb"
        assert capsys.readouterr().out == "Using database mydb\n"

    def test_use_without_name(self, shell, capsys):
        shell.parse_command("use")
        assert shell.database == ""
        assert "Could not parse database name" in capsys.readouterr().out

    def test_format(self, shell, capsys):
        shell.parse_command("format CSV")
        assert shell.format == "csv"
        shell.parse_command("format xml")
        assert shell.format == "csv"
        assert "Unknown format 'xml'" in capsys.readouterr().out

    def test_precision(self, shell, capsys):
        shell.parse_command("precision ms")
        assert shell.precision == "ms"
        assert shell.client.precision == "ms"
        shell.parse_command("precision rfc3339")
        assert shell.precision == ""
        shell.parse_command("precision weeks")
        assert "Unknown precision 'weeks'" in capsys.readouterr().out

    def test_consistency(self, shell, capsys):
        shell.parse_command("consistency quorum")
        assert shell.write_consistency == "quorum"
        shell.parse_command("consistency some")
        assert shell.write_consistency == "quorum"
        assert "Unknown consistency level 'some'" in capsys.readouterr().out

    def test_pretty_toggles(self, shell, capsys):
        shell.parse_command("pretty")
        shell.parse_command("pretty")
        assert capsys.readouterr().out == "Pretty print enabled\nPretty print disabled\n"
        assert shell.pretty is False

    def test_auth_with_arguments(self, shell, server):
        shell.parse_command("auth admin secret")
        assert (shell.username, shell.password) == ("admin", "secret")
        shell.parse_command("show databases")
        assert server.calls[-1]["auth"] == ("admin", "secret")

    def test_auth_prompts(self, shell, monkeypatch):
        monkeypatch.setattr(builtins, "input", lambda prompt: " admin ")
        monkeypatch.setattr(shell_module, "getpass", lambda prompt: "secret")
        shell.parse_command("auth")
        assert (shell.username, shell.password) == ("admin", "secret")

    def test_settings(self, shell, capsys):
        shell.parse_command("use mydb")
        capsys.readouterr()
        shell.parse_command("settings")
        out = capsys.readouterr().out.splitlines()
        assert out[0].split() == ["Host", "db.example:8086"]
        assert out[2].split() == ["Database", "mydb"]
        assert out[-1] == ""

    def test_help(self, shell, capsys):
        shell.parse_command("help")
        assert "connect <host:port>" in capsys.readouterr().out

    def test_empty_line(self, shell, server):
        calls = len(server.calls)
        assert shell.parse_command("   ") is False
        assert len(server.calls) == calls

    def test_exit(self, shell):
        assert shell.parse_command("exit") is True
        assert shell.quit is True


class TestQuery:
    def test_query_sends_database(self, shell, server, capsys):
        server.handlers["/query"] = lambda call: FakeResponse(200, CPU_BODY)
        shell.parse_command("use mydb")
        shell.parse_command("format csv")
        capsys.readouterr()
        assert shell.execute_query("SELECT * FROM cpu") is True
        assert server.calls[-1]["params"] == {"q": "SELECT * FROM cpu", "db": "mydb"}
        assert capsys.readouterr().out == "name,tags,time,value\ncpu,host=a,0,1\n"

    def test_unknown_command_is_a_query(self, shell, server):
        shell.parse_command("SHOW MEASUREMENTS")
        assert server.calls[-1]["params"]["q"] == "SHOW MEASUREMENTS"

    def test_json_output(self, shell, server, capsys):
        server.handlers["/query"] = lambda call: FakeResponse(200, CPU_BODY)
        shell.parse_command("format json")
        capsys.readouterr()
        shell.parse_command("SELECT * FROM cpu")
        out = capsys.readouterr().out
        assert out.count("\n") == 1
        assert out.startswith('{"results":')

    def test_response_error_with_hint(self, shell, server, capsys):
        server.handlers["/query"] = lambda call: FakeResponse(
            200, {"results": [{"error": "database name required"}]}
        )
        assert shell.execute_query("SELECT * FROM cpu") is False
        out = capsys.readouterr().out
        assert "ERR: database name required" in out
        assert "Warning: It is possible this error is due to not setting a database." in out

    def test_response_error_without_hint(self, shell, server, capsys):
        server.handlers["/query"] = lambda call: FakeResponse(
            200, {"results": [{"error": "measurement not found"}]}
        )
        shell.parse_command("use mydb")
        capsys.readouterr()
        assert shell.execute_query("SELECT * FROM cpu") is False
        out = capsys.readouterr().out
        assert "ERR: measurement not found" in out
        assert "Warning" not in out

    def test_request_error(self, shell, server, capsys):
        server.handlers["/query"] = lambda call: FakeResponse(
            400, {"error": "error parsing query"}, reason="Bad Request"
        )
        assert shell.execute_query("SELEC") is False
        assert capsys.readouterr().out == "ERR: HTTP 400: error parsing query\n"

    def test_not_connected(self, server, capsys):
        cl = CommandLine(history_file=None)
        assert cl.execute_query("SHOW DATABASES") is False
        assert "ERR: not connected" in capsys.readouterr().out

    def test_list_databases(self, shell, server):
        server.handlers["/query"] = lambda call: FakeResponse(
            200,
            {"results": [{"series": [{"name": "databases", "columns": ["name"], "values": [["_internal"], ["mydb"]]}]}]},
        )
        assert shell.list_databases() == ["_internal", "mydb"]

    def test_list_databases_on_error(self, shell, server):
        server.handlers["/query"] = lambda call: FakeResponse(500, text="boom")
        assert shell.list_databases() == []


class TestInsert:
    def test_insert_into_database_and_rp(self, shell, server, capsys):
        assert shell.insert("INSERT INTO mydb.rp cpu value=1") is True
        assert (shell.database, shell.retention_policy) == ("mydb", "rp")
        out = capsys.readouterr().out
        assert out == "Using database mydb\nUsing retention policy rp\n"
        call = server.calls_to("/write")[-1]
        assert call["params"] == {"db": "mydb", "rp": "rp", "precision": "n", "consistency": "any"}
        assert call["data"] == b"cpu value=1"

    def test_insert_into_rp_keeps_database(self, shell, server, capsys):
        shell.parse_command("use mydb")
        shell.parse_command("insert into rp cpu value=1")
        assert (shell.database, shell.retention_policy) == ("mydb", "rp")

    def test_plain_insert(self, shell, server):
        shell.parse_command("use mydb")
        shell.parse_command("INSERT cpu value=1")
        call = server.calls_to("/write")[-1]
        assert call["data"] == b" cpu value=1"
        assert call["params"]["db"] == "mydb"

    def test_insert_error_with_hint(self, shell, server, capsys):
        server.handlers["/write"] = lambda call: FakeResponse(
            404, {"error": "database not found"}, reason="Not Found"
        )
        assert shell.insert("INSERT cpu value=1") is False
        out = capsys.readouterr().out.splitlines()
        assert out[0] == "ERR: HTTP 404: database not found"
        assert out[1] == "Note: error may be due to not setting a database or retention policy."
        assert out[3] == "INSERT INTO <database>.<retention-policy> <point>"

    def test_insert_bad_keyword(self, shell, capsys):
        assert shell.insert("INSERTS cpu value=1") is False
        assert capsys.readouterr().out == "ERR: found INSERTS, expected INSERT\n"

    def test_insert_into_empty_database_name(self, shell, server, capsys):
        assert shell.insert("INSERT INTO .rp cpu value=1") is True
        assert (shell.database, shell.retention_policy) == ("", "rp")
        call = server.calls_to("/write")[-1]
        assert call["data"] == b"cpu value=1"
        assert call["params"]["rp"] == "rp"


class TestHistoryAndLoop:
    def test_run_reads_until_exit(self, shell, server, monkeypatch, capsys):
        lines = iter(["use mydb", "", "SHOW MEASUREMENTS", "exit"])
        monkeypatch.setattr(builtins, "input", lambda prompt: next(lines))
        assert shell.run() == 0
        out = capsys.readouterr().out
        assert out.startswith("Connected to db.example:8086 version 0.9.4\n")
        assert shell.history_lines == ["use mydb", "SHOW MEASUREMENTS", "exit"]
        with open(shell.history_file) as f:
            assert f.read() == "use mydb\nSHOW MEASUREMENTS\nexit\n"

    def test_run_stops_on_eof(self, shell, monkeypatch):
        def fake_input(prompt):
            raise EOFError

        monkeypatch.setattr(builtins, "input", fake_input)
        assert shell.run() == 0

    def test_run_stops_on_interrupt(self, shell, monkeypatch):
        def fake_input(prompt):
            raise KeyboardInterrupt

        monkeypatch.setattr(builtins, "input", fake_input)
        assert shell.run() == 0

    def test_interrupt_during_query_finishes_it(self, shell, server, monkeypatch, capsys):
        def interrupted_query(call):
            signal.raise_signal(signal.SIGINT)
            return FakeResponse(200, {"results": [{"series": [{"columns": ["v"], "values": [[1]]}]}]})

        server.handlers["/query"] = interrupted_query
        lines = iter(["SELECT v FROM cpu", "SHOW DATABASES"])
        monkeypatch.setattr(builtins, "input", lambda prompt: next(lines))
        handler_before = signal.getsignal(signal.SIGINT)

        assert shell.run() == 0
        assert capsys.readouterr().out.endswith("v\n1\n\n")
        assert len(server.calls_to("/query")) == 1
        assert shell.history_lines == ["SELECT v FROM cpu"]
        assert signal.getsignal(signal.SIGINT) == handler_before

    def test_history_is_loaded_and_shown(self, shell, capsys):
        with open(shell.history_file, "w") as f:
            f.write("show databases\nuse mydb\n")
        shell.load_history()
        shell.parse_command("history")
        assert capsys.readouterr().out == "show databases\nuse mydb\n"
