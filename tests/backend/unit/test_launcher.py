import sys

from gmconsole.desktop.launcher import build_console_url, main, parse_args, server_command, split_server_url


def test_parse_args_defaults() -> None:
    args = parse_args([])

    assert args.server == "http://127.0.0.1:8000"
    assert args.start_server is False
    assert args.browser is False


def test_split_server_url() -> None:
    assert split_server_url("http://localhost:9000/") == ("localhost", "9000")
    assert split_server_url("http://gm.local") == ("gm.local", "80")


def test_server_command_targets_console_app() -> None:
    command = server_command("http://127.0.0.1:8123")

    assert command[0] == sys.executable
    assert "gmconsole.backend.api:app" in command
    assert command[-2:] == ["--port", "8123"]


def test_build_console_url() -> None:
    assert build_console_url("http://127.0.0.1:8000/", "") == "http://127.0.0.1:8000/docs"
    assert build_console_url("http://127.0.0.1:8000", "enc-1") == "http://127.0.0.1:8000/api/encounters/enc-1"


def test_generate_token_prints_token_and_exits(capsys) -> None:
    assert main(["--generate-token"]) == 0

    printed = capsys.readouterr().out.strip()
    assert len(printed) >= 32
