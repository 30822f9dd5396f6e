import os
import shutil
import socket
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path

import pytest

from vessel import cli
from vessel.api import (
    BuildRequest,
    CommitRequest,
    ContainersResponse,
    ErrorResponse,
    ImagesRequest,
    ImagesResponse,
    LogsRequest,
    OkResponse,
    PsRequest,
    PullRequest,
    RmRequest,
    RunRequest,
    StopRequest,
    decode_request,
    encode_response,
)


@contextmanager
def _fake_daemon(response):
    directory = tempfile.mkdtemp(prefix="vcli")
    path = os.path.join(directory, "d.sock")
    listener = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    listener.bind(path)
    listener.listen(1)
    received = []

    def serve():
        conn, _ = listener.accept()
        with conn:
            data = b""
            while chunk := conn.recv(4096):
                data += chunk
            received.append(data)
            conn.sendall(encode_response(response))

    thread = threading.Thread(target=serve, daemon=True)
    thread.start()
    try:
        yield path, received
    finally:
        thread.join(timeout=5)
        listener.close()
        shutil.rmtree(directory, ignore_errors=True)


def _request(*argv):
    return cli.build_request(cli.parse_args(list(argv)))


def test_run_with_trailing_command():
    assert _request("run", "alpine", "sh", "-c", "echo hi") == RunRequest(
        image="alpine", command=["sh", "-c", "echo hi"]
    )


def test_run_without_command():
    assert _request("run", "alpine") == RunRequest(image="alpine", command=[])


@pytest.mark.parametrize(
    "argv, expected",
    [
        (["ps"], PsRequest()),
        (["images"], ImagesRequest()),
        (["stop", "abc"], StopRequest(id="abc")),
        (["rm", "abc"], RmRequest(id="abc")),
        (["logs", "abc"], LogsRequest(id="abc")),
        (["pull", "alpine"], PullRequest(image="alpine")),
        (["commit", "abc", "newimg"], CommitRequest(id="abc", image="newimg")),
    ],
)
def test_simple_commands(argv, expected):
    assert _request(*argv) == expected


def test_build_resolves_context(tmp_path):
    request = _request("build", "myimg", str(tmp_path))
    assert request == BuildRequest(context=str(tmp_path.resolve()), image="myimg")


def test_build_default_context_is_current_directory(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    request = _request("build", "myimg")
    assert request.context == str(Path.cwd().resolve())


def test_build_missing_context_raises(tmp_path):
    with pytest.raises(OSError):
        _request("build", "myimg", str(tmp_path / "missing"))


def test_missing_subcommand_exits():
    with pytest.raises(SystemExit):
        cli.parse_args([])


def test_format_ok():
    assert cli.format_response(OkResponse("hello")) == "hello"


def test_format_error():
    assert cli.format_response(ErrorResponse("boom")) == "Daemon error: boom"


def test_format_containers_table():
    text = cli.format_response(ContainersResponse([("abc", 42, "Running")]))
    header, row = text.split("\n")
    assert header.split() == ["ID", "PID", "STATE"]
    assert row.split() == ["abc", "42", "Running"]
    assert header.index("PID") == row.index("42")
    assert header.index("STATE") == row.index("Running")


def test_format_empty_containers_has_only_header():
    text = cli.format_response(ContainersResponse([]))
    assert text.split() == ["ID", "PID", "STATE"]


def test_format_images_table():
    text = cli.format_response(ImagesResponse([("alpine", "latest", "3.00 MB")]))
    header, row = text.split("\n")
    assert header.split() == ["NAME", "TAG", "SIZE"]
    assert row.split() == ["alpine", "latest", "3.00", "MB"]
    assert header.index("TAG") == row.index("latest")


def test_send_request_round_trip():
    response = ContainersResponse([("abc", 7, "Stopped")])
    with _fake_daemon(response) as (path, received):
        got = cli.send_request(StopRequest(id="abc"), path)
    assert got == response
    assert decode_request(received[0]) == StopRequest(id="abc")


def test_send_request_without_daemon(tmp_path):
    with pytest.raises(OSError):
        cli.send_request(PsRequest(), str(tmp_path / "none.sock"))


def test_main_prints_ok_message(monkeypatch, capsys):
    with _fake_daemon(OkResponse("Image alpine pulled")) as (path, received):
        monkeypatch.setattr(cli, "SOCKET_PATH", path)
        code = cli.main(["pull", "alpine"])
    assert code == 0
    assert capsys.readouterr().out == "Pulling image 'alpine'...\nImage alpine pulled\n"
    assert decode_request(received[0]) == PullRequest(image="alpine")


def test_main_reports_daemon_error(monkeypatch, capsys):
    with _fake_daemon(ErrorResponse("nope")) as (path, _):
        monkeypatch.setattr(cli, "SOCKET_PATH", path)
        code = cli.main(["stop", "abc"])
    assert code == 1
    assert "Daemon error: nope" in capsys.readouterr().err


def test_main_without_daemon(monkeypatch, tmp_path, capsys):
    monkeypatch.setattr(cli, "SOCKET_PATH", str(tmp_path / "none.sock"))
    assert cli.main(["ps"]) == 1
    assert "Error communicating with daemon" in capsys.readouterr().err


def test_main_invalid_build_context(tmp_path, capsys):
    missing = tmp_path / "missing"
    assert cli.main(["build", "img", str(missing)]) == 1
    assert f"Invalid build context '{missing}'" in capsys.readouterr().err