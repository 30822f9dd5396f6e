"""Daemon that accepts requests on a Unix socket and runs them."""

from __future__ import annotations

import argparse
import os
import socket
import sys
import threading
import time
from collections.abc import MutableMapping, Sequence
from contextlib import suppress
from typing import NoReturn

from vessel import runtime
from vessel.api import (
    BuildRequest,
    CommitRequest,
    ContainersResponse,
    ErrorResponse,
    ImagesRequest,
    ImagesResponse,
    LogsRequest,
    OkResponse,
    ProtocolError,
    PsRequest,
    PullRequest,
    Request,
    Response,
    RmRequest,
    RunRequest,
    StopRequest,
    decode_request,
    encode_response,
)

SOCKET_PATH = "/run/vessel.sock"

_REAP_INTERVAL = 0.1
_RECV_SIZE = 65536
_REQUEST_TYPES = (
    RunRequest,
    BuildRequest,
    PsRequest,
    StopRequest,
    RmRequest,
    LogsRequest,
    ImagesRequest,
    PullRequest,
    CommitRequest,
)


def _dispatch(request: Request) -> Response:
    match request:
        case RunRequest(image=image, command=command):
            return OkResponse(runtime.run(image, command))
        case BuildRequest(context=context, image=image):
            runtime.build(context, image)
            return OkResponse(f"Image {image} built")
        case PsRequest():
            return ContainersResponse([(c.id, c.pid, c.state.value) for c in runtime.ps()])
        case ImagesRequest():
            return ImagesResponse([(img.name, img.size, img.tag) for img in runtime.images()])
        case StopRequest(id=container_id):
            runtime.stop(container_id)
            return OkResponse("Stopped")
        case RmRequest(id=container_id):
            runtime.rm(container_id)
            return OkResponse("Removed")
        case LogsRequest(id=container_id):
            return OkResponse(runtime.logs(container_id))
        case PullRequest(image=image):
            runtime.pull(image)
            return OkResponse(f"Image {image} pulled")
        case CommitRequest(id=container_id, image=image):
            runtime.commit(container_id, image)
            return OkResponse(f"Container {container_id} committed as image {image}")
    raise TypeError(f"not a request: {request!r}")


def handle_request(request: Request) -> Response:
    """Carry out a request; failures come back as an error response."""
    if not isinstance(request, _REQUEST_TYPES):
        raise TypeError(f"not a request: {request!r}")
    try:
        return _dispatch(request)
    except Exception as exc:
        return ErrorResponse(str(exc))


def handle_client(conn: socket.socket) -> None:
    """Read one request from a connection, answer it and close the connection."""
    with conn:
        chunks = []
        try:
            while chunk := conn.recv(_RECV_SIZE):
                chunks.append(chunk)
        except OSError as exc:
            print(f"Failed to read request: {exc}", file=sys.stderr)
            return

        try:
            request = decode_request(b"".join(chunks))
        except ProtocolError as exc:
            response: Response = ErrorResponse(f"Invalid request: {exc}")
        else:
            response = handle_request(request)

        with suppress(OSError):
            conn.sendall(encode_response(response))


def reap_children(state: MutableMapping[str, int], lock: threading.Lock) -> list[int]:
    """Collect every child that has exited and clear its PID from state.

    Returns the PIDs of children that exited normally.
    """
    reaped = []
    while True:
        try:
            pid, status = os.waitpid(-1, os.WNOHANG)
        except ChildProcessError:
            break
        if pid == 0:
            break
        if not os.WIFEXITED(status):
            continue
        print(f"Reaped child {pid}")
        with lock:
            for key, stored in state.items():
                if stored == pid:
                    state[key] = 0
        reaped.append(pid)
    return reaped


def _reap_forever(state: MutableMapping[str, int], lock: threading.Lock) -> NoReturn:
    while True:
        reap_children(state, lock)
        time.sleep(_REAP_INTERVAL)


def serve(socket_path: str | None = None) -> NoReturn:
    """Listen on the socket and handle each client in its own thread."""
    path = str(socket_path or SOCKET_PATH)
    with suppress(OSError):
        os.remove(path)

    listener = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    listener.bind(path)
    listener.listen()
    print(f"vesseld listening on {path}")

    state: dict[str, int] = {}
    lock = threading.Lock()
    threading.Thread(target=_reap_forever, args=(state, lock), daemon=True).start()

    with listener:
        while True:
            conn, _ = listener.accept()
            threading.Thread(target=handle_client, args=(conn,), daemon=True).start()


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="vesseld", description="Vessel container runtime daemon")
    parser.add_argument("--socket", default=SOCKET_PATH, help="path of the control socket")
    args = parser.parse_args(argv)
    try:
        serve(args.socket)
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())