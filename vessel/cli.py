"""Command-line client that sends requests to the vessel daemon."""

from __future__ import annotations

import argparse
import socket
import sys
from collections.abc import Sequence
from pathlib import Path

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
    decode_response,
    encode_request,
)

SOCKET_PATH = "/run/vessel.sock"

_RECV_SIZE = 65536


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="vessel", description="Vessel container runtime CLI")
    sub = parser.add_subparsers(dest="command_name", required=True)

    run = sub.add_parser("run", help="start a container")
    run.add_argument("image")
    run.add_argument("command", nargs=argparse.REMAINDER)

    build = sub.add_parser("build", help="build an image from a context directory")
    build.add_argument("image")
    build.add_argument("context", nargs="?", default=".")

    sub.add_parser("ps", help="list containers")

    for name, text in (
        ("stop", "stop a container"),
        ("rm", "remove a container"),
        ("logs", "show a container's output"),
    ):
        sub.add_parser(name, help=text).add_argument("id")

    sub.add_parser("images", help="list images")
    sub.add_parser("pull", help="fetch an image").add_argument("image")

    commit = sub.add_parser("commit", help="save a container as an image")
    commit.add_argument("id")
    commit.add_argument("image")
    return parser


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse the command line."""
    return _parser().parse_args(argv)


def build_request(args: argparse.Namespace) -> Request:
    """Turn parsed arguments into a daemon request.

    Raises OSError when a build context cannot be resolved.
    """
    match args.command_name:
        case "run":
            return RunRequest(image=args.image, command=list(args.command))
        case "build":
            context = Path(args.context).resolve(strict=True)
            return BuildRequest(context=str(context), image=args.image)
        case "ps":
            return PsRequest()
        case "stop":
            return StopRequest(id=args.id)
        case "rm":
            return RmRequest(id=args.id)
        case "logs":
            return LogsRequest(id=args.id)
        case "images":
            return ImagesRequest()
        case "pull":
            return PullRequest(image=args.image)
        case "commit":
            return CommitRequest(id=args.id, image=args.image)
    raise ValueError(f"unknown command {args.command_name!r}")


def send_request(request: Request, socket_path: str | None = None) -> Response:
    """Send one request to the daemon and return its reply."""
    with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as sock:
        sock.connect(str(socket_path or SOCKET_PATH))
        sock.sendall(encode_request(request))
        # Closing the write side tells the daemon the request is complete.
        sock.shutdown(socket.SHUT_WR)
        chunks = []
        while chunk := sock.recv(_RECV_SIZE):
            chunks.append(chunk)
    return decode_response(b"".join(chunks))


def format_response(response: Response) -> str:
    """Render a daemon reply as the text shown to the user."""
    match response:
        case OkResponse(message=message):
            return message
        case ContainersResponse(containers=containers):
            lines = [f"{'ID':<40} {'PID':<8} STATE"]
            lines += [f"{cid:<40} {pid:<8} {state}" for cid, pid, state in containers]
            return "\n".join(lines)
        case ImagesResponse(images=images):
            lines = [f"{'NAME':<40} {'TAG':<8} SIZE"]
            lines += [f"{name:<40} {tag:<10} {size}" for name, tag, size in images]
            return "\n".join(lines)
        case ErrorResponse(message=message):
            return f"Daemon error: {message}"
    raise TypeError(f"not a response: {response!r}")


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    try:
        request = build_request(args)
    except OSError as exc:
        print(f"Invalid build context '{args.context}': {exc}", file=sys.stderr)
        return 1

    match request:
        case PullRequest(image=image):
            print(f"Pulling image '{image}'...")
        case CommitRequest(id=container_id, image=image):
            print(f"Committing container '{container_id}' as image '{image}'...")

    try:
        response = send_request(request)
    except (OSError, ProtocolError) as exc:
        print(f"Error communicating with daemon: {exc}", file=sys.stderr)
        return 1

    text = format_response(response)
    if isinstance(response, ErrorResponse):
        print(text, file=sys.stderr)
        return 1
    print(text)
    return 0


if __name__ == "__main__":
    sys.exit(main())