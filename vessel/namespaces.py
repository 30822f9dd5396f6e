"""Isolated process creation: namespaces, cgroup limits and container networking."""

from __future__ import annotations

import os
import shutil
import signal
import socket
import subprocess
import sys
import traceback
from collections.abc import Sequence
from contextlib import suppress
from pathlib import Path
from typing import NoReturn

CGROUP_ROOT = Path("/sys/fs/cgroup")
HOSTNAME = "vessel"
BRIDGE = "vessel0"
CONTAINER_ADDRESS = "10.0.0.2/24"
GATEWAY = "10.0.0.1"

_CLONE_FLAGS = os.CLONE_NEWPID | os.CLONE_NEWUTS | os.CLONE_NEWNS | os.CLONE_NEWNET

_CGROUP_LIMITS = (
    ("cpu.max", "2000 100000"),  # 2% of one CPU
    ("memory.max", "104857600"),  # hard limit, 100 MiB
    ("memory.high", "83886080"),  # soft limit, 80 MiB
)

_FIND_VETH = "ip -o link show | awk -F': ' '{print $2}' | grep veth"


def setup_cgroup(pid: int, cgroup_root: Path | str = CGROUP_ROOT) -> None:
    """Place a process in its own cgroup with CPU and memory limits."""
    print(f"Setting up cgroup for PID: {pid}")
    vessel_group = Path(cgroup_root) / "vessel"
    vessel_group.mkdir(parents=True, exist_ok=True)
    (vessel_group / "cgroup.subtree_control").write_text("+cpu +memory")

    container_group = vessel_group / str(pid)
    container_group.mkdir(parents=True, exist_ok=True)
    for name, value in _CGROUP_LIMITS:
        (container_group / name).write_text(value)
    (container_group / "cgroup.procs").write_text(str(pid))


def veth_names(pid: int) -> tuple[str, str]:
    """Names of the host and container ends of a container's veth pair."""
    return f"veth{pid}", f"veth{pid}c"


def _ip(*args: str) -> None:
    subprocess.run(["ip", *args], check=False)


def setup_network(pid: int) -> None:
    """Create a veth pair, attach the host end to the bridge and move the other into the container."""
    host, container = veth_names(pid)
    _ip("link", "add", host, "type", "veth", "peer", "name", container)
    _ip("link", "set", host, "master", BRIDGE)
    _ip("link", "set", host, "up")
    _ip("link", "set", container, "netns", str(pid))


def parse_veth_name(output: str) -> str:
    """Interface name from the first line of a link listing, without its '@peer' suffix."""
    lines = output.splitlines()
    first = lines[0].strip() if lines else ""
    return first.split("@", 1)[0]


def _mount(*args: str) -> None:
    subprocess.run(["mount", *args], check=True)


def container_init(
    rootfs: str, command: Sequence[str], working_dir: str | None = None
) -> NoReturn:
    """Prepare the container's filesystem and network, then exec the command."""
    if not command:
        raise ValueError("no command to run")

    socket.sethostname(HOSTNAME)

    _mount("--make-rprivate", "/")
    _mount("--rbind", rootfs, rootfs)

    (Path(rootfs) / "old_root").mkdir(parents=True, exist_ok=True)
    os.chdir(rootfs)
    subprocess.run(["pivot_root", ".", "./old_root"], check=True)
    os.chdir("/")

    if working_dir:
        if Path(working_dir).exists():
            os.chdir(working_dir)
        else:
            print(f"WORKDIR '{working_dir}' not found, defaulting to /", file=sys.stderr)

    Path("/dev").mkdir(parents=True, exist_ok=True)
    _mount("-t", "devtmpfs", "devtmpfs", "/dev")
    Path("/dev/shm").mkdir(parents=True, exist_ok=True)
    _mount("-t", "tmpfs", "-o", "size=256m", "tmpfs", "/dev/shm")

    subprocess.run(["umount", "-l", "/old_root"], check=True)
    shutil.rmtree("/old_root")

    with suppress(OSError):
        Path("/proc").mkdir(parents=True, exist_ok=True)
    _mount("-t", "proc", "proc", "/proc")

    _ip("link", "set", "lo", "up")

    listing = subprocess.run(["sh", "-c", _FIND_VETH], capture_output=True, check=False)
    iface = parse_veth_name(listing.stdout.decode("utf-8", errors="replace"))
    print(f"veth name is found to be: {iface}")
    if iface:
        _ip("link", "set", iface, "name", "eth0")

    _ip("link", "set", "eth0", "up")
    _ip("addr", "add", CONTAINER_ADDRESS, "dev", "eth0")
    _ip("route", "add", "default", "via", GATEWAY)

    print(f"pid inside namespace: {os.getpid()}")
    sys.stdout.flush()
    sys.stderr.flush()

    try:
        os.execvp(command[0], list(command))
    except OSError as exc:
        print(f"EXEC FAILED: {exc}", file=sys.stderr)
        sys.stderr.flush()
    os._exit(1)


def _container_main(
    sync_fd: int,
    rootfs: str,
    command: Sequence[str],
    working_dir: str | None,
    log_path: str,
) -> NoReturn:
    try:
        os.read(sync_fd, 1)
        os.close(sync_fd)

        sys.stdout.flush()
        sys.stderr.flush()
        try:
            log_fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o644)
        except OSError:
            pass
        else:
            os.dup2(log_fd, 1)
            os.dup2(log_fd, 2)
            os.close(log_fd)

        container_init(rootfs, command, working_dir)
    except BaseException:
        traceback.print_exc()
        sys.stderr.flush()
    finally:
        os._exit(1)


def spawn(
    rootfs: str, command: Sequence[str], working_dir: str | None, log_path: str
) -> int:
    """Start the command in new PID, UTS, mount and network namespaces; return its host PID."""
    sync_r, sync_w = os.pipe()
    pid_r, pid_w = os.pipe()

    intermediate = os.fork()
    if intermediate == 0:
        os.close(sync_w)
        os.close(pid_r)
        try:
            os.unshare(_CLONE_FLAGS)
            child = os.fork()
        except BaseException:
            traceback.print_exc()
            os._exit(1)
        if child == 0:
            os.close(pid_w)
            _container_main(sync_r, rootfs, command, working_dir, log_path)
        os.write(pid_w, str(child).encode())
        os._exit(0)

    os.close(sync_r)
    os.close(pid_w)
    os.waitpid(intermediate, 0)
    with os.fdopen(pid_r, "rb") as reader:
        reported = reader.read()
    if not reported:
        os.close(sync_w)
        raise OSError("failed to create container namespaces")
    child = int(reported)

    print(f"Spawned container with PID: {child}")
    try:
        setup_cgroup(child)
        print(f"Cgroup setup complete for PID: {child}")
        setup_network(child)
        os.write(sync_w, b"\x01")
    except BaseException:
        with suppress(OSError):
            os.kill(child, signal.SIGKILL)
        raise
    finally:
        os.close(sync_w)

    return child