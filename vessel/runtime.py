"""Container lifecycle operations: run, stop, remove, inspect, commit and build."""

from __future__ import annotations

import os
import shutil
import signal
import subprocess
import sys
import time
import uuid
from collections.abc import Sequence
from contextlib import suppress
from dataclasses import replace
from pathlib import Path

from vessel.build import copy_dir_all
from vessel.container import (
    VESSEL_ROOT,
    ContainerMetadata,
    ContainerState,
    container_dir,
    is_process_alive,
    list_containers,
    load_metadata,
    save_metadata,
)
from vessel.image import (
    IMAGE_ROOT,
    LAYER_ROOT,
    ImageConfig,
    ImageMetadata,
    commit_image,
    image_exists,
    list_images,
    load_image,
    pull_image,
)
from vessel.namespaces import spawn
from vessel.overlay import setup_overlay

CONTAINER_ROOT: Path | str = VESSEL_ROOT
IMAGES_ROOT: Path | str = IMAGE_ROOT
LAYERS_ROOT: Path | str = LAYER_ROOT

BUILD_BASE_IMAGE = "alpine"
_POLL = 0.1
_GRACE_PERIOD = 3.0
_KILL_TIMEOUT = 2.0


class RuntimeError_(RuntimeError):
    """A container operation could not be carried out."""


def _default_config() -> ImageConfig:
    return ImageConfig(cmd=["/bin/sh"], working_dir="/")


def run(image: str, command: Sequence[str]) -> str:
    """Start a new container from an image and return its id."""
    if not image_exists(image, IMAGES_ROOT):
        raise RuntimeError_(f"Image '{image}' not found")

    image_meta = load_image(image, IMAGES_ROOT)
    if image_meta is None:
        raise RuntimeError_("Failed to load image metadata")

    config = image_meta.config or _default_config()
    final_cmd = list(command) if command else list(config.cmd)

    container_id = str(uuid.uuid4())
    merged_rootfs = setup_overlay(container_id, image, CONTAINER_ROOT)

    directory = container_dir(container_id, CONTAINER_ROOT)
    directory.mkdir(parents=True, exist_ok=True)
    log_path = directory / "container.log"

    pid = spawn(merged_rootfs, final_cmd, config.working_dir, str(log_path))

    save_metadata(
        ContainerMetadata(
            id=container_id,
            pid=pid,
            rootfs=merged_rootfs,
            image=image,
            command=" ".join(final_cmd),
            state=ContainerState.RUNNING,
            created_at=int(time.time()),
        ),
        CONTAINER_ROOT,
    )
    return container_id


def ps() -> list[ContainerMetadata]:
    """List every known container."""
    containers = list_containers(CONTAINER_ROOT)
    print(f"{'ID':<40} {'PID':<8} STATE")
    for c in containers:
        print(f"{c.id:<40} {c.pid:<8} {c.state.value}")
    return containers


def _wait_for_exit(pid: int, timeout: float) -> bool:
    deadline = time.monotonic() + timeout
    while is_process_alive(pid):
        if time.monotonic() >= deadline:
            return False
        time.sleep(_POLL)
    return True


def stop(container_id: str) -> None:
    """Terminate a container, escalating to SIGKILL after a grace period."""
    meta = load_metadata(container_id, CONTAINER_ROOT)
    pid = meta.pid

    if not is_process_alive(pid):
        print(f"Container {container_id} already stopped")
        save_metadata(replace(meta, state=ContainerState.STOPPED), CONTAINER_ROOT)
        return

    os.kill(pid, signal.SIGTERM)

    if not _wait_for_exit(pid, _GRACE_PERIOD):
        os.kill(pid, signal.SIGKILL)
        if not _wait_for_exit(pid, _KILL_TIMEOUT):
            raise RuntimeError_("Failed to kill container")

    save_metadata(replace(meta, state=ContainerState.STOPPED), CONTAINER_ROOT)
    print(f"Container {container_id} stopped successfully")


def logs(container_id: str) -> str:
    """Return what a container has written to its log."""
    log_path = container_dir(container_id, CONTAINER_ROOT) / "container.log"
    if not log_path.exists():
        return f"No logs found for container {container_id}"
    contents = log_path.read_text(encoding="utf-8", errors="replace")
    print(contents, end="")
    return contents


def _ensure_stopped(meta: ContainerMetadata, container_id: str) -> None:
    if is_process_alive(meta.pid):
        raise RuntimeError_(
            f"Container {container_id} is still running (PID {meta.pid}). Stop it first."
        )


def rm(container_id: str) -> None:
    """Unmount and delete a stopped container."""
    meta = load_metadata(container_id, CONTAINER_ROOT)
    _ensure_stopped(meta, container_id)

    directory = container_dir(container_id, CONTAINER_ROOT)
    merged = directory / "merged"

    if merged.exists():
        try:
            result = subprocess.run(
                ["umount", "-l", str(merged)], capture_output=True, check=False
            )
        except OSError as exc:
            print(f"Warning: failed to unmount {merged}: {exc}", file=sys.stderr)
        else:
            if result.returncode != 0:
                reason = result.stderr.decode("utf-8", errors="replace").strip()
                print(f"Warning: failed to unmount {merged}: {reason}", file=sys.stderr)

    if directory.exists():
        shutil.rmtree(directory)

    print(f"Container {container_id} removed")


def images() -> list[ImageMetadata]:
    """List every stored image."""
    found = list_images(IMAGES_ROOT)
    print(f"{'NAME':<15} {'TAG':<10} SIZE")
    for img in found:
        print(f"{img.name:<15} {img.tag:<10} {img.size}")
    return found


def pull(image: str) -> None:
    """Fetch an image into local storage."""
    print(f"Pulling image '{image}'...")
    pull_image(image, IMAGES_ROOT, LAYERS_ROOT)


def commit(container_id: str, new_image: str) -> None:
    """Save a stopped container's changes as a new image."""
    meta = load_metadata(container_id, CONTAINER_ROOT)
    _ensure_stopped(meta, container_id)
    commit_image(container_id, new_image, IMAGES_ROOT, LAYERS_ROOT, CONTAINER_ROOT)
    print(f"Container {container_id} committed as image '{new_image}'")


def build(context: str, image: str) -> None:
    """Build an image by copying a context directory into a temporary container."""
    context_path = Path(context)
    if not context_path.is_dir():
        raise RuntimeError_(
            f"Build context '{context}' does not exist or is not a directory"
        )

    print(f"Starting build for image: {image}")
    container_id = run(BUILD_BASE_IMAGE, ["sleep", "infinity"])
    merged = container_dir(container_id, CONTAINER_ROOT) / "merged"

    try:
        print(f"Copying files from context '{context}'...")
        copy_dir_all(context_path, merged)

        print(f"Stopping temp container {container_id}...")
        stop(container_id)

        print(f"Committing image '{image}'...")
        commit(container_id, image)
    finally:
        with suppress(Exception):
            stop(container_id)
        with suppress(Exception):
            rm(container_id)