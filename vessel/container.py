"""Container metadata stored on disk."""

from __future__ import annotations

import json
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Any

VESSEL_ROOT = Path("/var/lib/vessel/containers")


class ContainerState(Enum):
    RUNNING = "Running"
    STOPPED = "Stopped"


@dataclass
class ContainerMetadata:
    id: str
    pid: int
    rootfs: str
    image: str
    command: str
    state: ContainerState
    created_at: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "pid": self.pid,
            "rootfs": self.rootfs,
            "image": self.image,
            "command": self.command,
            "state": self.state.value,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ContainerMetadata:
        try:
            return cls(
                id=data["id"],
                pid=int(data["pid"]),
                rootfs=data["rootfs"],
                image=data["image"],
                command=data["command"],
                state=ContainerState(data["state"]),
                created_at=int(data["created_at"]),
            )
        except KeyError as exc:
            raise ValueError(f"missing field {exc.args[0]!r}") from exc


def is_process_alive(pid: int) -> bool:
    """Return True when a process with this PID is visible in /proc."""
    return Path(f"/proc/{pid}").exists()


def container_dir(container_id: str, root: Path | str = VESSEL_ROOT) -> Path:
    return Path(root) / container_id


def save_metadata(meta: ContainerMetadata, root: Path | str = VESSEL_ROOT) -> None:
    directory = container_dir(meta.id, root)
    directory.mkdir(parents=True, exist_ok=True)
    (directory / "metadata.json").write_text(json.dumps(meta.to_dict(), indent=2))


def load_metadata(container_id: str, root: Path | str = VESSEL_ROOT) -> ContainerMetadata:
    """Read a container's metadata; the stored record is marked stopped if its process is gone."""
    path = container_dir(container_id, root) / "metadata.json"
    meta = ContainerMetadata.from_dict(json.loads(path.read_text()))
    if not is_process_alive(meta.pid):
        save_metadata(replace(meta, state=ContainerState.STOPPED), root)
    return meta


def list_containers(root: Path | str = VESSEL_ROOT) -> list[ContainerMetadata]:
    """Return the metadata of every readable container under root."""
    root = Path(root)
    if not root.exists():
        return []
    containers = []
    for entry in sorted(root.iterdir()):
        if not entry.is_dir():
            continue
        try:
            containers.append(load_metadata(entry.name, root))
        except (OSError, ValueError, TypeError):
            continue
    return containers