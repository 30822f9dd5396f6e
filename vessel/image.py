"""Image manifests, layers and their storage."""

from __future__ import annotations

import hashlib
import json
import os
import subprocess
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from vessel.container import VESSEL_ROOT, load_metadata

IMAGE_ROOT = Path("/var/lib/vessel/images")
LAYER_ROOT = Path("/var/lib/vessel/layers")
ROOTFS_URL_ENV = "VESSEL_ROOTFS_URL"

_CHUNK = 8192


@dataclass
class ImageConfig:
    cmd: list[str]
    working_dir: str

    def to_dict(self) -> dict[str, Any]:
        return {"cmd": list(self.cmd), "working_dir": self.working_dir}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ImageConfig:
        try:
            return cls(cmd=list(data["cmd"]), working_dir=data["working_dir"])
        except KeyError as exc:
            raise ValueError(f"missing field {exc.args[0]!r}") from exc


def _default_config() -> ImageConfig:
    return ImageConfig(cmd=["/bin/sh"], working_dir="/")


@dataclass
class ImageMetadata:
    name: str
    tag: str
    size: str
    created_at: int
    layers: list[str] = field(default_factory=list)
    config: ImageConfig | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "tag": self.tag,
            "size": self.size,
            "created_at": self.created_at,
            "layers": list(self.layers),
            "config": self.config.to_dict() if self.config is not None else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ImageMetadata:
        try:
            config = data.get("config")
            return cls(
                name=data["name"],
                tag=data["tag"],
                size=data["size"],
                created_at=int(data["created_at"]),
                layers=list(data["layers"]),
                config=ImageConfig.from_dict(config) if config is not None else None,
            )
        except KeyError as exc:
            raise ValueError(f"missing field {exc.args[0]!r}") from exc


def sha256_file(path: Path | str) -> str:
    """Return the hex SHA-256 digest of a file's contents."""
    digest = hashlib.sha256()
    with open(path, "rb") as handle:
        while chunk := handle.read(_CHUNK):
            digest.update(chunk)
    return digest.hexdigest()


def dir_size(path: Path | str) -> int:
    """Total size in bytes of a file or of every file below a directory."""
    path = Path(path)
    if path.is_file():
        try:
            return path.stat().st_size
        except OSError:
            return 0
    try:
        entries = list(path.iterdir())
    except OSError:
        return 0
    return sum(dir_size(entry) for entry in entries)


def format_size(size: int) -> str:
    kb = 1024
    mb = kb * 1024
    gb = mb * 1024
    if size >= gb:
        return f"{size / gb:.2f} GB"
    if size >= mb:
        return f"{size / mb:.2f} MB"
    if size >= kb:
        return f"{size / kb:.2f} KB"
    return f"{size} B"


def _manifest_path(image: str, image_root: Path | str) -> Path:
    return Path(image_root) / image / "manifest.json"


def get_image_layers(
    image: str, image_root: Path | str = IMAGE_ROOT, layer_root: Path | str = LAYER_ROOT
) -> list[str]:
    """Return the paths of an image's layers, base layer first."""
    data = json.loads(_manifest_path(image, image_root).read_text())
    try:
        layers = data["layers"]
    except (KeyError, TypeError) as exc:
        raise ValueError("manifest has no layers") from exc
    return [str(Path(layer_root) / layer_hash) for layer_hash in layers]


def image_exists(image: str, image_root: Path | str = IMAGE_ROOT) -> bool:
    return _manifest_path(image, image_root).exists()


def load_image(name: str, image_root: Path | str = IMAGE_ROOT) -> ImageMetadata | None:
    """Read an image manifest, or return None if it is missing or malformed."""
    try:
        return ImageMetadata.from_dict(json.loads(_manifest_path(name, image_root).read_text()))
    except (OSError, ValueError, TypeError, AttributeError):
        return None


def list_images(image_root: Path | str = IMAGE_ROOT) -> list[ImageMetadata]:
    image_root = Path(image_root)
    if not image_root.exists():
        return []
    images = []
    for entry in sorted(image_root.iterdir()):
        if entry.is_dir():
            image = load_image(entry.name, image_root)
            if image is not None:
                images.append(image)
    return images


def _extract(tar_path: Path, target: Path) -> None:
    subprocess.run(["tar", "-xzf", str(tar_path), "-C", str(target)], check=False)


def _write_manifest(directory: Path, meta: ImageMetadata) -> None:
    (directory / "manifest.json").write_text(json.dumps(meta.to_dict(), indent=2))


def pull_image(
    name: str, image_root: Path | str = IMAGE_ROOT, layer_root: Path | str = LAYER_ROOT
) -> None:
    """Download the root filesystem archive named by VESSEL_ROOTFS_URL as image `name`."""
    image_dir = Path(image_root) / name
    tar_path = image_dir / "image.tar.gz"

    if (image_dir / "manifest.json").exists():
        print(f"Image '{name}' already exists")
        return

    url = os.environ.get(ROOTFS_URL_ENV)
    if not url:
        raise RuntimeError(f"{ROOTFS_URL_ENV} must name the root filesystem archive to pull")

    image_dir.mkdir(parents=True, exist_ok=True)

    print("Downloading image...")
    subprocess.run(["wget", "-O", str(tar_path), url], check=False)

    print("Hashing layer...")
    layer_hash = sha256_file(tar_path)
    layer_dir = Path(layer_root) / layer_hash

    if not layer_dir.exists():
        print("Extracting layer...")
        layer_dir.mkdir(parents=True, exist_ok=True)
        _extract(tar_path, layer_dir)
    else:
        print("Layer already exists, skipping extraction")

    tar_path.unlink()

    manifest = ImageMetadata(
        name=name,
        tag="latest",
        size=format_size(dir_size(layer_dir)),
        created_at=int(time.time()),
        layers=[layer_hash],
        config=_default_config(),
    )
    _write_manifest(image_dir, manifest)
    print(f"Image '{name}' pulled successfully")


def _create_layer_tar(container_id: str, container_root: Path | str) -> Path:
    upper = Path(container_root) / container_id / "upper"
    tar_path = Path(tempfile.gettempdir()) / f"{container_id}_layer.tar.gz"
    subprocess.run(["tar", "-czf", str(tar_path), "-C", str(upper), "."], check=False)
    return tar_path


def _store_layer(tar_path: Path, layer_dir: Path) -> None:
    if layer_dir.exists():
        return
    layer_dir.mkdir(parents=True, exist_ok=True)
    _extract(tar_path, layer_dir)


def commit_image(
    container_id: str,
    new_image: str,
    image_root: Path | str = IMAGE_ROOT,
    layer_root: Path | str = LAYER_ROOT,
    container_root: Path | str = VESSEL_ROOT,
) -> None:
    """Save a container's writable layer on top of its base image as a new image."""
    meta = load_metadata(container_id, container_root)
    base_image = meta.image

    tar_path = _create_layer_tar(container_id, container_root)
    layer_hash = sha256_file(tar_path)
    _store_layer(tar_path, Path(layer_root) / layer_hash)
    tar_path.unlink()

    base_layers = [
        path.rsplit("/", 1)[-1] for path in get_image_layers(base_image, image_root, layer_root)
    ]
    new_layers = [*base_layers, layer_hash]

    new_image_dir = Path(image_root) / new_image
    new_image_dir.mkdir(parents=True, exist_ok=True)

    size = sum(dir_size(Path(layer_root) / h) for h in new_layers)

    base = load_image(base_image, image_root)
    if base is None:
        raise ValueError(f"Failed to load image '{base_image}'")
    config = base.config if base.config is not None else _default_config()

    manifest = ImageMetadata(
        name=new_image,
        tag="latest",
        size=format_size(size),
        created_at=int(time.time()),
        layers=new_layers,
        config=config,
    )
    _write_manifest(new_image_dir, manifest)
    print(f"Image '{new_image}' created from container {container_id}")