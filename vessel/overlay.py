"""Overlay filesystem assembly for container root filesystems."""

from __future__ import annotations

import subprocess
from collections.abc import Iterable
from pathlib import Path

from vessel.container import VESSEL_ROOT
from vessel.image import get_image_layers


def overlay_options(layers: Iterable[str], upper: Path | str, work: Path | str) -> str:
    """Mount options for an overlay; the last layer becomes the topmost lower directory."""
    lowerdirs = ":".join(reversed([str(layer) for layer in layers]))
    return f"lowerdir={lowerdirs},upperdir={upper},workdir={work}"


def setup_overlay(container_id: str, image: str, container_root: Path | str = VESSEL_ROOT) -> str:
    """Mount the image's layers with a fresh writable layer and return the merged path."""
    base = Path(container_root) / container_id
    upper = base / "upper"
    work = base / "work"
    merged = base / "merged"

    layers = get_image_layers(image)

    for directory in (upper, work, merged):
        directory.mkdir(parents=True, exist_ok=True)

    options = overlay_options(layers, upper, work)
    subprocess.run(
        ["mount", "-t", "overlay", "overlay", "-o", options, str(merged)],
        check=True,
    )
    return str(merged)