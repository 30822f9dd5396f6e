"""Building images by copying a context into a temporary container."""

from __future__ import annotations

import shutil
import subprocess
from pathlib import Path

from vessel.container import container_dir
from vessel.image import commit_image


def copy_dir_all(src: Path | str, dst: Path | str) -> None:
    """Recursively copy the contents of src into dst."""
    dst = Path(dst)
    for entry in Path(src).iterdir():
        dest_path = dst / entry.name
        if entry.is_dir():
            dest_path.mkdir(parents=True, exist_ok=True)
            copy_dir_all(entry, dest_path)
        else:
            shutil.copy(entry, dest_path)


def build_image(context: Path | str, image_name: str) -> None:
    """Build an image from a context directory using the vessel command."""
    print(f"Starting build for image: {image_name}")

    output = subprocess.run(
        ["vessel", "run", "alpine", "sleep", "infinity"],
        capture_output=True,
        check=False,
    )
    container_id = output.stdout.decode("utf-8", errors="replace").strip()
    print(f"Temp container: {container_id}")

    merged = container_dir(container_id) / "merged"

    print("Copying files...")
    copy_dir_all(context, merged)

    print("Committing image...")
    commit_image(container_id, image_name)

    print("Cleaning up...")
    subprocess.run(["vessel", "stop", container_id], check=False)
    subprocess.run(["vessel", "rm", container_id], check=False)

    print(f"Build complete: {image_name}")