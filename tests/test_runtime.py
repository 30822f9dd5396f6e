import json
import signal
import subprocess
import sys
import threading
import os

import pytest

from vessel import runtime
from vessel.container import ContainerMetadata, ContainerState, save_metadata
from vessel.image import ImageConfig, ImageMetadata
from vessel.runtime import RuntimeError_


@pytest.fixture
def roots(tmp_path, monkeypatch):
    containers = tmp_path / "containers"
    images_dir = tmp_path / "images"
    layers = tmp_path / "layers"
    monkeypatch.setattr(runtime, "CONTAINER_ROOT", containers)
    monkeypatch.setattr(runtime, "IMAGES_ROOT", images_dir)
    monkeypatch.setattr(runtime, "LAYERS_ROOT", layers)
    return containers, images_dir, layers


@pytest.fixture
def dead_pid():
    proc = subprocess.Popen([sys.executable, "-c", "pass"])
    proc.wait()
    return proc.pid


def _container(root, container_id, pid, image="base"):
    meta = ContainerMetadata(
        id=container_id,
        pid=pid,
        rootfs=f"/tmp/{container_id}",
        image=image,
        command="/bin/sh",
        state=ContainerState.RUNNING,
        created_at=1,
    )
    save_metadata(meta, root)
    return meta


def _image(images_dir, name, layers, config=None):
    directory = images_dir / name
    directory.mkdir(parents=True)
    meta = ImageMetadata(
        name=name, tag="latest", size="0 B", created_at=1, layers=layers, config=config
    )
    (directory / "manifest.json").write_text(json.dumps(meta.to_dict()))


def test_run_missing_image(roots):
    with pytest.raises(RuntimeError_, match="Image 'nothing' not found"):
        runtime.run("nothing", [])


def test_run_malformed_manifest(roots):
    _, images_dir, _ = roots
    (images_dir / "broken").mkdir(parents=True)
    (images_dir / "broken" / "manifest.json").write_text("{}")
    with pytest.raises(RuntimeError_, match="Failed to load image metadata"):
        runtime.run("broken", ["echo"])


def test_ps_lists_containers(roots, dead_pid, capsys):
    containers, _, _ = roots
    _container(containers, "one", dead_pid)
    _container(containers, "two", dead_pid)
    result = runtime.ps()
    assert {c.id for c in result} == {"one", "two"}
    assert "STATE" in capsys.readouterr().out


def test_ps_empty(roots):
    assert runtime.ps() == []


def test_stop_already_stopped(roots, dead_pid, capsys):
    containers, _, _ = roots
    _container(containers, "idle", dead_pid)
    runtime.stop("idle")
    stored = json.loads((containers / "idle" / "metadata.json").read_text())
    assert stored["state"] == "Stopped"
    assert "Container idle already stopped" in capsys.readouterr().out


def test_stop_running_process(roots):
    containers, _, _ = roots
    proc = subprocess.Popen(["sleep", "30"])
    reaper = threading.Thread(target=proc.wait)
    reaper.start()
    _container(containers, "live", proc.pid)
    runtime.stop("live")
    reaper.join(timeout=5)
    assert proc.returncode == -signal.SIGTERM
    stored = json.loads((containers / "live" / "metadata.json").read_text())
    assert stored["state"] == "Stopped"


def test_stop_missing_container(roots):
    with pytest.raises(FileNotFoundError):
        runtime.stop("ghost")


def test_logs_missing(roots):
    assert runtime.logs("abc") == "No logs found for container abc"


def test_logs_contents(roots, capsys):
    containers, _, _ = roots
    (containers / "c1").mkdir(parents=True)
    (containers / "c1" / "container.log").write_text("hello\nworld\n")
    assert runtime.logs("c1") == "hello\nworld\n"
    assert capsys.readouterr().out == "hello\nworld\n"


def test_rm_removes_directory(roots, dead_pid):
    containers, _, _ = roots
    _container(containers, "gone", dead_pid)
    runtime.rm("gone")
    assert not (containers / "gone").exists()


def test_rm_refuses_running(roots):
    containers, _, _ = roots
    _container(containers, "busy", os.getpid())
    with pytest.raises(RuntimeError_, match="is still running"):
        runtime.rm("busy")
    assert (containers / "busy").exists()


def test_rm_missing(roots):
    with pytest.raises(FileNotFoundError):
        runtime.rm("ghost")


def test_images_lists_manifests(roots):
    _, images_dir, _ = roots
    _image(images_dir, "alpha", ["a"])
    _image(images_dir, "beta", ["b"])
    assert [img.name for img in runtime.images()] == ["alpha", "beta"]


def test_pull_existing_image(roots, capsys):
    _, images_dir, _ = roots
    _image(images_dir, "alpine", ["a"])
    runtime.pull("alpine")
    out = capsys.readouterr().out
    assert "Pulling image 'alpine'..." in out
    assert "Image 'alpine' already exists" in out


def test_pull_without_source(roots, monkeypatch):
    monkeypatch.delenv("VESSEL_ROOTFS_URL", raising=False)
    with pytest.raises(RuntimeError):
        runtime.pull("fresh")


def test_commit_refuses_running(roots):
    containers, _, _ = roots
    _container(containers, "busy", os.getpid())
    with pytest.raises(RuntimeError_, match="Stop it first"):
        runtime.commit("busy", "new")


def test_commit_creates_image(roots, dead_pid):
    containers, images_dir, layers = roots
    (layers / "baselayer").mkdir(parents=True)
    (layers / "baselayer" / "etc").write_text("base")
    config = ImageConfig(cmd=["/bin/app"], working_dir="/srv")
    _image(images_dir, "base", ["baselayer"], config)
    _container(containers, "c1", dead_pid, image="base")
    (containers / "c1" / "upper").mkdir()
    (containers / "c1" / "upper" / "hello").write_text("hi")

    runtime.commit("c1", "derived")

    manifest = json.loads((images_dir / "derived" / "manifest.json").read_text())
    assert manifest["layers"][0] == "baselayer"
    assert len(manifest["layers"]) == 2
    assert manifest["config"] == config.to_dict()
    new_layer = layers / manifest["layers"][1]
    assert (new_layer / "hello").read_text() == "hi"


def test_build_missing_context(roots, tmp_path):
    with pytest.raises(RuntimeError_, match="does not exist or is not a directory"):
        runtime.build(str(tmp_path / "absent"), "img")


def test_build_context_is_file(roots, tmp_path):
    target = tmp_path / "file.txt"
    target.write_text("x")
    with pytest.raises(RuntimeError_, match="does not exist or is not a directory"):
        runtime.build(str(target), "img")


def test_build_requires_base_image(roots, tmp_path):
    context = tmp_path / "ctx"
    context.mkdir()
    with pytest.raises(RuntimeError_, match="Image 'alpine' not found"):
        runtime.build(str(context), "img")