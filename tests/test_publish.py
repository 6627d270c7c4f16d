import hashlib
import io
import json
import zipfile
from pathlib import Path
from urllib.error import HTTPError, URLError

import pytest

from shipmatrix.errors import PublishError, PublishErrorKind
from shipmatrix.publish import (
    ArtifactPublisher,
    HttpBlobStore,
    LocalBlobStore,
    MemoryBlobStore,
    package_zip,
    slugify,
)


def _binary(tmp_path: Path, name: str = "tool", payload: bytes = b"\x7fELF binary") -> Path:
    path = tmp_path / "bin" / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(payload)
    return path


def _publisher(tmp_path: Path, store: object, **kwargs: object) -> ArtifactPublisher:
    return ArtifactPublisher(
        store=store,  # type: ignore[arg-type]
        binary_name="tool",
        revision="abc123",
        staging_dir=tmp_path / "dist",
        **kwargs,  # type: ignore[arg-type]
    )


class _FailingStore:
    name = "broken"

    def __init__(self, exc: OSError) -> None:
        self.exc = exc

    def upload(self, name: str, data: bytes, *, metadata: object) -> None:
        raise self.exc


def test_slugify_release_labels() -> None:
    assert slugify("Linux x64") == "linux-x64"
    assert slugify("macOS universal") == "macos-universal"
    assert slugify("  !! ") == "artifact"


def test_publish_zip_names_and_uploads_with_metadata(tmp_path: Path) -> None:
    store = MemoryBlobStore()
    artifact = _publisher(tmp_path, store).publish(_binary(tmp_path), "Linux x64")

    assert artifact.name == "tool-linux-x64.zip"
    assert artifact.platform_label == "Linux x64"
    payload = store.objects["tool-linux-x64.zip"]
    assert artifact.sha256 == hashlib.sha256(payload).hexdigest()
    assert store.metadata["tool-linux-x64.zip"] == {
        "label": "Linux x64",
        "revision": "abc123",
        "sha256": artifact.sha256,
    }
    with zipfile.ZipFile(io.BytesIO(payload)) as archive:
        (info,) = archive.infolist()
        assert info.filename == "tool"
        assert archive.read("tool") == b"\x7fELF binary"
        assert (info.external_attr >> 16) & 0o777 == 0o755
    assert artifact.path.read_bytes() == payload


def test_raw_packaging_keeps_binary_suffix(tmp_path: Path) -> None:
    store = MemoryBlobStore()
    publisher = _publisher(tmp_path, store, packaging="raw")

    artifact = publisher.publish(_binary(tmp_path, "tool.exe", b"MZ"), "Windows x64")

    assert artifact.name == "tool-windows-x64.exe"
    assert store.objects[artifact.name] == b"MZ"


def test_zip_packaging_is_deterministic(tmp_path: Path) -> None:
    binary = _binary(tmp_path)
    first = package_zip(binary)
    binary.touch()
    assert package_zip(binary) == first


def test_name_collision_within_one_run(tmp_path: Path) -> None:
    store = MemoryBlobStore()
    publisher = _publisher(tmp_path, store)
    publisher.publish(_binary(tmp_path), "Linux x64")

    with pytest.raises(PublishError) as excinfo:
        publisher.publish(_binary(tmp_path), "linux X64")

    assert excinfo.value.kind is PublishErrorKind.NAME_COLLISION
    assert excinfo.value.context["first"] == "Linux x64"
    assert list(store.objects) == ["tool-linux-x64.zip"]


def test_later_run_overwrites_same_name(tmp_path: Path) -> None:
    store = MemoryBlobStore()
    _publisher(tmp_path, store).publish(_binary(tmp_path, payload=b"v1"), "Linux x64")
    second = _publisher(tmp_path, store).publish(_binary(tmp_path, payload=b"v2"), "Linux x64")

    assert store.metadata[second.name]["sha256"] == second.sha256


@pytest.mark.parametrize("exc", [OSError("disk full"), URLError("connection refused")])
def test_unreachable_store(tmp_path: Path, exc: OSError) -> None:
    publisher = _publisher(tmp_path, _FailingStore(exc))

    with pytest.raises(PublishError) as excinfo:
        publisher.publish(_binary(tmp_path), "Linux x64")

    assert excinfo.value.kind is PublishErrorKind.UNREACHABLE
    assert excinfo.value.context["store"] == "broken"


@pytest.mark.parametrize("packaging", ["zip", "raw"])
def test_vanished_artifact_is_unreachable(tmp_path: Path, packaging: str) -> None:
    store = MemoryBlobStore()
    publisher = _publisher(tmp_path, store, packaging=packaging)

    with pytest.raises(PublishError) as excinfo:
        publisher.publish(tmp_path / "bin" / "gone", "Linux x64")

    assert excinfo.value.kind is PublishErrorKind.UNREACHABLE
    assert excinfo.value.context["name"].startswith("tool-linux-x64")
    assert store.objects == {}


def test_unwritable_staging_dir_is_unreachable(tmp_path: Path) -> None:
    blocker = tmp_path / "dist"
    blocker.write_text("not a directory", encoding="utf-8")
    store = MemoryBlobStore()

    with pytest.raises(PublishError) as excinfo:
        _publisher(tmp_path, store).publish(_binary(tmp_path), "Linux x64")

    assert excinfo.value.kind is PublishErrorKind.UNREACHABLE
    assert store.objects == {}


def test_local_blob_store_writes_object_and_sidecar(tmp_path: Path) -> None:
    store = LocalBlobStore(root=tmp_path / "store")
    store.upload("tool-linux-x64.zip", b"data", metadata={"label": "Linux x64"})

    assert (tmp_path / "store" / "tool-linux-x64.zip").read_bytes() == b"data"
    sidecar = json.loads((tmp_path / "store" / "tool-linux-x64.zip.json").read_text(encoding="utf-8"))
    assert sidecar == {"label": "Linux x64"}


class _Response:
    def __enter__(self) -> "_Response":
        return self

    def __exit__(self, *exc: object) -> None:
        return None

    def read(self) -> bytes:
        return b""


def test_http_blob_store_puts_object(monkeypatch: pytest.MonkeyPatch) -> None:
    captured = {}

    def _urlopen(request, timeout):  # type: ignore[no-untyped-def]
        captured["request"] = request
        captured["timeout"] = timeout
        return _Response()

    monkeypatch.setattr("shipmatrix.publish.urlopen", _urlopen)
    store = HttpBlobStore(base_url="https://artifacts.example/releases/", token="t0k")

    store.upload("tool macos.zip", b"data", metadata={"sha256": "ff", "label": "macOS universal"})

    request = captured["request"]
    assert request.full_url == "https://artifacts.example/releases/tool%20macos.zip"
    assert request.get_method() == "PUT"
    assert request.data == b"data"
    assert request.get_header("Authorization") == "Bearer t0k"
    assert request.get_header("X-artifact-sha256") == "ff"


@pytest.mark.parametrize(
    ("status", "kind"),
    [(409, PublishErrorKind.NAME_COLLISION), (503, PublishErrorKind.UNREACHABLE)],
)
def test_http_blob_store_maps_status(
    monkeypatch: pytest.MonkeyPatch,
    status: int,
    kind: PublishErrorKind,
) -> None:
    def _urlopen(request, timeout):  # type: ignore[no-untyped-def]
        raise HTTPError(request.full_url, status, "rejected", {}, None)  # type: ignore[arg-type]

    monkeypatch.setattr("shipmatrix.publish.urlopen", _urlopen)

    with pytest.raises(PublishError) as excinfo:
        HttpBlobStore(base_url="https://artifacts.example").upload("a.zip", b"x", metadata={})

    assert excinfo.value.kind is kind
    assert excinfo.value.context["status"] == str(status)
