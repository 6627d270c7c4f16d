"""Artifact naming, packaging and upload to a name-keyed blob store."""

from __future__ import annotations

import hashlib
import io
import json
import os
import re
import zipfile
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal, Protocol
from urllib.error import HTTPError
from urllib.parse import quote
from urllib.request import Request, urlopen

from shipmatrix.errors import PublishError, PublishErrorKind
from shipmatrix.models import PublishedArtifact

Packaging = Literal["zip", "raw"]

# Fixed member timestamp so identical binaries give identical archives.
ZIP_EPOCH = (1980, 1, 1, 0, 0, 0)


class BlobStore(Protocol):
    name: str

    def upload(self, name: str, data: bytes, *, metadata: Mapping[str, str]) -> None:
        """Store *data* under *name*, replacing any previous object with that name."""


@dataclass(slots=True)
class LocalBlobStore:
    root: Path
    name: str = "local"

    def upload(self, name: str, data: bytes, *, metadata: Mapping[str, str]) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        object_path = self.root / name
        temp_path = object_path.with_name(f".{name}.tmp")
        temp_path.write_bytes(data)
        os.replace(temp_path, object_path)
        (self.root / f"{name}.json").write_text(
            json.dumps(dict(metadata), indent=2, sort_keys=True) + "\n",
            encoding="utf-8",
        )


@dataclass(slots=True)
class HttpBlobStore:
    """PUTs each object to ``<base_url>/<name>``."""

    base_url: str
    token: str | None = None
    timeout: float = 300
    name: str = "http"

    def upload(self, name: str, data: bytes, *, metadata: Mapping[str, str]) -> None:
        headers = {"Content-Type": "application/octet-stream"}
        for key, value in sorted(metadata.items()):
            headers[f"X-Artifact-{key.title()}"] = value
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        request = Request(
            f"{self.base_url.rstrip('/')}/{quote(name)}",
            data=data,
            headers=headers,
            method="PUT",
        )
        try:
            with urlopen(request, timeout=self.timeout) as response:  # noqa: S310 - operator-configured URL
                response.read()
        except HTTPError as exc:
            kind = PublishErrorKind.NAME_COLLISION if exc.code == 409 else PublishErrorKind.UNREACHABLE
            raise PublishError(
                "Blob store rejected the upload.",
                kind=kind,
                context={"store": self.name, "name": name, "status": str(exc.code)},
            ) from exc


@dataclass(slots=True)
class MemoryBlobStore:
    name: str = "memory"
    objects: dict[str, bytes] = field(default_factory=dict)
    metadata: dict[str, dict[str, str]] = field(default_factory=dict)

    def upload(self, name: str, data: bytes, *, metadata: Mapping[str, str]) -> None:
        self.objects[name] = data
        self.metadata[name] = dict(metadata)


def slugify(label: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", label.lower()).strip("-")
    return slug or "artifact"


def package_zip(artifact: Path) -> bytes:
    info = zipfile.ZipInfo(filename=artifact.name, date_time=ZIP_EPOCH)
    info.external_attr = 0o100755 << 16
    info.compress_type = zipfile.ZIP_DEFLATED
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr(info, artifact.read_bytes())
    return buffer.getvalue()


@dataclass(slots=True)
class ArtifactPublisher:
    """Names, packages and uploads final artifacts for one run.

    Names are ``<binary_name>-<slug(label)>``; two artifacts resolving to the
    same name in one run is a NameCollision. Later runs overwrite.
    """

    store: BlobStore
    binary_name: str
    revision: str
    staging_dir: Path
    packaging: Packaging = "zip"
    _published: dict[str, str] = field(default_factory=dict, init=False, repr=False)

    def artifact_name(self, artifact: Path, label: str) -> str:
        suffix = ".zip" if self.packaging == "zip" else artifact.suffix
        return f"{self.binary_name}-{slugify(label)}{suffix}"

    def publish(self, artifact: Path, label: str) -> PublishedArtifact:
        name = self.artifact_name(artifact, label)
        if name in self._published:
            raise PublishError(
                "Another artifact in this run already uses this name.",
                kind=PublishErrorKind.NAME_COLLISION,
                context={"name": name, "label": label, "first": self._published[name]},
            )
        self._published[name] = label

        try:
            payload = package_zip(artifact) if self.packaging == "zip" else artifact.read_bytes()
            digest = hashlib.sha256(payload).hexdigest()
            self.staging_dir.mkdir(parents=True, exist_ok=True)
            staged = self.staging_dir / name
            staged.write_bytes(payload)
            metadata = {"label": label, "revision": self.revision, "sha256": digest}
            self.store.upload(name, payload, metadata=metadata)
        except OSError as exc:
            raise PublishError(
                "Artifact could not be packaged or uploaded.",
                kind=PublishErrorKind.UNREACHABLE,
                hint="Check the artifact, staging directory and store location, then re-run.",
                context={"store": self.store.name, "name": name, "error": str(exc)},
            ) from exc
        return PublishedArtifact(name=name, path=staged, platform_label=label, sha256=digest)
