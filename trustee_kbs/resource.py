"""Secret resource storage: resource descriptors, backends and the resource plugin."""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .metrics import RESOURCE_READS_TOTAL, RESOURCE_WRITES_TOTAL
from .plugin_api import ClientPlugin

DEFAULT_REPO_DIR_PATH = "/opt/confidential-containers/kbs/repository"

_SEGMENT = r"[a-zA-Z0-9_\-]+[a-zA-Z0-9_\-\.]*"
_RESOURCE_DESC_RE = re.compile(
    rf"(?P<repo>{_SEGMENT})/(?P<type>{_SEGMENT})/(?P<tag>{_SEGMENT})"
)


@dataclass(frozen=True)
class ResourceDesc:
    """Names a resource as ``<repository>/<type>/<tag>``."""

    repository_name: str
    resource_type: str
    resource_tag: str

    @classmethod
    def parse(cls, value: str) -> ResourceDesc:
        """Parse ``repo/type/tag``; raise ValueError when the format is illegal."""
        match = _RESOURCE_DESC_RE.fullmatch(value)
        if match is None:
            raise ValueError("illegal ResourceDesc format.")
        return cls(match["repo"], match["type"], match["tag"])

    def __str__(self) -> str:
        return f"{self.repository_name}/{self.resource_type}/{self.resource_tag}"


class StorageBackend(ABC):
    """A place secret resources are read from and written to."""

    @abstractmethod
    def read_secret_resource(self, resource_desc: ResourceDesc) -> bytes:
        """Return the bytes of the resource."""

    @abstractmethod
    def write_secret_resource(self, resource_desc: ResourceDesc, data: bytes) -> None:
        """Store ``data`` as the resource."""


@dataclass
class LocalFsRepoDesc:
    """Configuration of a repository kept in a local directory."""

    dir_path: str = DEFAULT_REPO_DIR_PATH


class LocalFs(StorageBackend):
    """Keeps resources as files under a directory.

    Writes are not synchronised with reads; the backend is meant for tests
    or for storage that is written out of band.
    """

    def __init__(self, repo_desc: LocalFsRepoDesc) -> None:
        root = Path(repo_desc.dir_path)
        root.mkdir(parents=True, exist_ok=True)
        (root / "default").mkdir(parents=True, exist_ok=True)
        self.repo_dir_path = repo_desc.dir_path

    def read_secret_resource(self, resource_desc: ResourceDesc) -> bytes:
        path = (
            Path(self.repo_dir_path)
            / resource_desc.repository_name
            / resource_desc.resource_type
            / resource_desc.resource_tag
        )
        return path.read_bytes()

    def write_secret_resource(self, resource_desc: ResourceDesc, data: bytes) -> None:
        directory = (
            Path(self.repo_dir_path)
            / resource_desc.repository_name
            / resource_desc.resource_type
        )
        directory.mkdir(parents=True, exist_ok=True)
        (directory / resource_desc.resource_tag).write_bytes(bytes(data))


def repository_config_from_dict(data: Mapping[str, Any]) -> LocalFsRepoDesc:
    """Build a repository configuration from data tagged by its ``type`` key."""
    kind = data.get("type")
    if kind is None:
        raise ValueError("missing field `type`")
    if kind != "LocalFs":
        raise ValueError(f"unknown repository type `{kind}`")
    dir_path = data.get("dir_path", "")
    if not isinstance(dir_path, str):
        raise ValueError("`dir_path` must be a string")
    return LocalFsRepoDesc(dir_path=dir_path)


def _sub_path(path: str) -> str:
    if not path.startswith("/"):
        raise ValueError("accessed path is illegal, should start with `/`")
    return path[1:]


class ResourceStorage(ClientPlugin):
    """The resource plugin: serves secret resources from a storage backend."""

    def __init__(self, backend: StorageBackend) -> None:
        self.backend = backend

    @classmethod
    def from_config(cls, config: LocalFsRepoDesc | None = None) -> ResourceStorage:
        """Create the storage for ``config``, the local repository by default."""
        config = config if config is not None else LocalFsRepoDesc()
        try:
            backend = LocalFs(config)
        except OSError as exc:
            raise RuntimeError("Failed to initialize Resource Storage") from exc
        return cls(backend)

    def set_secret_resource(self, resource_desc: ResourceDesc, data: bytes) -> None:
        """Write a resource and count the write."""
        RESOURCE_WRITES_TOTAL.labels(str(resource_desc)).inc()
        self.backend.write_secret_resource(resource_desc, data)

    def get_secret_resource(self, resource_desc: ResourceDesc) -> bytes:
        """Read a resource and count the read."""
        RESOURCE_READS_TOTAL.labels(str(resource_desc)).inc()
        return self.backend.read_secret_resource(resource_desc)

    def handle(self, body: bytes, query: str, path: str, method: str) -> bytes:
        resource_desc = _sub_path(path)
        if method == "POST":
            self.set_secret_resource(ResourceDesc.parse(resource_desc), body)
            return b""
        if method == "GET":
            return self.get_secret_resource(ResourceDesc.parse(resource_desc))
        raise ValueError("Illegal HTTP method. Only supports `GET` and `POST`")

    def validate_auth(self, body: bytes, query: str, path: str, method: str) -> bool:
        return method == "POST"

    def encrypted(self, body: bytes, query: str, path: str, method: str) -> bool:
        return method == "GET"