"""Nebula CA plugin: issues Nebula overlay network credentials with ``nebula-cert``."""

from __future__ import annotations

import json
import logging
import subprocess
import tempfile
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from urllib.parse import parse_qsl

import semver

from .plugin_api import ClientPlugin

logger = logging.getLogger(__name__)

DEFAULT_NEBULA_CA_NAME = "Trustee Nebula CA plugin"
DEFAULT_NEBULA_CERT_PATH = "nebula-cert"
DEFAULT_WORK_DIR = "/opt/confidential-containers/kbs/nebula-ca"
NEBULA_CERT_MINIMUM_VERSION = "1.9.5"
NEBULA_CERT_VERSION_REQUIREMENT = f">={NEBULA_CERT_MINIMUM_VERSION}"

_U32_MAX = 2**32 - 1


def _optional_args(pairs: Sequence[tuple[str, object]]) -> list[str]:
    args: list[str] = []
    for flag, value in pairs:
        if value is not None:
            args.extend((flag, str(value)))
    return args


@dataclass(frozen=True)
class NebulaCredentialParams:
    """Parameters of ``nebula-cert sign``, taken from a request's query string."""

    name: str
    ip: str
    duration: str | None = None
    groups: str | None = None
    subnets: str | None = None

    @classmethod
    def from_query(cls, query: str) -> NebulaCredentialParams:
        """Parse a URL query string; ``name`` and ``ip`` are required."""
        values = dict(parse_qsl(query, keep_blank_values=True))
        for required in ("name", "ip"):
            if required not in values:
                raise ValueError(f"missing field `{required}`")
        return cls(
            name=values["name"],
            ip=values["ip"],
            duration=values.get("duration"),
            groups=values.get("groups"),
            subnets=values.get("subnets"),
        )

    def to_args(self) -> list[str]:
        """Return the matching ``nebula-cert sign`` arguments."""
        return ["-name", self.name, "-ip", self.ip] + _optional_args(
            [
                ("-duration", self.duration),
                ("-groups", self.groups),
                ("-subnets", self.subnets),
            ]
        )


def _optional_str(data: Mapping[str, Any], key: str) -> str | None:
    value = data.get(key)
    if value is not None and not isinstance(value, str):
        raise ValueError(f"`{key}` must be a string")
    return value


def _optional_u32(data: Mapping[str, Any], key: str) -> int | None:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= _U32_MAX:
        raise ValueError(f"`{key}` must be an unsigned 32-bit integer")
    return value


@dataclass(frozen=True)
class SelfSignedNebulaCaConfig:
    """Parameters of ``nebula-cert ca`` for creating a self-signed CA."""

    name: str | None = None
    argon_iterations: int | None = None
    argon_memory: int | None = None
    argon_parallelism: int | None = None
    curve: str | None = None
    duration: str | None = None
    groups: str | None = None
    ips: str | None = None
    out_qr: str | None = None
    subnets: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SelfSignedNebulaCaConfig:
        """Build the config from parsed configuration data."""
        return cls(
            name=_optional_str(data, "name"),
            argon_iterations=_optional_u32(data, "argon_iterations"),
            argon_memory=_optional_u32(data, "argon_memory"),
            argon_parallelism=_optional_u32(data, "argon_parallelism"),
            curve=_optional_str(data, "curve"),
            duration=_optional_str(data, "duration"),
            groups=_optional_str(data, "groups"),
            ips=_optional_str(data, "ips"),
            out_qr=_optional_str(data, "out_qr"),
            subnets=_optional_str(data, "subnets"),
        )

    def to_args(self) -> list[str]:
        """Return the matching ``nebula-cert ca`` arguments; ``-name`` is always given."""
        name = self.name if self.name is not None else DEFAULT_NEBULA_CA_NAME
        return ["-name", name] + _optional_args(
            [
                ("-argon-iterations", self.argon_iterations),
                ("-argon-memory", self.argon_memory),
                ("-argon-parallelism", self.argon_parallelism),
                ("-curve", self.curve),
                ("-duration", self.duration),
                ("-groups", self.groups),
                ("-ips", self.ips),
                ("-out-qr", self.out_qr),
                ("-subnets", self.subnets),
            ]
        )


@dataclass(frozen=True)
class NebulaCaPluginConfig:
    """Configuration of the Nebula CA plugin."""

    work_dir: str | None = None
    nebula_cert_bin_path: str | None = None
    ca_config: SelfSignedNebulaCaConfig | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> NebulaCaPluginConfig:
        """Build the config from parsed configuration data."""
        ca_data = data.get("ca_config")
        if ca_data is not None and not isinstance(ca_data, Mapping):
            raise ValueError("`ca_config` must be a table")
        return cls(
            work_dir=_optional_str(data, "work_dir"),
            nebula_cert_bin_path=_optional_str(data, "nebula_cert_bin_path"),
            ca_config=SelfSignedNebulaCaConfig.from_dict(ca_data) if ca_data is not None else None,
        )


@dataclass(frozen=True)
class NebulaCertBin:
    """Runs the ``nebula-cert`` program."""

    path: Path

    def _run(self, command: str, args: Sequence[str], *, capture: bool = False) -> bytes:
        description = f"{self.path} {command} {list(args)!r}"
        try:
            completed = subprocess.run(
                [str(self.path), command, *args],
                stdout=subprocess.PIPE if capture else None,
                check=False,
            )
        except OSError as exc:
            raise RuntimeError(description) from exc
        if completed.returncode != 0:
            raise RuntimeError(description)
        return completed.stdout or b""

    def ca(self, config: SelfSignedNebulaCaConfig, crt: Path, key: Path) -> None:
        """Create a self-signed certificate authority."""
        args = config.to_args() + ["-out-crt", str(crt), "-out-key", str(key)]
        self._run("ca", args)

    def print(self, crt: Path) -> str:
        """Return the details of a certificate."""
        output = self._run("print", ["-path", str(crt)], capture=True)
        return output.decode("utf-8").rstrip()

    def sign(
        self,
        params: NebulaCredentialParams,
        ca_key: Path,
        ca_crt: Path,
        node_key: Path,
        node_crt: Path,
    ) -> None:
        """Create a node certificate and sign it with the CA."""
        args = params.to_args() + [
            "-ca-key", str(ca_key),
            "-ca-crt", str(ca_crt),
            "-out-key", str(node_key),
            "-out-crt", str(node_crt),
        ]
        self._run("sign", args)

    def verify(self, ca_crt: Path, node_crt: Path) -> None:
        """Check that the node certificate is unexpired and signed by the CA."""
        self._run("verify", ["-ca", str(ca_crt), "-crt", str(node_crt)])

    def version(self) -> str:
        """Return the version reported by ``nebula-cert --version``."""
        try:
            completed = subprocess.run(
                [str(self.path), "--version"], stdout=subprocess.PIPE, check=False
            )
        except OSError as exc:
            raise RuntimeError(f"'{self.path} --version' failed to run") from exc
        if completed.returncode != 0:
            raise RuntimeError(f"'{self.path} --version' failed to complete")
        output = completed.stdout.decode("utf-8")
        prefix = "Version: "
        if not output.startswith(prefix):
            raise RuntimeError("Failed to parse Nebula version")
        return output[len(prefix):].rstrip()

    def version_checked(self) -> str:
        """Return the version, raising when it does not meet the minimum requirement."""
        version = self.version()
        parsed = semver.Version.parse(version)
        minimum = semver.Version.parse(NEBULA_CERT_MINIMUM_VERSION)
        # Pre-releases never satisfy a requirement without a pre-release of its own.
        if parsed.prerelease is not None or parsed < minimum:
            raise RuntimeError(
                "nebula-ca version requirement not satisfied: "
                f"{version} {NEBULA_CERT_VERSION_REQUIREMENT}"
            )
        return version


@dataclass(frozen=True)
class CredentialServiceOut:
    """A node credential: its certificate, its key and the CA certificate."""

    node_crt: bytes
    node_key: bytes
    ca_crt: bytes

    def to_json(self) -> bytes:
        """Serialise as JSON, each field an array of byte values."""
        document = {
            "node_crt": list(self.node_crt),
            "node_key": list(self.node_key),
            "ca_crt": list(self.ca_crt),
        }
        return json.dumps(document, separators=(",", ":")).encode("utf-8")


def _read(path: Path) -> bytes:
    try:
        return path.read_bytes()
    except OSError as exc:
        raise RuntimeError(f"read {path}") from exc


@dataclass
class NebulaCaPlugin(ClientPlugin):
    """Stateless plugin issuing Nebula credentials signed by its CA."""

    nebula: NebulaCertBin
    crt: Path
    key: Path
    work_dir: Path = field(default_factory=lambda: Path(DEFAULT_WORK_DIR))

    @classmethod
    def from_config(cls, config: NebulaCaPluginConfig) -> NebulaCaPlugin:
        """Check ``nebula-cert``, create the CA if there is none, and build the plugin."""
        work_dir = Path(config.work_dir if config.work_dir is not None else DEFAULT_WORK_DIR)
        bin_path = Path(
            config.nebula_cert_bin_path
            if config.nebula_cert_bin_path is not None
            else DEFAULT_NEBULA_CERT_PATH
        )
        crt = work_dir / "ca" / "ca.crt"
        key = work_dir / "ca" / "ca.key"
        nebula = NebulaCertBin(bin_path)

        version = nebula.version_checked()
        logger.info("nebula-cert version: %s", version)

        try:
            crt.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise RuntimeError(f"Create {crt.parent} dir") from exc

        if not crt.exists() and not key.exists():
            nebula.ca(config.ca_config or SelfSignedNebulaCaConfig(), crt, key)
            logger.info("Self-signed Nebula CA created")

        if not crt.exists() or not key.exists():
            raise RuntimeError("Nebula CA not found")

        logger.info("Nebula CA key: %s", key)
        logger.info("Nebula CA certificate: %s\n%s", crt, nebula.print(crt))
        return cls(nebula=nebula, crt=crt, key=key, work_dir=work_dir)

    def create_credential(
        self, node_key: Path, node_crt: Path, params: NebulaCredentialParams
    ) -> CredentialServiceOut:
        """Sign and verify a node certificate, then return the credential files."""
        try:
            self.nebula.sign(params, self.key, self.crt, node_key, node_crt)
        except RuntimeError as exc:
            raise RuntimeError("Failed to create credential") from exc
        try:
            self.nebula.verify(self.crt, node_crt)
        except RuntimeError as exc:
            raise RuntimeError("Failed to verify credential") from exc
        return CredentialServiceOut(
            node_crt=_read(node_crt),
            node_key=_read(node_key),
            ca_crt=_read(self.crt),
        )

    def handle(self, body: bytes, query: str, path: str, method: str) -> bytes:
        if not path.startswith("/"):
            raise ValueError("accessed path is illegal, should start with `/`")
        sub_path = path[1:]
        if method != "GET":
            raise ValueError("Illegal HTTP method. Only GET is supported")
        if sub_path != "credential":
            raise ValueError(f"{sub_path} not supported")

        params = NebulaCredentialParams.from_query(query)
        with tempfile.TemporaryDirectory(dir=self.work_dir) as credential_dir:
            directory = Path(credential_dir)
            credential = self.create_credential(
                directory / "node.key", directory / "node.crt", params
            )
        return credential.to_json()

    def validate_auth(self, body: bytes, query: str, path: str, method: str) -> bool:
        return False

    def encrypted(self, body: bytes, query: str, path: str, method: str) -> bool:
        return True