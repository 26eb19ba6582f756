"""Plugin configuration, the sample plugin and the plugin manager."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

from .nebula_ca import NebulaCaPlugin, NebulaCaPluginConfig
from .plugin_api import ClientPlugin
from .resource import LocalFsRepoDesc, ResourceStorage, repository_config_from_dict


@dataclass(frozen=True)
class SampleConfig:
    """Configuration of the sample plugin."""

    item: str


@dataclass
class Sample(ClientPlugin):
    """A minimal client plugin that answers every request with a fixed body."""

    item: str

    def handle(self, body: bytes, query: str, path: str, method: str) -> bytes:
        return b"sample plugin response"

    def validate_auth(self, body: bytes, query: str, path: str, method: str) -> bool:
        return True

    def encrypted(self, body: bytes, query: str, path: str, method: str) -> bool:
        return False


class PluginKind(Enum):
    """The known plugins, valued by the name they are served under."""

    SAMPLE = "sample"
    RESOURCE = "resource"
    NEBULA_CA = "nebula-ca"


_KIND_NAMES = {
    "Sample": PluginKind.SAMPLE,
    "sample": PluginKind.SAMPLE,
    "ResourceStorage": PluginKind.RESOURCE,
    "resource": PluginKind.RESOURCE,
    "NebulaCaPlugin": PluginKind.NEBULA_CA,
    "nebula-ca": PluginKind.NEBULA_CA,
}

_INIT_FAILURES = {
    PluginKind.SAMPLE: "Initialize 'Sample' plugin failed",
    PluginKind.RESOURCE: "Initialize 'Resource' plugin failed",
    PluginKind.NEBULA_CA: "Initialize 'nebula-ca-plugin' failed",
}

PluginSettings = Union[SampleConfig, LocalFsRepoDesc, NebulaCaPluginConfig]


def _sample_config(data: Mapping[str, Any]) -> SampleConfig:
    if "item" not in data:
        raise ValueError("missing field `item`")
    item = data["item"]
    if not isinstance(item, str):
        raise ValueError("`item` must be a string")
    return SampleConfig(item=item)


@dataclass(frozen=True)
class PluginsConfig:
    """Configuration of one plugin, tagged by the plugin's kind."""

    kind: PluginKind
    settings: PluginSettings

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PluginsConfig:
        """Build a plugin configuration from data tagged by its ``name`` key."""
        if "name" not in data:
            raise ValueError("missing field `name`")
        name = data["name"]
        kind = _KIND_NAMES.get(name) if isinstance(name, str) else None
        if kind is None:
            raise ValueError(f"unknown plugin `{name}`")
        rest = {key: value for key, value in data.items() if key != "name"}
        if kind is PluginKind.SAMPLE:
            settings: PluginSettings = _sample_config(rest)
        elif kind is PluginKind.RESOURCE:
            settings = repository_config_from_dict(rest)
        else:
            settings = NebulaCaPluginConfig.from_dict(rest)
        return cls(kind=kind, settings=settings)

    def __str__(self) -> str:
        return self.kind.value

    def build(self) -> ClientPlugin:
        """Create the plugin this configuration describes."""
        try:
            if self.kind is PluginKind.SAMPLE:
                return Sample(self.settings.item)
            if self.kind is PluginKind.RESOURCE:
                return ResourceStorage.from_config(self.settings)
            return NebulaCaPlugin.from_config(self.settings)
        except Exception as exc:
            raise RuntimeError(_INIT_FAILURES[self.kind]) from exc


class PluginManager:
    """Holds the configured plugins by the name they are served under."""

    def __init__(self, plugins: Mapping[str, ClientPlugin] | None = None) -> None:
        self._plugins: dict[str, ClientPlugin] = dict(plugins or {})

    @classmethod
    def from_configs(cls, configs: Iterable[PluginsConfig]) -> PluginManager:
        """Build every configured plugin; a later plugin of the same name wins."""
        return cls({str(config): config.build() for config in configs})

    def get(self, name: str) -> ClientPlugin | None:
        """Return the plugin served under ``name``, or None."""
        return self._plugins.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._plugins

    def __len__(self) -> int:
        return len(self._plugins)