"""Key broker service components: resource storage, client plugins, a Nebula CA plugin and metrics."""

__version__ = "0.1.0"
__all__ = ["metrics", "plugin_api", "resource", "nebula_ca", "plugins"]