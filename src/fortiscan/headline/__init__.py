"""Plugin-level checks that run before the per-file scan."""

from fortiscan.headline.composer import ComposerScan
from fortiscan.headline.host_config import HostConfigValidator
from fortiscan.headline.manifest import PermissionManifestValidator
from fortiscan.headline.plugin_config import PluginConfigValidator
from fortiscan.headline.routes import RouteFileValidator, RouteIdRegistry

__all__ = [
    "ComposerScan",
    "HostConfigValidator",
    "PermissionManifestValidator",
    "PluginConfigValidator",
    "RouteFileValidator",
    "RouteIdRegistry",
]
