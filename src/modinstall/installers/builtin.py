from modinstall.install.registry import InstallerRegistry
from modinstall.installers import fallback, manifest


def register_default_installers(registry: InstallerRegistry) -> InstallerRegistry:
    registry.register(manifest.MANIFEST_PRIORITY, manifest.test_supported,
                      manifest.install, "manifest")
    registry.register(fallback.FALLBACK_PRIORITY, fallback.test_supported,
                      fallback.install, "fallback")
    return registry
