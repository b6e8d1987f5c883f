"""bundlesmith: resolve deployment sources into deterministic bundles."""

__version__ = "0.1.0"
