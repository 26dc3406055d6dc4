# unibundle/__init__.py
"""unibundle - prebuilt multi-platform bundles from Swift package dependencies."""

__version__ = "0.1.0"
