"""AIBase backend: extension loading and sandboxed script runtime."""

__version__ = "0.1.0"
