"""Capabilities exposed to scripts through the bundled default extensions."""
