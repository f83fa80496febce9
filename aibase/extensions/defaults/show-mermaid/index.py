from aibase.tools.runtime.visualization import show_mermaid

__all__ = ["show_mermaid"]
