"""Server-Sent Events helpers."""

from aibase.streaming.sse import format_sse_event

__all__ = ["format_sse_event"]
