"""Web and image search.

``web_search(...)`` searches the web, ``web_search.image_search(...)``
searches images. Requires BRAVE_API_KEY.
"""

from aibase.tools.runtime.web_search import image_search, web_search

__all__ = ["web_search", "image_search"]
