"""
HTTP route modules.

Routers are mounted in this order; each owns one path prefix.
"""

from .misc import router as misc_router
from .proxy import router as proxy_router
from .opml import router as opml_router
from .masto import router as masto_router

__all__ = [
    "misc_router",
    "proxy_router",
    "opml_router",
    "masto_router",
]
