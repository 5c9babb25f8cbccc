"""
Lightup Engines

Clients for the external agent runtimes cards are dispatched to.
"""

from lightup.engines.opencode import OpenCodeClient, OpenCodeConfig

__all__ = ["OpenCodeClient", "OpenCodeConfig"]
