"""Core shared infrastructure for gitchain.

This package contains foundational utilities:
    - config: Application configuration management
    - console: Rich console output and logging
    - result: Result types and the error hierarchy
    - cancellation: Cooperative cancellation tokens
    - signals: Ordered publish/subscribe registry
"""

from __future__ import annotations

from . import config, console

__all__ = ["config", "console"]
