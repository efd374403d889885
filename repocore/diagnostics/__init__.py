"""
Diagnostics for repocore.

Provides the Context abstraction every core operation logs through.
"""

from .context import Context, LoggingContext, LoginFailedHook

__all__ = [
    "Context",
    "LoggingContext",
    "LoginFailedHook",
]
