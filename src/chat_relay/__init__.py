"""Chat Relay: live chat translation for multiplayer game servers.

Players type in their own language; the relay resolves a source language,
translates the message through an external AI provider off the server's
main thread, and hands each recipient a translated variant in order.

Version Management
------------------
``__version__`` is read from the installed package metadata at import time.
The single source of truth is the ``version`` field in ``pyproject.toml``.
"""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

# ---------------------------------------------------------------------------
# Package version, read from pyproject.toml via importlib.metadata.
#
# If the package is imported without being installed (running straight out
# of a checkout), we fall back to the last released version string.
# ---------------------------------------------------------------------------
try:
    __version__: str = version("chat-relay")
except PackageNotFoundError:
    __version__ = "0.3.0"
