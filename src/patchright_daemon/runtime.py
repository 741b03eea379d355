"""Runtime file and identifier helpers for patchright-daemon.

The daemon binds a single Unix domain socket.  Its location is, in order of
preference, the explicit path passed in (usually ``DaemonConfig.socket_path``),
the ``PATCHRIGHT_DAEMON_SOCKET`` environment variable, and finally
``~/.patchright-daemon.sock``.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Container
from pathlib import Path

_SOCKET_FILENAME = ".patchright-daemon.sock"
_ENV_SOCKET_VAR = "PATCHRIGHT_DAEMON_SOCKET"
_ID_LENGTH = 8


# ---------------------------------------------------------------------------
# Identifiers
# ---------------------------------------------------------------------------


def generate_id(taken: Container[str] = ()) -> str:
    """Return a short opaque token that is not in *taken*.

    Tokens are the first eight hex digits of a random UUID.  Collisions are
    rare but possible, so the caller passes the ids that are currently live
    and the generator draws again until it finds a free one.
    """
    while True:
        token = uuid.uuid4().hex[:_ID_LENGTH]
        if token not in taken:
            return token


# ---------------------------------------------------------------------------
# Socket endpoint
# ---------------------------------------------------------------------------


def get_socket_path(explicit: str | os.PathLike[str] | None = None) -> Path:
    """Resolve the daemon socket path."""
    if explicit:
        return Path(explicit).expanduser()
    env_value = os.environ.get(_ENV_SOCKET_VAR, "").strip()
    if env_value:
        return Path(env_value).expanduser()
    return Path.home() / _SOCKET_FILENAME


def remove_stale_socket(socket_path: Path) -> bool:
    """Remove a socket file left behind by a previous unclean shutdown.

    Returns ``True`` if a file was removed.
    """
    try:
        socket_path.unlink()
    except FileNotFoundError:
        return False
    return True
