"""Synchronous client for patchright-daemon.

Connects to the daemon's Unix domain socket, sends one command and reads one
response.  Also renders page and session listings for terminal output.
"""

from __future__ import annotations

import json
import socket
from pathlib import Path
from typing import Any

from patchright_daemon.protocol import Command, encode_request
from patchright_daemon.runtime import get_socket_path

NO_PAGES = "No pages."
NO_SESSIONS = "No browsers."


def _receive_all(sock: socket.socket, buffer_size: int = 65536) -> bytes:
    """Read until the server closes the connection or a newline arrives."""
    data = b""
    while True:
        chunk = sock.recv(buffer_size)
        if not chunk:
            break
        data += chunk
        if b"\n" in data:
            break
    return data.strip()


def send_command(
    command: str,
    socket_path: str | Path | None = None,
    timeout: float = 120.0,
    **fields: Any,
) -> dict:
    """Send *command* with *fields* to the daemon and return its envelope.

    Never raises for transport problems: an unreachable daemon, a timeout or
    an unreadable reply all come back as ``{"success": False, "error": ...}``.
    """
    sock_path = get_socket_path(socket_path)
    if not sock_path.exists():
        return {
            "success": False,
            "error": f"Daemon is not running (no socket at {sock_path}).",
        }

    s = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    try:
        s.settimeout(timeout)
        s.connect(str(sock_path))
        s.sendall(encode_request(command, **fields))
        data = _receive_all(s)
        if not data:
            return {"success": False, "error": "Daemon closed the connection without a response"}
        return json.loads(data)
    except (ConnectionRefusedError, FileNotFoundError):
        return {
            "success": False,
            "error": f"Daemon is not responding. Socket {sock_path} may be stale.",
        }
    except socket.timeout:
        return {"success": False, "error": f"Command timed out after {timeout}s"}
    except json.JSONDecodeError:
        return {"success": False, "error": "Invalid response from daemon"}
    except OSError as e:
        return {"success": False, "error": f"Connection error: {e}"}
    finally:
        s.close()


def is_daemon_running(socket_path: str | Path | None = None, timeout: float = 2.0) -> bool:
    """Return ``True`` if the daemon answers ``ping``."""
    response = send_command(Command.PING, socket_path=socket_path, timeout=timeout)
    return bool(response.get("success"))


def format_pages(pages: list[dict[str, Any]]) -> str:
    """Render a ``listPages`` result, one page per line."""
    if not pages:
        return NO_PAGES
    return "\n".join(
        f"{p.get('pageId')} (browser: {p.get('browserId')}) {p.get('url')}"
        for p in pages
    )


def format_sessions(sessions: list[dict[str, Any]]) -> str:
    """Render a ``listBrowsers`` result, one session per line."""
    if not sessions:
        return NO_SESSIONS
    lines = []
    for s in sessions:
        count = s.get("pageCount", 0)
        marker = " (default)" if s.get("isDefault") else ""
        noun = "page" if count == 1 else "pages"
        lines.append(f"{s.get('browserId')}{marker}: {count} {noun}")
    return "\n".join(lines)
