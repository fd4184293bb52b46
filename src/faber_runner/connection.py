"""SSH connection lifecycle for a single command execution."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

import asyncssh

from .config import ServerTarget
from .errors import ConnectError
from .progress import ProgressLog, ProgressTag

logger = logging.getLogger(__name__)


@dataclass
class Session:
    """A live SSH connection owned by one command execution.

    ``handed_off`` is set when a pending execution transfers ownership of the
    connection (and the still-running ``process``) to the caller; from then on
    the manager no longer closes it.
    """

    target: ServerTarget
    connection: Any
    process: Any = None
    handed_off: bool = False
    closed: bool = False


class ConnectionManager:
    """Opens and closes key-authenticated SSH sessions. No retries."""

    def __init__(self, connect_timeout: float = 30.0):
        self.connect_timeout = connect_timeout

    async def connect(self, target: ServerTarget, sink: ProgressLog) -> Session:
        """Open a session to *target* or raise ConnectError."""
        sink.emit(ProgressTag.SSH, f"Connecting to {target.user_host}...")
        logger.info("Connecting to %s", target.user_host)

        try:
            key = asyncssh.read_private_key(target.key_path)
        except (OSError, asyncssh.KeyImportError) as e:
            raise self._error(sink, f"Cannot load SSH key {target.key_path}: {e}") from e

        try:
            conn = await asyncssh.connect(
                target.host,
                port=target.port,
                username=target.user,
                client_keys=[key],
                known_hosts=None,  # Managed hosts are reached by key only
                connect_timeout=self.connect_timeout,
            )
        except asyncssh.PermissionDenied as e:
            raise self._error(sink, f"Authentication failed for {target.user_host}: {e}") from e
        except asyncssh.Error as e:
            raise self._error(sink, f"SSH error: {e}") from e
        except (OSError, asyncio.TimeoutError) as e:
            raise self._error(sink, f"Connection error: {str(e) or type(e).__name__}") from e

        sink.emit(ProgressTag.SSH, "Connected successfully")
        return Session(target=target, connection=conn)

    def _error(self, sink: ProgressLog, message: str) -> ConnectError:
        sink.emit(ProgressTag.ERROR, message)
        logger.warning(message)
        return ConnectError(message)

    async def disconnect(self, session: Session | None, sink: ProgressLog | None = None) -> None:
        """Close *session*. Idempotent; never raises."""
        if session is None or session.closed:
            return
        session.closed = True
        try:
            session.connection.close()
            await session.connection.wait_closed()
        except Exception as e:
            logger.debug("Error while closing connection to %s: %s", session.target.user_host, e)
        if sink is not None:
            sink.emit(ProgressTag.SSH, "Disconnected")
        logger.debug("Disconnected from %s", session.target.user_host)

    def hand_off(self, session: Session) -> Session:
        """Release ownership of *session* to the caller."""
        session.handed_off = True
        logger.info(
            "Leaving connection to %s open for a pending interactive prompt",
            session.target.user_host,
        )
        return session
