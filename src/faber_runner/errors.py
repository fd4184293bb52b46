"""Exception types raised by faber-runner."""

from __future__ import annotations


class FaberError(Exception):
    """Base class for all faber-runner errors."""


class ConfigError(FaberError, ValueError):
    """The configuration file is malformed or references an unknown server."""


class ConnectError(FaberError):
    """The SSH session could not be established.

    Covers unreadable or malformed key files, authentication failures,
    refused or unreachable hosts and connect timeouts.
    """


class ExecError(FaberError):
    """The remote shell rejected the exec request."""


class CommandTimeoutError(FaberError):
    """The command did not finish before its deadline.

    The remote process is not killed and may keep running.
    """

    def __init__(self, command: str, timeout: float):
        super().__init__(f"Command timed out after {timeout:g}s: {command}")
        self.command = command
        self.timeout = timeout


class OperationError(FaberError):
    """A faber operation that must succeed returned a non-zero exit code."""
