"""faber-runner: Run faber commands on a remote server over SSH with live progress."""

from .config import Config, ServerTarget, get_server_target, load_config
from .connection import ConnectionManager, Session
from .device_flow import DeviceFlowDetector, PromptInfo
from .errors import (
    CommandTimeoutError,
    ConfigError,
    ConnectError,
    ExecError,
    FaberError,
    OperationError,
)
from .executor import (
    UNKNOWN_EXIT_CODE,
    CommandExecutor,
    ExecutionRequest,
    ExecutionResult,
    run_command,
)
from .progress import ProgressEvent, ProgressLog, ProgressTag

__version__ = "0.1.0"

__all__ = [
    "Config",
    "ServerTarget",
    "get_server_target",
    "load_config",
    "ConnectionManager",
    "Session",
    "DeviceFlowDetector",
    "PromptInfo",
    "CommandTimeoutError",
    "ConfigError",
    "ConnectError",
    "ExecError",
    "FaberError",
    "OperationError",
    "UNKNOWN_EXIT_CODE",
    "CommandExecutor",
    "ExecutionRequest",
    "ExecutionResult",
    "run_command",
    "ProgressEvent",
    "ProgressLog",
    "ProgressTag",
]
