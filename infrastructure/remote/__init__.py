"""Remote execution and reachability."""

from .port_check import port_is_open, wait_for_port
from .ssm_shell import CommandResult, RemoteCommandError, SSMRemoteShell

__all__ = [
    "port_is_open",
    "wait_for_port",
    "CommandResult",
    "RemoteCommandError",
    "SSMRemoteShell",
]
