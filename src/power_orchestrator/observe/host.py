"""
Host level observations outside the management API.

host_reachability uses a TCP probe against the host management port, which is
the only observation available while a host is powered off.

vsan_elevator_state reads the LSOM plog elevator option through the host shell.
"""

from __future__ import annotations

import re
from typing import Any, Callable

from power_orchestrator.core.errors import ObservationError
from power_orchestrator.core.types import Reachability, ToggleState
from power_orchestrator.transport.base import Channel
from power_orchestrator.transport.shell import CommandResult, ShellCommand

VSAN_ELEVATOR_OPTION = "/config/LSOM/intOpts/plogRunElevator"

_CURRENT_VALUE = re.compile(r"Current value:\s*(\d+)")


def host_reachability(probe: Callable[[str], bool], address: str) -> Reachability:
    return Reachability.reachable if probe(address) else Reachability.unreachable


def parse_vsish_current_value(output: str) -> int:
    match = _CURRENT_VALUE.search(output)
    if match is None:
        raise ObservationError("vsish output carries no current value")
    return int(match.group(1))


def vsan_elevator_state(channel: Channel[Any]) -> ToggleState:
    result: CommandResult = channel.call(ShellCommand(f"vsish -e get {VSAN_ELEVATOR_OPTION}"))
    if not result.ok:
        raise ObservationError(f"reading {VSAN_ELEVATOR_OPTION} exited {result.exit_status}")
    return ToggleState.from_bool(parse_vsish_current_value(result.output) == 1)
