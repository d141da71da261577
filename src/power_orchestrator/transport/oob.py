"""
Out of band host power controller.

A host that is powered off has no management API. The only way to start it is
the baseboard management controller, reached through an external executable.

We call ipmitool with the lanplus interface by default. The password is passed
through the IPMI_PASSWORD environment variable with -E so it does not appear
in the process list.
"""

from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass, field
from typing import Any, Callable

from power_orchestrator.core.errors import RemoteError, TransportFailure
from power_orchestrator.core.types import Credentials
from power_orchestrator.transport.shell import CommandResult


@dataclass
class OutOfBandPowerController:
    """
    Wrapper around an IPMI style power control executable.

    executable
    Path or name of the tool.

    interface
    IPMI interface argument.

    runner
    subprocess.run compatible callable, injectable for tests.
    """

    executable: str = "ipmitool"
    interface: str = "lanplus"
    timeout: float = 60.0
    runner: Callable[..., Any] = field(default=subprocess.run, repr=False)

    def _invoke(self, address: str, credentials: Credentials, *args: str) -> CommandResult:
        argv = [
            self.executable,
            "-I", self.interface,
            "-H", address,
            "-U", credentials.username,
            "-E",
            *args,
        ]
        env = dict(os.environ)
        env["IPMI_PASSWORD"] = credentials.password
        try:
            completed = self.runner(
                argv,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                env=env,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            raise TransportFailure(f"{self.executable} against {address} timed out") from exc
        except OSError as exc:
            raise RemoteError(f"cannot run {self.executable}: {exc}") from exc

        output = (completed.stdout or "") + (completed.stderr or "")
        result = CommandResult(exit_status=int(completed.returncode), output=output)
        if not result.ok:
            raise RemoteError(f"{self.executable} against {address} exited {result.exit_status}: {output.strip()}")
        return result

    def power_on(self, address: str, credentials: Credentials) -> CommandResult:
        return self._invoke(address, credentials, "chassis", "power", "on")

    def power_is_on(self, address: str, credentials: Credentials) -> bool:
        result = self._invoke(address, credentials, "chassis", "power", "status")
        return "power is on" in result.output.lower()
