"""
Host shell transport.

Runs commands on ESXi hosts and appliances through the system ssh client.
Password authentication goes through sshpass -e so the secret travels in the
SSHPASS environment variable rather than on the command line.

Every execute is one ssh invocation. A session only records the identity and
whether it is still open; nothing is held on the remote side between calls.

Exit status conventions used for translation
sshpass exits 5 when the password is rejected.
ssh exits 255 when the connection itself fails.
"""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass, field
from typing import Any, Callable

from power_orchestrator.core.errors import (
    AuthenticationFailure,
    ConnectivityError,
    RemoteError,
    TransportFailure,
)
from power_orchestrator.core.types import Credentials
from power_orchestrator.transport.probe import split_endpoint, tcp_probe

logger = logging.getLogger(__name__)

SSHPASS_BAD_PASSWORD = 5
SSH_CONNECTION_ERROR = 255


@dataclass(frozen=True)
class ShellCommand:
    """
    One remote command.

    timeout
    Seconds before the local ssh process is killed.
    """

    command: str
    timeout: float = 60.0


@dataclass(frozen=True)
class CommandResult:
    exit_status: int
    output: str

    @property
    def ok(self) -> bool:
        return self.exit_status == 0


@dataclass
class ShellSession:
    endpoint: str
    host: str
    port: int
    username: str
    password: str = field(repr=False)
    closed: bool = False


@dataclass
class SshShellAdapter:
    """
    Adapter for shell access over ssh.

    runner
    subprocess.run compatible callable, injectable for tests.

    validate_command
    No op command run on open so bad credentials fail at session establishment.
    """

    port: int = 22
    connect_timeout: int = 10
    ssh_binary: str = "ssh"
    sshpass_binary: str = "sshpass"
    validate_command: str = "true"
    runner: Callable[..., Any] = field(default=subprocess.run, repr=False)

    def probe(self, endpoint: str) -> bool:
        host, port = split_endpoint(endpoint, self.port)
        return tcp_probe(host, port, timeout=float(self.connect_timeout))

    def _argv(self, session: ShellSession, command: str) -> list[str]:
        return [
            self.sshpass_binary,
            "-e",
            self.ssh_binary,
            "-q",
            "-o", "StrictHostKeyChecking=no",
            "-o", "UserKnownHostsFile=/dev/null",
            "-o", f"ConnectTimeout={self.connect_timeout}",
            "-p", str(session.port),
            f"{session.username}@{session.host}",
            command,
        ]

    def _run(self, session: ShellSession, request: ShellCommand) -> CommandResult:
        env = dict(os.environ)
        env["SSHPASS"] = session.password
        completed = self.runner(
            self._argv(session, request.command),
            capture_output=True,
            text=True,
            timeout=request.timeout,
            env=env,
            check=False,
        )
        output = (completed.stdout or "") + (completed.stderr or "")
        return CommandResult(exit_status=int(completed.returncode), output=output)

    def open_session(self, endpoint: str, credentials: Credentials) -> ShellSession:
        host, port = split_endpoint(endpoint, self.port)
        session = ShellSession(
            endpoint=endpoint,
            host=host,
            port=port,
            username=credentials.username,
            password=credentials.password,
        )
        try:
            result = self._run(session, ShellCommand(self.validate_command, timeout=float(self.connect_timeout) * 3))
        except subprocess.TimeoutExpired as exc:
            raise ConnectivityError(f"ssh to {endpoint} timed out") from exc
        except OSError as exc:
            raise ConnectivityError(f"cannot start ssh client for {endpoint}: {exc}") from exc

        if result.exit_status == SSHPASS_BAD_PASSWORD:
            raise AuthenticationFailure(f"{endpoint} rejected the password for {credentials.username}")
        if result.exit_status == SSH_CONNECTION_ERROR:
            raise ConnectivityError(f"ssh to {endpoint} failed: {result.output.strip()}")
        if not result.ok:
            raise ConnectivityError(f"ssh session check on {endpoint} exited {result.exit_status}")
        return session

    def execute(self, session: ShellSession, request: ShellCommand) -> CommandResult:
        if session.closed:
            raise RemoteError(f"shell session to {session.endpoint} is closed")
        try:
            result = self._run(session, request)
        except subprocess.TimeoutExpired as exc:
            raise TransportFailure(f"command on {session.endpoint} timed out after {request.timeout}s") from exc
        except OSError as exc:
            raise RemoteError(f"cannot start ssh client for {session.endpoint}: {exc}") from exc

        if result.exit_status == SSH_CONNECTION_ERROR:
            raise TransportFailure(f"ssh to {session.endpoint} dropped: {result.output.strip()}")
        logger.debug("%s: %r exited %s", session.endpoint, request.command, result.exit_status)
        return result

    def close_session(self, session: ShellSession | None) -> None:
        if session is None:
            return
        session.closed = True
