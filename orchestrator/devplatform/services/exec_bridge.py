"""
Exec / Terminal Bridge

Relays an interactive terminal between a client transport (the admin
WebSocket) and a TTY exec stream into a workspace pod.

Session lifecycle:

    CONNECTING --stream open--> ESTABLISHED --either side closes--> CLOSED
         \\--------------------- error --------------------------> FAILED

Inbound client messages are forwarded verbatim to stdin, except resize
control messages ({"type": "resize", "cols": C, "rows": R}) which go to the
stream's resize channel. stdout and stderr are forwarded verbatim to the
client. The two directions run as independent tasks; whichever finishes
first tears down the other, and teardown is idempotent.
"""

import asyncio
import json
import logging
import time
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..config import Settings
from ..schemas import AuditEvent
from .audit import AuditSink
from .orchestration.errors import best_effort
from .orchestration.kubernetes.client import KubernetesClient, RESIZE_CHANNEL

logger = logging.getLogger(__name__)


class ExecSessionState(str, Enum):
    CONNECTING = "connecting"
    ESTABLISHED = "established"
    CLOSED = "closed"
    FAILED = "failed"


class ExecTransport(ABC):
    """Client side of a terminal session (e.g. a WebSocket)."""

    @abstractmethod
    async def receive(self) -> Optional[str]:
        """Next client message, or None once the client has disconnected."""
        pass

    @abstractmethod
    async def send(self, data: str) -> None:
        pass

    @abstractmethod
    async def close(self) -> None:
        pass


def parse_control_message(message: str) -> Optional[Dict[str, Any]]:
    """
    Recognize a resize control message.

    Returns:
        The decoded message if it is {"type": "resize", ...}, else None
        (the caller forwards anything else to stdin unchanged)
    """
    try:
        decoded = json.loads(message)
    except (TypeError, ValueError):
        return None
    if isinstance(decoded, dict) and decoded.get("type") == "resize":
        return decoded
    return None


def _terminal_size(control: Dict[str, Any]) -> Optional[Tuple[int, int]]:
    cols, rows = control.get("cols"), control.get("rows")
    if isinstance(cols, bool) or isinstance(rows, bool):
        return None
    if isinstance(cols, int) and isinstance(rows, int) and cols > 0 and rows > 0:
        return cols, rows
    return None


class ExecSession:
    """One interactive exec stream into a pod container."""

    def __init__(
        self,
        namespace: str,
        pod_name: str,
        container: str,
        command: List[str],
        read_timeout: float = 0.1,
    ):
        self.session_id = str(uuid.uuid4())
        self.namespace = namespace
        self.pod_name = pod_name
        self.container = container
        self.command = command
        self.read_timeout = read_timeout

        self.state = ExecSessionState.CONNECTING
        self.created_at = datetime.utcnow()
        self.bytes_read = 0
        self.bytes_written = 0

        # Set once the exec stream is open
        self.socket = None

    @property
    def is_active(self) -> bool:
        return self.state in (ExecSessionState.CONNECTING, ExecSessionState.ESTABLISHED)

    async def wait_until_open(self, timeout: float, interval: float = 0.05) -> None:
        """
        Move to ESTABLISHED once the stream reports open.

        Some stream implementations never signal it; after `timeout` the
        stream is assumed open.
        """
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if self.socket.is_open():
                break
            await asyncio.sleep(interval)
        else:
            logger.debug(f"[EXEC] No open signal for session {self.session_id}, assuming established")
        self.state = ExecSessionState.ESTABLISHED

    async def write_input(self, data: str) -> None:
        """Write data to the pod's stdin (channel 0)."""
        if not self.is_active:
            raise ValueError(f"Session {self.session_id} is not active")
        await asyncio.to_thread(self.socket.write_stdin, data)
        self.bytes_written += len(data)

    async def resize(self, cols: int, rows: int) -> bool:
        """
        Send a terminal resize event.

        Returns:
            False if the stream has no resize channel (event discarded)
        """
        write_channel = getattr(self.socket, "write_channel", None)
        if write_channel is None:
            return False
        payload = json.dumps({"Width": cols, "Height": rows})
        await asyncio.to_thread(write_channel, RESIZE_CHANNEL, payload)
        return True

    def _read_available(self) -> Tuple[str, bool]:
        self.socket.update(timeout=self.read_timeout)
        chunks = []
        # K8s stdout is on channel 1, stderr on channel 2
        if self.socket.peek_stdout():
            chunks.append(self.socket.read_stdout())
        if self.socket.peek_stderr():
            chunks.append(self.socket.read_stderr())
        return "".join(chunks), self.socket.is_open()

    async def read_output(self) -> Tuple[str, bool]:
        """
        Read whatever stdout / stderr is available.

        Returns:
            (data, still_open)
        """
        data, still_open = await asyncio.to_thread(self._read_available)
        self.bytes_read += len(data)
        return data, still_open

    async def close(self, failed: bool = False) -> None:
        """Close the stream. Safe to call more than once."""
        if not self.is_active:
            return
        self.state = ExecSessionState.FAILED if failed else ExecSessionState.CLOSED
        if self.socket is not None:
            try:
                await asyncio.to_thread(self.socket.close)
            except Exception as e:
                logger.debug(f"[EXEC] Error closing stream for session {self.session_id}: {e}")


class ExecBridge:
    """Opens exec sessions into pods and relays them to client transports."""

    def __init__(self, k8s: KubernetesClient, settings: Settings, audit_sink: AuditSink):
        self.k8s = k8s
        self.settings = settings
        self.audit_sink = audit_sink
        self.sessions: Dict[str, ExecSession] = {}

    async def _audit(self, actor: str, action: str, session: ExecSession, success: bool = True,
                     error: Optional[str] = None, **details) -> None:
        event = AuditEvent(
            actor=actor,
            action=action,
            resource=f"{session.namespace}/{session.pod_name}",
            success=success,
            error=error,
            details={"container": session.container, "session_id": session.session_id, **details},
        )
        await best_effort(self.audit_sink.record(event), f"audit {action}")

    async def open_session(
        self,
        namespace: str,
        pod_name: str,
        container: Optional[str] = None,
        command: Optional[List[str]] = None,
    ) -> ExecSession:
        """
        Open a TTY exec stream into a pod.

        Args:
            namespace: Pod namespace
            pod_name: Pod to attach to
            container: Container name (defaults to the pod's first container)
            command: Command to run (defaults to an interactive login shell)

        Returns:
            ExecSession in the ESTABLISHED state
        """
        if not container:
            pod = await self.k8s.read_pod(namespace, pod_name)
            containers = (pod.spec.containers if pod.spec else None) or []
            if not containers:
                raise ValueError(f"Pod {pod_name} has no containers")
            container = containers[0].name

        session = ExecSession(
            namespace=namespace,
            pod_name=pod_name,
            container=container,
            command=command or ["/bin/sh", "-c", self.settings.exec_default_shell],
            read_timeout=self.settings.exec_read_timeout_seconds,
        )

        try:
            session.socket = await self.k8s.open_exec_stream(
                namespace, pod_name, container, session.command, tty=True
            )
        except Exception:
            session.state = ExecSessionState.FAILED
            raise

        await session.wait_until_open(self.settings.exec_open_timeout_seconds)
        self.sessions[session.session_id] = session
        logger.info(f"[EXEC] Opened session {session.session_id} into {namespace}/{pod_name} ({container})")
        return session

    async def close_session(self, session_id: str, failed: bool = False) -> None:
        session = self.sessions.pop(session_id, None)
        if session is None:
            return
        await session.close(failed=failed)
        logger.info(f"[EXEC] Closed session {session_id}")

    async def handle_client_message(self, session: ExecSession, message: str) -> None:
        control = parse_control_message(message)
        if control is None:
            await session.write_input(message)
            return

        size = _terminal_size(control)
        if size is None:
            logger.debug(f"[EXEC] Ignoring malformed resize message: {message!r}")
            return
        if not await session.resize(*size):
            logger.debug(f"[EXEC] Stream has no resize channel, dropping resize {size}")

    async def _relay_inbound(self, session: ExecSession, transport: ExecTransport) -> None:
        while session.is_active:
            message = await transport.receive()
            if message is None:
                logger.info(f"[EXEC] Client disconnected from session {session.session_id}")
                return
            await self.handle_client_message(session, message)

    async def _relay_outbound(self, session: ExecSession, transport: ExecTransport) -> None:
        while session.is_active:
            data, still_open = await session.read_output()
            if data:
                await transport.send(data)
            if not still_open:
                logger.info(f"[EXEC] Stream closed for session {session.session_id}")
                return

    async def run_session(self, session: ExecSession, transport: ExecTransport, actor: str) -> None:
        """
        Relay an established session until either side closes.

        Emits workspace_exec_start, then workspace_exec_end (with duration)
        or workspace_exec_failed (with the error).
        """
        started = time.monotonic()
        await self._audit(actor, "workspace_exec_start", session)

        inbound = asyncio.create_task(self._relay_inbound(session, transport))
        outbound = asyncio.create_task(self._relay_outbound(session, transport))
        error: Optional[BaseException] = None

        try:
            done, pending = await asyncio.wait({inbound, outbound}, return_when=asyncio.FIRST_COMPLETED)
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            for task in done:
                if task.exception() is not None:
                    error = task.exception()
                    break
        finally:
            for task in (inbound, outbound):
                if not task.done():
                    task.cancel()
            await self.close_session(session.session_id, failed=error is not None)

        duration_ms = int((time.monotonic() - started) * 1000)
        if error is not None:
            logger.error(f"[EXEC] Session {session.session_id} failed: {error}")
            await best_effort(transport.send(f"\r\nExec error: {error}\r\n"), "send exec error to client")
            await self._audit(
                actor, "workspace_exec_failed", session, success=False, error=str(error), durationMs=duration_ms
            )
        else:
            await self._audit(actor, "workspace_exec_end", session, durationMs=duration_ms)

        await best_effort(transport.close(), "close exec transport")

    async def attach(
        self,
        namespace: str,
        pod_name: str,
        transport: ExecTransport,
        actor: str,
        container: Optional[str] = None,
        command: Optional[List[str]] = None,
    ) -> Optional[ExecSession]:
        """
        Open a session and relay it to `transport` until it ends.

        Start failures are written to the client as a terminal message and
        audited; the transport is then closed and None returned.
        """
        try:
            session = await self.open_session(namespace, pod_name, container=container, command=command)
        except Exception as e:
            logger.error(f"[EXEC] Failed to start exec into {namespace}/{pod_name}: {e}")
            await best_effort(transport.send(f"Failed to start exec session: {e}\r\n"), "send exec error to client")
            event = AuditEvent(
                actor=actor,
                action="workspace_exec_failed",
                resource=f"{namespace}/{pod_name}",
                success=False,
                error=str(e),
                details={"container": container},
            )
            await best_effort(self.audit_sink.record(event), "audit workspace_exec_failed")
            await best_effort(transport.close(), "close exec transport")
            return None

        await best_effort(
            transport.send(
                f"\r\nConnected to workspace\r\nPod: {pod_name}\r\nNamespace: {namespace}\r\n\r\n"
            ),
            "send exec banner",
        )
        await self.run_session(session, transport, actor)
        return session
