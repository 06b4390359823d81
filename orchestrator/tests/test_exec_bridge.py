"""
Tests for the exec / terminal bridge.

Tests:
- Resize control messages go to the resize channel, everything else to stdin
- Streams without a resize channel drop resize events
- Either side closing tears down the other (idempotently)
- Audit events for start / end / failure
- Start failures reported to the client as a terminal message
"""

import asyncio
import json
import logging
import time
from types import SimpleNamespace as NS

import pytest

pytest.importorskip("kubernetes")

from devplatform.services.audit import AuditSink, LoggingAuditSink
from devplatform.schemas import AuditEvent
from devplatform.services.exec_bridge import (
    ExecBridge,
    ExecSession,
    ExecSessionState,
    ExecTransport,
    parse_control_message,
)
from devplatform.services.orchestration.errors import ResourceNotFoundError


class FakeStream:
    """In-memory stand-in for a kubernetes WSClient."""

    def __init__(self, output=None, close_after_output=False, open_signal=True, stdin_error=None):
        self.output = list(output or [])
        self.close_after_output = close_after_output
        self.open = open_signal
        self.stdin_error = stdin_error
        self.stdin = []
        self.channels = []
        self.close_calls = 0

    def is_open(self):
        return self.open

    def update(self, timeout=0):
        time.sleep(0.001)

    def peek_stdout(self):
        return bool(self.output)

    def read_stdout(self):
        data = "".join(self.output)
        self.output = []
        if self.close_after_output:
            self.open = False
        return data

    def peek_stderr(self):
        return False

    def read_stderr(self):
        return ""

    def write_stdin(self, data):
        if self.stdin_error is not None:
            raise self.stdin_error
        self.stdin.append(data)

    def write_channel(self, channel, data):
        self.channels.append((channel, data))

    def close(self):
        self.close_calls += 1
        self.open = False


class StreamWithoutResize(FakeStream):
    write_channel = None


class FakeTransport(ExecTransport):
    def __init__(self, messages=()):
        self.incoming = asyncio.Queue()
        for message in messages:
            self.incoming.put_nowait(message)
        self.sent = []
        self.closed = False

    async def receive(self):
        return await self.incoming.get()

    async def send(self, data):
        self.sent.append(data)

    async def close(self):
        self.closed = True


class RecordingSink(AuditSink):
    def __init__(self):
        self.events = []

    async def record(self, event):
        self.events.append(event)


class FailingSink(AuditSink):
    async def record(self, event):
        raise RuntimeError("audit store down")


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def bridge(mock_k8s, settings, sink):
    mock_k8s.read_pod.return_value = NS(spec=NS(containers=[NS(name="workspace"), NS(name="sidecar")]))
    return ExecBridge(mock_k8s, settings, sink)


def resize(cols, rows):
    return json.dumps({"type": "resize", "cols": cols, "rows": rows})


@pytest.mark.unit
class TestControlMessages:

    def test_resize_is_recognized(self):
        assert parse_control_message(resize(80, 24)) == {"type": "resize", "cols": 80, "rows": 24}

    @pytest.mark.parametrize("message", ["ls -la\n", "{not json", '{"type": "ping"}', "[1, 2]", "42"])
    def test_everything_else_is_input(self, message):
        assert parse_control_message(message) is None


@pytest.mark.unit
class TestExecSession:

    @pytest.mark.asyncio
    async def test_assumed_established_without_open_signal(self):
        session = ExecSession("group-acme", "workspace-a-0", "workspace", ["/bin/sh"])
        session.socket = FakeStream(open_signal=False)

        await session.wait_until_open(timeout=0.02, interval=0.005)

        assert session.state == ExecSessionState.ESTABLISHED

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        session = ExecSession("group-acme", "workspace-a-0", "workspace", ["/bin/sh"])
        session.socket = FakeStream()
        session.state = ExecSessionState.ESTABLISHED

        await session.close()
        await session.close(failed=True)

        assert session.socket.close_calls == 1
        assert session.state == ExecSessionState.CLOSED

    @pytest.mark.asyncio
    async def test_write_after_close_is_rejected(self):
        session = ExecSession("group-acme", "workspace-a-0", "workspace", ["/bin/sh"])
        session.socket = FakeStream()
        await session.close()

        with pytest.raises(ValueError):
            await session.write_input("ls\n")


@pytest.mark.unit
@pytest.mark.kubernetes
class TestExecBridge:

    @pytest.mark.asyncio
    async def test_open_session_defaults(self, bridge, mock_k8s, settings):
        mock_k8s.open_exec_stream.return_value = FakeStream()

        session = await bridge.open_session("group-acme", "workspace-a-0")

        assert session.state == ExecSessionState.ESTABLISHED
        assert session.container == "workspace"
        assert session.command == ["/bin/sh", "-c", settings.exec_default_shell]
        assert bridge.sessions[session.session_id] is session
        mock_k8s.open_exec_stream.assert_awaited_once_with(
            "group-acme", "workspace-a-0", "workspace", session.command, tty=True
        )

    @pytest.mark.asyncio
    async def test_explicit_container_skips_pod_lookup(self, bridge, mock_k8s):
        mock_k8s.open_exec_stream.return_value = FakeStream()

        session = await bridge.open_session("group-acme", "workspace-a-0", container="sidecar", command=["bash"])

        assert session.container == "sidecar"
        assert session.command == ["bash"]
        mock_k8s.read_pod.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_resize_goes_to_resize_channel(self, bridge, mock_k8s):
        stream = FakeStream()
        mock_k8s.open_exec_stream.return_value = stream
        session = await bridge.open_session("group-acme", "workspace-a-0")

        await bridge.handle_client_message(session, resize(120, 40))

        assert stream.channels == [(4, json.dumps({"Width": 120, "Height": 40}))]
        assert stream.stdin == []

    @pytest.mark.asyncio
    async def test_non_resize_json_is_forwarded_verbatim(self, bridge, mock_k8s):
        stream = FakeStream()
        mock_k8s.open_exec_stream.return_value = stream
        session = await bridge.open_session("group-acme", "workspace-a-0")

        await bridge.handle_client_message(session, '{"type": "ping"}')
        await bridge.handle_client_message(session, "echo hi\n")

        assert stream.stdin == ['{"type": "ping"}', "echo hi\n"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("message", [
        json.dumps({"type": "resize"}),
        json.dumps({"type": "resize", "cols": "80", "rows": 24}),
        json.dumps({"type": "resize", "cols": 0, "rows": 24}),
    ])
    async def test_malformed_resize_is_dropped(self, bridge, mock_k8s, message):
        stream = FakeStream()
        mock_k8s.open_exec_stream.return_value = stream
        session = await bridge.open_session("group-acme", "workspace-a-0")

        await bridge.handle_client_message(session, message)

        assert stream.channels == []
        assert stream.stdin == []

    @pytest.mark.asyncio
    async def test_resize_dropped_without_resize_channel(self, bridge, mock_k8s):
        stream = StreamWithoutResize()
        mock_k8s.open_exec_stream.return_value = stream
        session = await bridge.open_session("group-acme", "workspace-a-0")

        await bridge.handle_client_message(session, resize(80, 24))

        assert stream.stdin == []

    @pytest.mark.asyncio
    async def test_client_disconnect_closes_stream(self, bridge, mock_k8s, sink):
        stream = FakeStream()
        mock_k8s.open_exec_stream.return_value = stream
        session = await bridge.open_session("group-acme", "workspace-a-0")
        transport = FakeTransport(["ls\n", resize(100, 30), None])

        await asyncio.wait_for(bridge.run_session(session, transport, actor="admin"), timeout=5)

        assert stream.stdin == ["ls\n"]
        assert stream.channels == [(4, json.dumps({"Width": 100, "Height": 30}))]
        assert stream.close_calls == 1
        assert session.state == ExecSessionState.CLOSED
        assert session.session_id not in bridge.sessions
        assert transport.closed is True
        assert [e.action for e in sink.events] == ["workspace_exec_start", "workspace_exec_end"]
        assert "durationMs" in sink.events[1].details
        assert sink.events[0].resource == "group-acme/workspace-a-0"

    @pytest.mark.asyncio
    async def test_stream_close_ends_session(self, bridge, mock_k8s, sink):
        stream = FakeStream(output=["hello\r\n"], close_after_output=True)
        mock_k8s.open_exec_stream.return_value = stream
        session = await bridge.open_session("group-acme", "workspace-a-0")
        transport = FakeTransport()

        await asyncio.wait_for(bridge.run_session(session, transport, actor="admin"), timeout=5)

        assert transport.sent == ["hello\r\n"]
        assert transport.closed is True
        assert session.state == ExecSessionState.CLOSED
        assert sink.events[-1].action == "workspace_exec_end"

    @pytest.mark.asyncio
    async def test_stream_error_is_reported_and_audited(self, bridge, mock_k8s, sink):
        stream = FakeStream(stdin_error=RuntimeError("broken pipe"))
        mock_k8s.open_exec_stream.return_value = stream
        session = await bridge.open_session("group-acme", "workspace-a-0")
        transport = FakeTransport(["ls\n"])

        await asyncio.wait_for(bridge.run_session(session, transport, actor="admin"), timeout=5)

        assert transport.sent[-1] == "\r\nExec error: broken pipe\r\n"
        assert session.state == ExecSessionState.FAILED
        assert stream.close_calls == 1
        failed = sink.events[-1]
        assert failed.action == "workspace_exec_failed"
        assert failed.success is False
        assert failed.error == "broken pipe"

    @pytest.mark.asyncio
    async def test_attach_start_failure(self, bridge, mock_k8s, sink):
        mock_k8s.open_exec_stream.side_effect = ResourceNotFoundError("pod gone")
        transport = FakeTransport()

        result = await bridge.attach("group-acme", "workspace-a-0", transport, actor="admin")

        assert result is None
        assert transport.sent == ["Failed to start exec session: pod gone\r\n"]
        assert transport.closed is True
        assert sink.events[0].action == "workspace_exec_failed"
        assert sink.events[0].success is False
        assert bridge.sessions == {}

    @pytest.mark.asyncio
    async def test_attach_sends_banner_then_relays(self, bridge, mock_k8s, sink):
        mock_k8s.open_exec_stream.return_value = FakeStream()
        transport = FakeTransport([None])

        session = await asyncio.wait_for(
            bridge.attach("group-acme", "workspace-a-0", transport, actor="admin"), timeout=5
        )

        assert session is not None
        assert transport.sent[0].startswith("\r\nConnected to workspace\r\n")
        assert "Pod: workspace-a-0" in transport.sent[0]
        assert "Namespace: group-acme" in transport.sent[0]
        assert [e.action for e in sink.events] == ["workspace_exec_start", "workspace_exec_end"]

    @pytest.mark.asyncio
    async def test_failing_audit_sink_does_not_break_session(self, mock_k8s, settings):
        mock_k8s.read_pod.return_value = NS(spec=NS(containers=[NS(name="workspace")]))
        mock_k8s.open_exec_stream.return_value = FakeStream()
        bridge = ExecBridge(mock_k8s, settings, FailingSink())
        transport = FakeTransport([None])

        session = await asyncio.wait_for(
            bridge.attach("group-acme", "workspace-a-0", transport, actor="admin"), timeout=5
        )

        assert session.state == ExecSessionState.CLOSED
        assert transport.closed is True


@pytest.mark.unit
class TestLoggingAuditSink:

    @pytest.mark.asyncio
    async def test_events_are_logged_as_json(self, caplog):
        caplog.set_level(logging.INFO, logger="devplatform.audit")
        event = AuditEvent(actor="admin", action="workspace_exec_start", resource="group-acme/workspace-a-0")

        await LoggingAuditSink().record(event)

        record = caplog.records[-1]
        assert record.name == "devplatform.audit"
        assert json.loads(record.getMessage())["action"] == "workspace_exec_start"
