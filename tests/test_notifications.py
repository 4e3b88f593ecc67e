import logging

import pytest
from fakes import FakeServer, open_session, wait_until

from langproxy.lsp.notifications import LogMessage, NotificationSink
from langproxy.rpc.jsonrpc import Notification


def progress(n: int) -> Notification:
    return Notification("$/progress", {"token": n})


def test_history_is_bounded_and_keeps_arrival_order():
    sink = NotificationSink(history=5)
    for n in range(12):
        sink.dispatch(progress(n))
        sink.dispatch(Notification("window/logMessage", {"type": 4, "message": f"line {n}"}))
    assert len(sink) == 5
    assert sink.total == 24
    assert [m.message for m in sink.log_messages] == [f"line {n}" for n in range(7, 12)]
    assert sink.received[-1] == Notification(
        "window/logMessage", {"type": 4, "message": "line 11"}
    )


@pytest.mark.asyncio
async def test_session_sink_stays_bounded_under_a_notification_flood():
    server = FakeServer()
    sink = NotificationSink(history=50)
    session = await open_session(server, sink=sink)
    try:
        for n in range(500):
            server.send({"jsonrpc": "2.0", "method": "$/progress", "params": {"token": n}})
        assert session.sink is sink
        await wait_until(lambda: sink.total == 502)
        assert len(session.sink) == 50
        assert [note.params["token"] for note in session.sink.received] == list(range(450, 500))
    finally:
        await session.close()


def test_handler_is_called_and_silences_unhandled_warning(caplog):
    sink = NotificationSink("pyright")
    seen = []
    sink.on("textDocument/publishDiagnostics", seen.append)
    diagnostics = Notification(
        "textDocument/publishDiagnostics", {"uri": "file:///a.py", "diagnostics": []}
    )
    with caplog.at_level(logging.WARNING, logger="langproxy.lsp.notifications"):
        sink.dispatch(diagnostics)
        sink.dispatch(Notification("telemetry/event", {}))
    assert seen == [diagnostics]
    assert "publishDiagnostics" not in caplog.text
    assert "Unhandled notification from pyright: telemetry/event" in caplog.text


def test_drain_returns_in_order_and_empties():
    sink = NotificationSink()
    sink.dispatch(Notification("window/logMessage", {"type": 2, "message": "careful"}))
    sink.dispatch(progress(1))
    sink.dispatch(progress(2))
    drained = sink.drain()
    assert [n.method for n in drained] == ["window/logMessage", "$/progress", "$/progress"]
    assert drained[1].params == {"token": 1}
    assert len(sink) == 0
    assert sink.drain() == []
    # counters and extracted log text survive a drain
    assert sink.total == 3
    assert list(sink.log_messages) == [LogMessage(2, "careful")]
