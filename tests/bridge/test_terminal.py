"""Terminal WebSocket tests.

Run synchronously through ``TestClient``: the app runs in a portal thread and
each ``websocket_connect`` block waits for the handler to finish on exit.
"""

from __future__ import annotations

import os

import pytest
from fastapi.testclient import TestClient


def _alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    try:
        with open(f"/proc/{pid}/stat") as f:
            return f.read().split()[2] != "Z"
    except FileNotFoundError:
        return False


def _read_until(ws, needle: str, limit: int = 200) -> str:
    seen = ""
    for _ in range(limit):
        frame = ws.receive_json()
        if frame["type"] == "data":
            seen += frame["data"]
            if needle in seen:
                return seen
        elif frame["type"] == "exit":
            break
    pytest.fail(f"never saw {needle!r} in terminal output: {seen!r}")


@pytest.fixture
def terminal_client(seeded_app) -> TestClient:
    return TestClient(seeded_app)


def test_connect_sends_terminal_id(terminal_client: TestClient, seeded_app) -> None:
    with terminal_client.websocket_connect("/terminal") as ws:
        hello = ws.receive_json()

        assert hello["type"] == "connected"
        assert len(hello["terminalId"]) == 32
        assert seeded_app.state.terminal_registry.get(hello["terminalId"]) is not None


def test_input_is_echoed_by_shell(terminal_client: TestClient) -> None:
    with terminal_client.websocket_connect("/terminal") as ws:
        ws.receive_json()
        ws.send_json({"type": "input", "data": "echo $((6 * 7))\n"})

        assert "42" in _read_until(ws, "42")


def test_shell_sees_configured_environment(terminal_client: TestClient) -> None:
    with terminal_client.websocket_connect("/terminal") as ws:
        ws.receive_json()
        ws.send_json({"type": "input", "data": 'echo "term=$TERM"; pwd\n'})

        output = _read_until(ws, "term=xterm-color")
        assert "term=xterm-color" in output


def test_resize_changes_window_size(terminal_client: TestClient) -> None:
    with terminal_client.websocket_connect("/terminal") as ws:
        ws.receive_json()
        ws.send_json({"type": "resize", "cols": 132, "rows": 40})
        ws.send_json({"type": "input", "data": "stty size\n"})

        assert "40 132" in _read_until(ws, "40 132")


def test_unknown_frames_are_ignored(terminal_client: TestClient) -> None:
    with terminal_client.websocket_connect("/terminal") as ws:
        ws.receive_json()
        ws.send_text("not json")
        ws.send_json({"type": "telepathy"})
        ws.send_json({"type": "resize", "cols": 0, "rows": 10})
        ws.send_json({"type": "input", "data": "echo still-here\n"})

        assert "still-here" in _read_until(ws, "still-here")


def test_shell_exit_sends_exit_frame(terminal_client: TestClient, seeded_app) -> None:
    with terminal_client.websocket_connect("/terminal") as ws:
        ws.receive_json()
        ws.send_json({"type": "input", "data": "exit 7\n"})

        frames = []
        for _ in range(200):
            frame = ws.receive_json()
            frames.append(frame)
            if frame["type"] == "exit":
                break

        assert frames[-1] == {"type": "exit", "exitCode": 7}

    assert seeded_app.state.terminal_registry.active_count == 0


def test_closing_socket_kills_shell_without_leaks(terminal_client: TestClient, seeded_app) -> None:
    registry = seeded_app.state.terminal_registry
    pids = []

    for _ in range(5):
        with terminal_client.websocket_connect("/terminal") as ws:
            terminal_id = ws.receive_json()["terminalId"]
            pids.append(registry.get(terminal_id).pty.pid)

    assert registry.active_count == 0
    assert not any(_alive(pid) for pid in pids)


def test_health_counts_open_terminals(terminal_client: TestClient) -> None:
    with terminal_client.websocket_connect("/terminal") as ws:
        ws.receive_json()
        assert terminal_client.get("/api/health").json()["activeTerminals"] == 1

    assert terminal_client.get("/api/health").json()["activeTerminals"] == 0
