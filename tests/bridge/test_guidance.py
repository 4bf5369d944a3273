from __future__ import annotations

from constellation.bridge.guidance import render_guidance


def test_guidance_mentions_manual_steps() -> None:
    text = render_guidance(
        error="Agent exited with code 1: boom",
        workspace="/data/projects/todo",
        message="build a todo app",
        agent_argv=["claude", "--permission-mode", "bypassPermissions", "--print"],
    )

    assert "Agent exited with code 1: boom" in text
    assert "cd /data/projects/todo" in text
    assert "`claude --permission-mode bypassPermissions`" in text
    assert '"build a todo app"' in text


def test_guidance_does_not_escape_html() -> None:
    text = render_guidance(error="<x>", workspace="/w", message="a & b", agent_argv=["claude"])

    assert "<x>" in text
    assert "a & b" in text


def test_custom_template() -> None:
    text = render_guidance(error="e", workspace="/w", message="m", agent_argv=["claude"], template="{{ command }}!")

    assert text == "claude!"
