"""Tests for the full-screen conversation view."""

import asyncio
import types

import pyperclip
import pytest
from prompt_toolkit.input import DummyInput, create_pipe_input
from prompt_toolkit.output import DummyOutput

from shrew.agent import AgentLoop, State
from shrew.provider import ProviderGateway
from shrew.render import RenderCache, RenderStyle
from shrew.session import Message
from shrew.tui import ShrewApp
from shrew.tools import CommandResult


class EchoGateway(ProviderGateway):
    name = "echo"
    model = "echo-1"

    def complete(self, system_prompt, history):
        return f"You said: {history[-1].content}"


def _agent(messages=None):
    return AgentLoop(
        EchoGateway(),
        "system",
        messages=messages,
        session_id="20240101-120000",
        executor=lambda command: CommandResult(command=command, output="", succeeded=True),
    )


def _app(agent, width=80):
    cache = RenderCache(RenderStyle(color=False), width=width)
    return ShrewApp(agent, cache, input=DummyInput(), output=DummyOutput())


def _plain(formatted):
    return "".join(fragment[1] for fragment in formatted)


# ---------------------------------------------------------------------------
# Rendering hooks
# ---------------------------------------------------------------------------


class TestResize:
    def test_width_change_clears_cache(self):
        agent = _agent([Message("user", "hi")])
        shrew = _app(agent, width=120)
        shrew._conversation_text()
        assert agent.messages[0].rendered
        shrew._before_render(shrew.app)
        # DummyOutput reports 80 columns; one goes to the scrollbar
        assert shrew.cache.width == 79
        assert agent.messages[0].rendered == ""

    def test_same_width_keeps_cache(self):
        agent = _agent([Message("user", "hi")])
        shrew = _app(agent, width=79)
        shrew._conversation_text()
        shrew._before_render(shrew.app)
        assert agent.messages[0].rendered


class TestConversationText:
    def test_renders_all_messages(self):
        agent = _agent([Message("user", "question"), Message("assistant", "answer")])
        text = _app(agent)._conversation_text().value
        assert "> question" in text
        assert "answer" in text

    def test_header(self):
        text = _plain(_app(_agent())._header_text())
        assert "SHREW" in text
        assert "echo | echo-1" in text
        assert "session: 20240101-120000" in text


class TestStatus:
    def test_idle_is_empty(self):
        assert _plain(_app(_agent())._status_text()) == ""

    def test_thinking(self):
        agent = _agent()
        agent.state = State.AWAITING_MODEL
        assert "Thinking..." in _plain(_app(agent)._status_text())

    def test_running_command(self):
        agent = _agent()
        agent.state = State.EXECUTING_COMMAND
        assert "Running command..." in _plain(_app(agent)._status_text())

    def test_notice_when_idle(self):
        agent = _agent()
        agent.notice = "session not saved: disk full"
        assert "disk full" in _plain(_app(agent)._status_text())


# ---------------------------------------------------------------------------
# Input handling
# ---------------------------------------------------------------------------


class TestAccept:
    def _buffer(self, text):
        return types.SimpleNamespace(text=text)

    def test_submits_and_clears(self, monkeypatch):
        agent = _agent()
        shrew = _app(agent)
        submitted = []
        monkeypatch.setattr(agent, "submit", lambda text: submitted.append(text) or True)
        assert shrew._accept(self._buffer("hello")) is False
        assert submitted == ["hello"]

    def test_busy_keeps_text(self, monkeypatch):
        agent = _agent()
        agent.state = State.AWAITING_MODEL
        submitted = []
        monkeypatch.setattr(agent, "submit", lambda text: submitted.append(text) or True)
        assert _app(agent)._accept(self._buffer("hello")) is True
        assert submitted == []

    def test_blank_ignored(self, monkeypatch):
        agent = _agent()
        submitted = []
        monkeypatch.setattr(agent, "submit", lambda text: submitted.append(text) or True)
        assert _app(agent)._accept(self._buffer("   ")) is True
        assert submitted == []


class TestScroll:
    def test_scroll_up_then_back_to_bottom(self):
        agent = _agent([Message("user", f"line {i}") for i in range(40)])
        shrew = _app(agent)
        shrew._conversation_text()
        bottom = shrew._cursor_position().y
        shrew.scroll_up()
        assert shrew._cursor_position().y < bottom
        shrew.scroll_down()
        assert shrew._cursor_position().y == bottom

    def test_new_input_follows_bottom(self, monkeypatch):
        agent = _agent([Message("user", f"line {i}") for i in range(40)])
        shrew = _app(agent)
        shrew._conversation_text()
        shrew.scroll_up()
        monkeypatch.setattr(agent, "submit", lambda text: True)
        shrew._accept(types.SimpleNamespace(text="more"))
        assert shrew._cursor_line is None


class TestYank:
    def test_copies_last_reply(self, monkeypatch):
        copied = []
        monkeypatch.setattr(pyperclip, "copy", copied.append)
        agent = _agent(
            [Message("assistant", "first"), Message("user", "q"), Message("assistant", "last")]
        )
        assert _app(agent).yank_last_reply() is True
        assert copied == ["last"]

    def test_nothing_to_copy(self):
        assert _app(_agent([Message("user", "q")])).yank_last_reply() is False

    def test_clipboard_unavailable(self, monkeypatch):
        def broken(text):
            raise pyperclip.PyperclipException("no clipboard mechanism")

        monkeypatch.setattr(pyperclip, "copy", broken)
        agent = _agent([Message("assistant", "reply")])
        assert _app(agent).yank_last_reply() is False
        assert "clipboard unavailable" in agent.notice


# ---------------------------------------------------------------------------
# Full application
# ---------------------------------------------------------------------------


class TestRun:
    def test_type_question_and_quit(self):
        agent = _agent()

        async def go():
            with create_pipe_input() as pipe:
                shrew = ShrewApp(
                    agent,
                    RenderCache(RenderStyle(color=False)),
                    input=pipe,
                    output=DummyOutput(),
                )
                task = asyncio.create_task(shrew.run())
                pipe.send_text("hello\r")
                for _ in range(100):
                    if len(agent.messages) == 2 and not agent.busy:
                        break
                    await asyncio.sleep(0.05)
                pipe.send_text("\x03")
                await asyncio.wait_for(task, timeout=5)

        asyncio.run(go())
        assert agent.messages == [
            Message("user", "hello"),
            Message("assistant", "You said: hello"),
        ]

    def test_loop_error_ends_app(self):
        agent = _agent()

        async def go():
            with create_pipe_input() as pipe:
                shrew = ShrewApp(
                    agent,
                    RenderCache(RenderStyle(color=False)),
                    input=pipe,
                    output=DummyOutput(),
                )
                # A completion event that is invalid while idle
                agent._events.put_nowait(object())
                await asyncio.wait_for(shrew.run(), timeout=5)

        with pytest.raises(Exception, match="unexpected object while idle"):
            asyncio.run(go())
