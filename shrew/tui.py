"""Full-screen conversation view built on prompt_toolkit."""

import asyncio
import logging
import time

import pyperclip
from prompt_toolkit.application import Application
from prompt_toolkit.clipboard.pyperclip import PyperclipClipboard
from prompt_toolkit.data_structures import Point
from prompt_toolkit.formatted_text import ANSI, FormattedText
from prompt_toolkit.key_binding import KeyBindings
from prompt_toolkit.layout import HSplit, Layout, Window
from prompt_toolkit.layout.controls import FormattedTextControl
from prompt_toolkit.layout.margins import ScrollbarMargin
from prompt_toolkit.styles import Style
from prompt_toolkit.widgets import Frame, TextArea

from .agent import AgentLoop, State
from .render import RenderCache, RenderStyle

logger = logging.getLogger(__name__)

SPINNER_FRAMES = "|/-\\"
SCROLLBAR_WIDTH = 1

STYLE = Style.from_dict(
    {
        "title": "bold #FAFAFA bg:#7D56F4",
        "dim": "#888888",
        "spinner": "#7D56F4",
        "notice": "#FFD700",
        "frame.border": "#7D56F4",
    }
)


class ShrewApp:
    """Header, scrollable conversation, busy indicator and an input line.

    Rendering goes through the RenderCache; every redraw checks the
    terminal width first and clears the cache when it changed.
    """

    def __init__(self, agent: AgentLoop, cache: RenderCache, *, input=None, output=None):
        self.agent = agent
        self.cache = cache
        self.clipboard = PyperclipClipboard()
        self._line_count = 1
        self._cursor_line: int | None = None  # None follows the bottom

        self.input = TextArea(
            height=1,
            multiline=False,
            prompt="> ",
            accept_handler=self._accept,
        )
        self.conversation = Window(
            FormattedTextControl(
                self._conversation_text,
                get_cursor_position=self._cursor_position,
                focusable=False,
            ),
            wrap_lines=False,
            right_margins=[ScrollbarMargin(display_arrows=False)],
        )
        root = HSplit(
            [
                Window(FormattedTextControl(self._header_text), height=1),
                self.conversation,
                Window(FormattedTextControl(self._status_text), height=1),
                Frame(self.input),
            ]
        )
        self.app = Application(
            layout=Layout(root, focused_element=self.input),
            key_bindings=self._key_bindings(),
            style=STYLE,
            full_screen=True,
            refresh_interval=0.1,
            before_render=self._before_render,
            input=input,
            output=output,
        )
        agent.on_change = self._on_change

    # -- agent callbacks -----------------------------------------------------

    def _on_change(self, _agent: AgentLoop) -> None:
        self.app.invalidate()

    def _accept(self, buffer) -> bool:
        """Enter handler. Returning True keeps the text in the input line."""
        if self.agent.busy or not buffer.text.strip():
            return True
        self._cursor_line = None
        self.agent.submit(buffer.text)
        return False

    # -- rendering -----------------------------------------------------------

    def _before_render(self, app: Application) -> None:
        columns = app.output.get_size().columns
        if self.cache.resize(columns - SCROLLBAR_WIDTH, self.agent.messages):
            logger.debug("display resized to %d columns", columns)

    def _conversation_text(self):
        text = self.cache.render(self.agent.messages)
        self._line_count = text.count("\n") + 1
        return ANSI(text)

    def _cursor_position(self) -> Point:
        last = max(0, self._line_count - 1)
        if self._cursor_line is None:
            return Point(x=0, y=last)
        return Point(x=0, y=min(self._cursor_line, last))

    def _header_text(self):
        gateway = self.agent.gateway
        info = f"{gateway.name} | {gateway.model} | session: {self.agent.session_id or '-'}"
        return FormattedText([("class:title", " SHREW "), ("", " "), ("class:dim", info)])

    def _status_text(self):
        if self.agent.busy:
            frame = SPINNER_FRAMES[int(time.monotonic() * 10) % len(SPINNER_FRAMES)]
            label = (
                "Running command..."
                if self.agent.state is State.EXECUTING_COMMAND
                else "Thinking..."
            )
            return FormattedText([("class:spinner", f" {frame} "), ("", label)])
        if self.agent.notice:
            return FormattedText([("class:notice", f" {self.agent.notice}")])
        return FormattedText([])

    # -- keys ----------------------------------------------------------------

    def _page_height(self) -> int:
        info = self.conversation.render_info
        return info.window_height if info is not None else 10

    def scroll_up(self) -> None:
        info = self.conversation.render_info
        top = info.vertical_scroll if info is not None else self._cursor_position().y
        self._cursor_line = max(0, top - self._page_height())

    def scroll_down(self) -> None:
        info = self.conversation.render_info
        if info is None:
            self._cursor_line = None
            return
        bottom = info.vertical_scroll + info.window_height - 1
        target = bottom + self._page_height()
        self._cursor_line = None if target >= self._line_count - 1 else target

    def yank_last_reply(self) -> bool:
        """Copy the last assistant message to the system clipboard."""
        for message in reversed(self.agent.messages):
            if message.role == "assistant":
                try:
                    self.clipboard.set_text(message.content)
                except pyperclip.PyperclipException as e:
                    self.agent.notice = f"clipboard unavailable: {e}"
                    return False
                return True
        return False

    def _key_bindings(self) -> KeyBindings:
        kb = KeyBindings()

        @kb.add("c-c")
        @kb.add("escape", eager=True)
        def _quit(event):
            event.app.exit()

        @kb.add("c-y")
        def _yank(event):
            self.yank_last_reply()

        @kb.add("pageup")
        def _page_up(event):
            self.scroll_up()

        @kb.add("pagedown")
        def _page_down(event):
            self.scroll_down()

        return kb

    # -- running -------------------------------------------------------------

    async def run(self) -> None:
        runner = asyncio.create_task(self.agent.run())

        def _runner_done(task: asyncio.Task) -> None:
            if not task.cancelled() and task.exception() is not None:
                self.app.exit(exception=task.exception())

        runner.add_done_callback(_runner_done)
        try:
            await self.app.run_async()
        finally:
            # In-flight work is left to finish or die with the process
            runner.remove_done_callback(_runner_done)
            runner.cancel()


def run_tui(agent: AgentLoop, *, color: bool = True) -> None:
    cache = RenderCache(RenderStyle(color=color))
    asyncio.run(ShrewApp(agent, cache).run())
