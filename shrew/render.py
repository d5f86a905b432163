"""Per-message formatted output for the conversation view."""

from dataclasses import dataclass

from rich import box
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.text import Text

from . import directives
from .session import Message

DEFAULT_WIDTH = 80
MIN_WIDTH = 20


@dataclass(frozen=True)
class RenderStyle:
    """Styles used when formatting messages (rich style strings)."""

    label: str = "shrew"
    user: str = "bold #00ADD8"
    assistant_label: str = "bold #7D56F4"
    thinking: str = "dim"
    thinking_border: str = "#5C5C5C"
    executing: str = "italic #FFD700"
    output: str = "#AAAAAA"
    error: str = "#FF0000"
    code_theme: str = "monokai"
    color: bool = True


class RenderCache:
    """Lazily renders messages and keeps each result on ``Message.rendered``.

    Entries are valid for the current width only; ``resize`` to a new
    width clears every cached entry.
    """

    def __init__(self, style: RenderStyle | None = None, width: int = DEFAULT_WIDTH):
        self.style = style or RenderStyle()
        self.width = max(MIN_WIDTH, width)
        self._known: list[Message] = []

    def _console(self) -> Console:
        return Console(
            width=self.width,
            force_terminal=self.style.color,
            no_color=not self.style.color,
            color_system="truecolor" if self.style.color else None,
            highlight=False,
            emoji=False,
        )

    def render_message(self, message: Message) -> str:
        """Format one message at the current width (no caching)."""
        console = self._console()
        with console.capture() as capture:
            for renderable in self._renderables(message):
                console.print(renderable)
        return capture.get()

    def _renderables(self, message: Message) -> list:
        style = self.style
        content = message.content

        if message.role == "user":
            if directives.is_command_output(content):
                body = directives.unwrap_output(content)
                return [Text(f"[Output]:\n{body.strip()}", style=style.output)]
            return [Text(f"\n> {content}", style=style.user)]

        if message.role == "assistant":
            parsed = directives.parse(content)
            parts: list = []
            for thought in parsed.thoughts:
                parts.append(
                    Panel(
                        Text(thought.strip(), style=style.thinking),
                        title="Thinking",
                        title_align="left",
                        box=box.ROUNDED,
                        border_style=style.thinking_border,
                    )
                )
            for command in parsed.runs:
                parts.append(Text(f"[Executing]: {command.strip()}", style=style.executing))
            if parsed.prose:
                parts.append(Text(f"{style.label}:", style=style.assistant_label))
                parts.append(Markdown(parsed.prose, code_theme=style.code_theme))
            return parts

        return [Text(content, style=style.error)]

    def render(self, messages: list[Message]) -> str:
        """Concatenate cached renderings in conversation order, filling gaps."""
        self._known = list(messages)
        chunks = []
        for message in messages:
            if not message.rendered:
                message.rendered = self.render_message(message)
            chunks.append(message.rendered)
        return "".join(chunks)

    def invalidate(self, messages: list[Message] | None = None) -> None:
        for message in self._known if messages is None else messages:
            message.rendered = ""

    def resize(self, width: int, messages: list[Message] | None = None) -> bool:
        """Switch to a new width. Returns True when the cache was cleared."""
        width = max(MIN_WIDTH, width)
        if width == self.width:
            return False
        self.width = width
        self.invalidate(messages)
        return True
