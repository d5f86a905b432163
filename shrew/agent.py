import argparse
import asyncio
import enum
import functools
import logging
import sys
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from importlib import metadata
from pathlib import Path

from . import directives, fmt
from .config import (
    _UNSET,
    apply_config_to_args,
    generate_config,
    load_config,
    load_env,
    resolve_settings,
)
from .provider import PROVIDERS, ProviderGateway, make_gateway
from .report import AgentError, PersistenceFailure, ProviderError
from .session import Message, SessionStore
from .skills import discover_skills, format_skills
from .tools import CommandResult, gather_context, run_command

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT_FILE = Path(__file__).parent / "system_prompt.txt"
DEBUG_LOG_FILE = "shrew_debug.log"
SESSION_ID_FORMAT = "%Y%m%d-%H%M%S"


@functools.lru_cache(maxsize=1)
def _encoder():
    import tiktoken

    return tiktoken.get_encoding("cl100k_base")


def estimate_tokens(system_prompt: str, messages: list[Message]) -> int:
    """Count tokens across the system prompt and all messages using tiktoken."""
    enc = _encoder()
    total = len(enc.encode(system_prompt or ""))
    for m in messages:
        total += len(enc.encode(m.content))
    # Per-message overhead for role and separators, about 4 tokens each
    total += 4 * (len(messages) + 1)
    return total


# ---------------------------------------------------------------------------
# Turn-taking state machine
# ---------------------------------------------------------------------------


class State(enum.Enum):
    IDLE = "idle"
    AWAITING_MODEL = "awaiting_model"
    EXECUTING_COMMAND = "executing_command"


@dataclass
class ModelReplied:
    text: str


@dataclass
class ModelFailed:
    error: Exception


@dataclass
class CommandFinished:
    result: CommandResult


@dataclass
class Job:
    """A blocking unit of work; ``run`` returns the completion event."""

    kind: str
    run: Callable[[], object]


def describe_failure(error: Exception) -> str:
    if isinstance(error, ProviderError):
        return error.describe()
    return f"{type(error).__name__}: {error}"


class AgentLoop:
    """Alternates between the human, the model and the shell.

    All conversation mutations happen on the event loop, in ``submit`` and
    in ``handle``. Model calls and commands run on worker threads and post
    their completion event back to the loop; only one of them is ever in
    flight. A reply containing a <run> directive triggers the command and
    then another model call, with no upper bound on the chain.
    """

    def __init__(
        self,
        gateway: ProviderGateway,
        system_prompt: str,
        *,
        messages: list[Message] | None = None,
        store: SessionStore | None = None,
        session_id: str | None = None,
        executor: Callable[[str], CommandResult] = run_command,
        on_change: Callable[["AgentLoop"], None] | None = None,
    ):
        self.gateway = gateway
        self.system_prompt = system_prompt
        self.messages: list[Message] = list(messages or [])
        self.store = store
        self.session_id = session_id
        self.executor = executor
        self.on_change = on_change

        self.state = State.IDLE
        self.turns = 0
        self.last_error: Exception | None = None
        self.last_result: CommandResult | None = None
        self.notice: str | None = None

        self._events: asyncio.Queue = asyncio.Queue()
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def busy(self) -> bool:
        return self.state is not State.IDLE

    # -- transitions ---------------------------------------------------------

    def begin_turn(self, text: str) -> Job | None:
        """Accept human input when idle; returns the model job to start."""
        if self.busy or not text.strip():
            return None
        self.last_error = None
        self._append("user", text)
        self._set_state(State.AWAITING_MODEL)
        return self._model_job()

    def handle(self, event) -> Job | None:
        """Apply one completion event; returns the next job, if any."""
        if self.state is State.AWAITING_MODEL and isinstance(event, ModelReplied):
            self._append("assistant", event.text)
            self._persist()
            command = directives.find_command(event.text)
            if command is None:
                self._set_state(State.IDLE)
                return None
            self._set_state(State.EXECUTING_COMMAND)
            return self._command_job(command)

        if self.state is State.AWAITING_MODEL and isinstance(event, ModelFailed):
            self.last_error = event.error
            logger.info("model call failed: %s", describe_failure(event.error))
            self._append("system", f"Error: {describe_failure(event.error)}")
            self._set_state(State.IDLE)
            return None

        if self.state is State.EXECUTING_COMMAND and isinstance(event, CommandFinished):
            self.last_result = event.result
            self._append("user", directives.wrap_output(event.result.observation()))
            self._persist()
            self._set_state(State.AWAITING_MODEL)
            return self._model_job()

        raise AgentError(
            f"unexpected {type(event).__name__} while {self.state.value}"
        )

    # -- jobs ----------------------------------------------------------------

    def _model_job(self) -> Job:
        self.turns += 1
        turn = self.turns
        history = list(self.messages)
        system_prompt = self.system_prompt
        gateway = self.gateway

        def call() -> object:
            logger.debug("model call %d with %d messages", turn, len(history))
            try:
                return ModelReplied(gateway.complete(system_prompt, history))
            except ProviderError as e:
                return ModelFailed(e)
            except Exception as e:
                logger.exception("gateway raised an uncategorized error")
                return ModelFailed(e)

        return Job("model", call)

    def _command_job(self, command: str) -> Job:
        executor = self.executor

        def call() -> object:
            logger.debug("executing %r", command)
            try:
                result = executor(command)
            except Exception as e:
                logger.exception("command executor raised")
                result = CommandResult(
                    command=command, output="", succeeded=False, error=str(e)
                )
            return CommandFinished(result)

        return Job("command", call)

    # -- driving -------------------------------------------------------------

    def submit(self, text: str) -> bool:
        """Start a turn from human input. Must be called on the event loop."""
        job = self.begin_turn(text)
        if job is None:
            return False
        self._start(job)
        return True

    def _start(self, job: Job) -> None:
        loop = asyncio.get_running_loop()
        events = self._events

        def worker():
            event = job.run()
            try:
                loop.call_soon_threadsafe(events.put_nowait, event)
            except RuntimeError:
                # Event loop already closed: the process is exiting
                logger.debug("dropping %s result after shutdown", job.kind)

        threading.Thread(target=worker, name=f"shrew-{job.kind}", daemon=True).start()

    async def run(self) -> None:
        """Consume completion events forever, starting each follow-up job."""
        while True:
            event = await self._events.get()
            job = self.handle(event)
            if job is not None:
                self._start(job)

    async def wait_idle(self) -> None:
        while self.busy:
            await self._idle.wait()

    # -- helpers -------------------------------------------------------------

    def _append(self, role: str, content: str) -> None:
        self.messages.append(Message(role=role, content=content))
        self._changed()

    def _set_state(self, state: State) -> None:
        self.state = state
        if state is State.IDLE:
            self._idle.set()
        else:
            self._idle.clear()
        self._changed()

    def _changed(self) -> None:
        if self.on_change is not None:
            self.on_change(self)

    def _persist(self) -> None:
        if self.store is None or not self.session_id:
            return
        try:
            self.store.save(self.session_id, self.messages)
        except PersistenceFailure as e:
            self.notice = f"session not saved: {e}"
            logger.warning("session %s not saved: %s", self.session_id, e)
        else:
            self.notice = None


# ---------------------------------------------------------------------------
# Startup helpers
# ---------------------------------------------------------------------------


def build_system_prompt(
    base_dir: str,
    *,
    system_prompt: str | None = None,
    no_skills: bool = False,
    skills_dir: list[str] | None = None,
) -> str:
    """Base prompt (or the --system-prompt override) plus any skill files."""
    if system_prompt:
        content = system_prompt
    else:
        content = DEFAULT_SYSTEM_PROMPT_FILE.read_text(encoding="utf-8").rstrip("\n")
    if not no_skills:
        skills = discover_skills(base_dir, skills_dir)
        if skills:
            logger.info("loaded %d skill(s): %s", len(skills), ", ".join(s.name for s in skills))
            content += format_skills(skills)
    return content


def restore_conversation(
    store: SessionStore,
    session_id: str,
    *,
    base_dir: str = ".",
    seed_context: bool = True,
) -> tuple[list[Message], str | None]:
    """Messages of a stored session, or a fresh context-seeded conversation.

    Returns the messages and a warning for the caller to report. An unknown
    id is not an error; an unreadable store yields a warning and the
    conversation starts fresh.
    """
    problem = None
    try:
        restored = store.load(session_id)
    except PersistenceFailure as e:
        problem = f"could not restore session {session_id!r}: {e}"
        restored = None
    if restored:
        logger.info("restored session %s (%d messages)", session_id, len(restored))
        return restored, None
    if not seed_context:
        return [], problem
    seed = Message(role="user", content="Context: " + gather_context(base_dir))
    return [seed], problem


def _timestamp_key(session) -> tuple:
    """Order by instant; timestamps may carry different UTC offsets."""
    try:
        when = datetime.fromisoformat(session.timestamp)
    except ValueError:
        return (1, session.timestamp)
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return (0, when.timestamp())


def list_sessions(store: SessionStore) -> None:
    """Print stored session ids with their last-update timestamps."""
    sessions = sorted(store.list_all().values(), key=_timestamp_key)
    if not sessions:
        fmt.info("no saved sessions")
        return
    for session in sessions:
        print(f"{session.id}\t{session.timestamp}\t{len(session.messages)} messages")


class _Progress:
    """Prints headless progress to stderr as the conversation grows."""

    def __init__(self, seen: int):
        self.seen = seen
        self.state = State.IDLE

    def __call__(self, agent: AgentLoop) -> None:
        for message in agent.messages[self.seen :]:
            if message.role == "assistant":
                command = directives.find_command(message.content)
                if command is not None:
                    fmt.executing(command)
            elif message.role == "user" and directives.is_command_output(message.content):
                body = directives.unwrap_output(message.content).strip()
                result = agent.last_result
                fmt.command_result(result is None or result.succeeded, body)
        self.seen = len(agent.messages)
        entered = agent.state is not self.state
        self.state = agent.state
        if entered and agent.state is State.AWAITING_MODEL:
            fmt.model_call(
                agent.turns + 1,
                agent.gateway.name,
                agent.gateway.model,
                estimate_tokens(agent.system_prompt, agent.messages),
            )


async def run_headless(agent: AgentLoop, question: str) -> str | None:
    """Submit one question, follow the command chain, return the final prose."""
    runner = asyncio.create_task(agent.run())
    try:
        if not agent.submit(question):
            raise AgentError("question is empty")
        idle = asyncio.create_task(agent.wait_idle())
        await asyncio.wait({runner, idle}, return_when=asyncio.FIRST_COMPLETED)
        if runner.done():
            idle.cancel()
            runner.result()
    finally:
        runner.cancel()

    if agent.last_error is not None:
        return None
    for message in reversed(agent.messages):
        if message.role == "assistant":
            return directives.parse(message.content).prose
    return None


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


def build_parser():
    """Build and return the argument parser.

    Options that can also come from config files or the environment default
    to the _UNSET sentinel so apply_config_to_args() can tell them apart.
    """
    parser = argparse.ArgumentParser(
        prog="shrew",
        usage="%(prog)s [options] [question]",
        description="A minimalist CLI coding agent that runs shell commands requested by a language model.",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print the version and exit.",
    )
    parser.add_argument(
        "question",
        nargs="?",
        default=None,
        help="Answer a single question without the interactive UI.",
    )
    parser.add_argument(
        "--session",
        metavar="ID",
        default=None,
        help="Restore (or create) the named session.",
    )
    parser.add_argument(
        "--list",
        action="store_true",
        help="Print stored session ids with their last-update time and exit.",
    )
    parser.add_argument(
        "--init-config",
        action="store_true",
        help="Print a commented config template and exit.",
    )
    parser.add_argument(
        "--provider",
        choices=list(PROVIDERS),
        default=_UNSET,
        help="LLM provider (default: gemini if GEMINI_API_KEY is set, else openai, else ollama).",
    )
    parser.add_argument(
        "--model",
        type=str,
        default=_UNSET,
        help="Model identifier (default depends on the provider).",
    )
    parser.add_argument(
        "--api-key",
        type=str,
        default=_UNSET,
        help="API key for the provider (overrides env var).",
    )
    parser.add_argument(
        "--base-url",
        default=_UNSET,
        help="OpenAI-compatible endpoint, or the Ollama server URL.",
    )
    parser.add_argument(
        "--command",
        default=_UNSET,
        help="Bridge program for --provider cmd (reads JSON messages on stdin).",
    )
    parser.add_argument(
        "--system-prompt",
        type=str,
        default=_UNSET,
        help="Replace the built-in system prompt.",
    )
    parser.add_argument(
        "--history-file",
        metavar="PATH",
        default=_UNSET,
        help="Session store location (default: history.json).",
    )
    parser.add_argument(
        "--no-context",
        action="store_true",
        default=_UNSET,
        help="Don't seed new conversations with the working-directory listing.",
    )
    parser.add_argument(
        "--skills-dir",
        action="append",
        default=None,
        help="Additional directory of *.md skill files (can be repeated).",
    )
    parser.add_argument(
        "--no-skills",
        action="store_true",
        default=_UNSET,
        help="Don't load skill files.",
    )

    color_group = parser.add_mutually_exclusive_group()
    color_group.add_argument(
        "--color",
        action="store_true",
        default=_UNSET,
        help="Force ANSI color even when stderr is not a TTY.",
    )
    color_group.add_argument(
        "--no-color",
        action="store_true",
        default=_UNSET,
        help="Disable ANSI color.",
    )

    parser.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        default=_UNSET,
        help="Suppress diagnostics; only print the final result.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help=f"Debug logging (to stderr, or to {DEBUG_LOG_FILE} in the interactive UI).",
    )

    return parser


def main():
    parser = build_parser()
    args = parser.parse_args()

    if args.version:
        try:
            version = metadata.version("shrew")
        except metadata.PackageNotFoundError:
            version = "unknown"
        print(version)
        sys.exit(0)

    if args.init_config:
        print(generate_config())
        sys.exit(0)

    base_dir = Path.cwd()
    try:
        config = load_config(base_dir)
        config.update(load_env(base_dir))
    except AgentError as e:
        fmt.error(str(e))
        sys.exit(1)
    apply_config_to_args(args, config)

    fmt.init(color=args.color, no_color=args.no_color)
    interactive = args.question is None and not args.list
    if interactive:
        fmt.setup_logging(
            verbose=args.verbose,
            log_file=DEBUG_LOG_FILE if args.verbose else None,
            to_stderr=False,
        )
    else:
        fmt.setup_logging(verbose=args.verbose)

    try:
        exit_code = _run_main(args, str(base_dir))
    except AgentError as e:
        fmt.error(str(e))
        sys.exit(1)
    if exit_code:
        sys.exit(exit_code)


def _run_main(args, base_dir: str) -> int:
    store = SessionStore(args.history_file)

    if args.list:
        list_sessions(store)
        return 0

    settings = resolve_settings(args)
    gateway = make_gateway(settings)
    system_prompt = build_system_prompt(
        base_dir,
        system_prompt=args.system_prompt,
        no_skills=args.no_skills,
        skills_dir=settings.skills_dir,
    )

    session_id = args.session or datetime.now().strftime(SESSION_ID_FORMAT)
    messages, problem = restore_conversation(
        store, session_id, base_dir=base_dir, seed_context=not args.no_context
    )
    if problem:
        fmt.warning(problem)
    agent = AgentLoop(
        gateway,
        system_prompt,
        messages=messages,
        store=store,
        session_id=session_id,
        executor=functools.partial(run_command, cwd=base_dir),
    )
    # The TUI hides stderr, so the warning also goes to the status line
    agent.notice = problem

    if args.question is not None:
        if not args.quiet:
            agent.on_change = _Progress(len(agent.messages))
        answer = asyncio.run(run_headless(agent, args.question))
        if agent.last_error is not None:
            fmt.error(describe_failure(agent.last_error))
            return 1
        if answer:
            print(answer)
        return 0

    from .tui import run_tui

    run_tui(agent, color=not args.no_color)
    return 0


if __name__ == "__main__":
    main()
