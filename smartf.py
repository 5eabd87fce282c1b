#!/usr/bin/env python3
import asyncio
import enum
import functools
import inspect
import json
import logging
import os
import sys
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, NamedTuple, Optional, Sequence, Tuple

# Priority order: the i-th candidate gets the i-th label
LABELS = "abcdefghijklmnopqrstuvwxyz1234567890,."
REPEAT_KEY = ";"
# Keys that abort the search-character prompt
ABORT_KEYS = ("", "\x1b", "\x03", "\r", "\n")

ENTER_EVENT = "SmartfEnter"
LEAVE_EVENT = "SmartfLeave"
SESSION_FLAG = "smartf_activated"
LAST_SEARCH_VAR = "smartf_last"
MARKERS_VAR = "smartf_markers"

MARKER_LABEL = "label"
MARKER_REMAINDER = "remainder"
MARKER_CURSOR = "cursor"

_perf_enabled = False


def _parse_bool(raw, default: bool) -> bool:
    if raw is None:
        return default
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, int):
        return raw != 0
    return str(raw).strip().lower() in ("1", "true", "yes", "on")


def _parse_int(raw, default: int) -> int:
    if raw is None or isinstance(raw, bool):
        return default
    try:
        return int(raw)
    except (TypeError, ValueError):
        logging.warning(f"Ignoring invalid integer option: {raw!r}")
        return default


@dataclass
class Config:
    """Configuration for smartf."""

    timeout: int = field(default=1000, metadata={"opt": "smartf_timeout"})
    jump_on_trigger: bool = field(
        default=True, metadata={"opt": "smartf_jump_on_trigger"}
    )
    word_jump: bool = field(default=True, metadata={"opt": "smartf_word_jump"})
    debug: bool = field(default=False, metadata={"opt": "smartf_debug"})
    perf: bool = field(default=False, metadata={"opt": "smartf_perf"})

    @classmethod
    def from_options(cls, options: dict) -> "Config":
        """Build configuration from raw editor variable values."""
        kwargs = {}
        for f in fields(cls):
            raw = options.get(f.metadata["opt"])
            if f.type is bool:
                kwargs[f.name] = _parse_bool(raw, f.default)
            else:
                kwargs[f.name] = _parse_int(raw, f.default)
        return cls(**kwargs)

    @classmethod
    async def from_host(cls, host: "HostAdapter") -> "Config":
        """Read every option from the editor in one round-trip."""
        batch = Batch()
        requests = {
            f.metadata["opt"]: batch.get_var(f.metadata["opt"]) for f in fields(cls)
        }
        await host.execute(batch)
        return cls.from_options({opt: req.result for opt, req in requests.items()})


def setup_logging(config: Config):
    """Initialize logging configuration based on editor options"""
    global _perf_enabled
    _perf_enabled = config.perf

    if not (config.debug or config.perf):
        logging.getLogger().disabled = True
        return

    logging.getLogger().disabled = False
    log_file = os.path.expanduser("~/smartf.log")
    logging.basicConfig(
        filename=log_file,
        level=logging.DEBUG,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )


def perf_timer(func_name=None):
    """Performance timing decorator that only logs when perf is enabled"""

    def decorator(func):
        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                if not _perf_enabled:
                    return await func(*args, **kwargs)

                name = func_name or func.__name__
                start_time = time.perf_counter()
                result = await func(*args, **kwargs)
                end_time = time.perf_counter()

                logging.info(f"{name} took: {end_time - start_time:.3f} seconds")
                return result

            return async_wrapper

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            if not _perf_enabled:
                return func(*args, **kwargs)

            name = func_name or func.__name__
            start_time = time.perf_counter()
            result = func(*args, **kwargs)
            end_time = time.perf_counter()

            logging.info(f"{name} took: {end_time - start_time:.3f} seconds")
            return result

        return wrapper

    return decorator


# ============================================================================
# Positions, labels and coordinates
# ============================================================================


class Candidate(NamedTuple):
    """A match, relative to the scanned lines (0-based)."""

    line: int
    character: int


class Target(NamedTuple):
    """A candidate converted to an editor position (1-based line, byte column)."""

    candidate: Candidate
    line: int
    col: int
    length: int

    @property
    def position(self) -> Tuple[int, int]:
        return self.line, self.col


def is_word_char(ch: str) -> bool:
    return ch.isalnum() or ch == "_"


def is_word_start(line: str, index: int) -> bool:
    """Whether the character at index begins a word (or camelCase hump)"""
    if index == 0:
        return True
    ch = line[index]
    prev = line[index - 1]
    if not is_word_char(ch) or not is_word_char(prev):
        return True
    return prev.islower() and ch.isupper()


@perf_timer("Finding positions")
def find_positions(
    character: str, lines: Sequence[str], word_jump: bool = True, offset: int = 0
) -> List[Candidate]:
    """Find every occurrence of character, in order of appearance.

    Args:
        character: The search character
        lines: Lines to scan, already restricted to the jump direction
        word_jump: Only keep occurrences that start a word
        offset: Column where scanning starts on the first line only

    Character indexes stay relative to the whole line, offset or not.
    """
    positions = []
    if not character:
        return positions

    for line_num, line in enumerate(lines):
        idx = line.find(character, offset if line_num == 0 else 0)
        while idx != -1:
            if not word_jump or is_word_start(line, idx):
                positions.append(Candidate(line_num, idx))
            idx = line.find(character, idx + 1)

    return positions


def byte_index(content: str, index: int) -> int:
    """UTF-8 byte offset of the character at index"""
    return len(content[:index].encode("utf-8"))


def char_index(content: str, byte_idx: int) -> int:
    """Character offset of a UTF-8 byte offset"""
    return len(content.encode("utf-8")[:byte_idx].decode("utf-8", errors="ignore"))


def assign_labels(items: Sequence, labels: str = LABELS) -> Tuple[Dict[str, Any], list]:
    """Zip items with labels in priority order; the overflow is the remainder."""
    table = dict(zip(labels, items))
    remainder = list(items[len(labels):])
    return table, remainder


class ScanRegion(NamedTuple):
    lines: List[str]
    offset: int
    first_line: int

    def target(self, candidate: Candidate) -> Target:
        text = self.lines[candidate.line]
        return Target(
            candidate,
            self.first_line + candidate.line,
            byte_index(text, candidate.character) + 1,
            len(text[candidate.character].encode("utf-8")),
        )


def directional_region(
    forward: bool,
    top: int,
    cursor: Tuple[int, int],
    current_line: str,
    visible: Sequence[str],
) -> ScanRegion:
    """Restrict the visible lines to what lies ahead of the cursor.

    Forward keeps the cursor line through the end of the viewport and skips
    the cursor character itself. Backward keeps the top of the viewport
    through the cursor line, cut just before the cursor.
    """
    line, col = cursor
    cursor_char = char_index(current_line, col - 1)
    if forward:
        return ScanRegion(list(visible[line - top:]), cursor_char + 1, line)

    lines = list(visible[: line - top + 1])
    if lines:
        lines[-1] = current_line[:cursor_char]
    return ScanRegion(lines, 0, top)


# ============================================================================
# Host adapter
# ============================================================================


class HostError(Exception):
    """A host request failed.

    results holds what the requests before the failing one returned; the
    host has already applied them.
    """

    def __init__(self, call: str, payload, results=None):
        super().__init__(call, payload)
        self.call = call
        self.payload = payload
        self.results = list(results or [])

    def __str__(self):
        return f"Error on {self.call}: {self.payload}"


class Request:
    __slots__ = ("name", "args", "result")

    def __init__(self, name: str, args: tuple):
        self.name = name
        self.args = args
        self.result = None

    def __repr__(self):
        return f"Request({self.name}{self.args!r})"


class Batch:
    """Host requests queued in order and executed in one round-trip.

    Every method returns its Request; the result is filled in once the
    batch has been executed.
    """

    def __init__(self):
        self.requests: List[Request] = []

    def __iter__(self):
        return iter(self.requests)

    def __len__(self):
        return len(self.requests)

    def _queue(self, name: str, *args) -> Request:
        request = Request(name, args)
        self.requests.append(request)
        return request

    def get_cursor(self) -> Request:
        return self._queue("get_cursor")

    def get_viewport_top(self) -> Request:
        return self._queue("get_viewport_top")

    def get_current_line(self) -> Request:
        return self._queue("get_current_line")

    def get_visible_lines(self) -> Request:
        return self._queue("get_visible_lines")

    def set_conceal_level(self, level: int) -> Request:
        return self._queue("set_conceal_level", level)

    def move_cursor(self, line: int, col: int) -> Request:
        return self._queue("move_cursor", line, col)

    def create_marker(
        self, kind: str, row: int, col: int, length: int, style: str, conceal=None
    ) -> Request:
        return self._queue("create_marker", kind, row, col, length, style, conceal)

    def clear_markers(self, handles: List[int]) -> Request:
        return self._queue("clear_markers", list(handles))

    def notify_event(self, name: str) -> Request:
        return self._queue("notify_event", name)

    def set_session_flag(self, active: bool) -> Request:
        return self._queue("set_session_flag", active)

    def get_var(self, name: str) -> Request:
        return self._queue("get_var", name)

    def set_var(self, name: str, value) -> Request:
        return self._queue("set_var", name, value)

    def show_message(self, text: str, level: str = "error") -> Request:
        return self._queue("show_message", text, level)


class HostAdapter(ABC):
    async def execute(self, batch: Batch) -> list:
        """Run the batch; results come back in request order"""
        if not len(batch):
            return []
        logging.debug(f"Batch: {[r.name for r in batch]}")
        try:
            results = await self.send(batch)
        except HostError as e:
            for request, result in zip(batch, e.results):
                request.result = result
            raise
        for request, result in zip(batch, results):
            request.result = result
        return results

    @abstractmethod
    async def send(self, batch: Batch) -> list:
        """Send all requests at once, raising HostError on the first failure"""
        pass

    @abstractmethod
    async def read_key(self) -> str:
        """Wait for a single key press"""
        pass

    @abstractmethod
    async def feed_escape(self):
        """Feed an escape key press to unblock a pending key read"""
        pass


def _vim_string(text: str) -> str:
    return "'" + text.replace("'", "''") + "'"


_MESSAGE_HIGHLIGHTS = {"error": "ErrorMsg", "warning": "WarningMsg"}


def _marker_call(kind, row, col, length, style, conceal=None):
    args = [style, [[row, col, length]], 99]
    if conceal:
        args.extend([-1, {"conceal": conceal}])
    return "matchaddpos", args


# Request name -> (function, arguments) evaluated inside Neovim
_NVIM_CALLS = {
    "get_cursor": lambda: ("getpos", ["."]),
    "get_viewport_top": lambda: ("line", ["w0"]),
    "get_current_line": lambda: ("getline", ["."]),
    "get_visible_lines": lambda: ("getline", ["w0", "w$"]),
    "set_conceal_level": lambda level: (
        "execute",
        [f"setlocal conceallevel={int(level)}"],
    ),
    "move_cursor": lambda line, col: ("cursor", [line, col]),
    "create_marker": _marker_call,
    "clear_markers": lambda handles: (
        "execute",
        [[f"silent! call matchdelete({int(h)})" for h in handles]],
    ),
    "notify_event": lambda name: ("execute", [f"silent doautocmd User {name}"]),
    "set_session_flag": lambda active: ("nvim_set_var", [SESSION_FLAG, int(active)]),
    "get_var": lambda name: ("eval", [f"get(g:, {_vim_string(name)}, v:null)"]),
    "set_var": lambda name, value: ("nvim_set_var", [name, value]),
    "show_message": lambda text, level="error": (
        "nvim_echo",
        [[[text, _MESSAGE_HIGHLIGHTS.get(level, "Normal")]], True, {}],
    ),
}

_NVIM_RESULTS = {
    "get_cursor": lambda pos: (pos[1], pos[2]),
    "get_visible_lines": lambda lines: list(lines) if lines else [],
}

# Runs each call under pcall in order; stops at the first failure
_LUA_RUNNER = " ".join(
    [
        "local out = {}",
        "for i, req in ipairs(_A) do",
        "local name = req[1]",
        "local fn = name:sub(1, 5) == 'nvim_' and vim.api[name] or vim.fn[name]",
        "local ok, res = pcall(fn, (unpack or table.unpack)(req[2]))",
        "if not ok then return {false, i - 1, tostring(res), out} end",
        "if res == nil then res = vim.NIL end",
        "out[i] = res",
        "end",
        "return {true, out}",
    ]
)


class NvimHost(HostAdapter):
    """Neovim reached through `nvim --server ADDRESS --remote-expr`."""

    def __init__(self, address: str, binary: str = "nvim"):
        self.address = address
        self.binary = binary

    async def _remote_expr(self, expr: str, call: str) -> Any:
        """Evaluate a JSON-producing expression in the editor"""
        cmd = [self.binary, "--server", self.address, "--remote-expr", expr]
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise HostError(call, str(e)) from e

        try:
            stdout, stderr = await proc.communicate()
        except asyncio.CancelledError:
            if proc.returncode is None:
                proc.kill()
            raise

        output = stdout.decode("utf-8", errors="replace").strip()
        logging.debug(f"Command: {cmd}")
        logging.debug(f"Result: {output}")
        if proc.returncode != 0 or not output:
            message = stderr.decode("utf-8", errors="replace").strip()
            raise HostError(call, message or f"exit status {proc.returncode}")
        try:
            return json.loads(output)
        except ValueError as e:
            raise HostError(call, f"invalid reply {output!r}") from e

    def translate(self, request: Request) -> list:
        name, args = _NVIM_CALLS[request.name](*request.args)
        return [name, args]

    async def send(self, batch: Batch) -> list:
        calls = [self.translate(request) for request in batch]
        expr = "json_encode(luaeval({}, json_decode({})))".format(
            _vim_string(_LUA_RUNNER), _vim_string(json.dumps(calls))
        )
        reply = await self._remote_expr(expr, batch.requests[0].name)

        if not reply[0]:
            index, message = reply[1], reply[2]
            # An empty Lua table comes back as a dict
            done = reply[3] if len(reply) > 3 and isinstance(reply[3], list) else []
            raise HostError(
                batch.requests[index].name, message, self._decode(batch, done)
            )
        return self._decode(batch, reply[1])

    def _decode(self, batch: Batch, values: list) -> list:
        results = []
        for request, value in zip(batch, values):
            decode = _NVIM_RESULTS.get(request.name)
            results.append(decode(value) if decode else value)
        return results

    async def read_key(self) -> str:
        return await self._remote_expr("json_encode(getcharstr())", "read_key")

    async def feed_escape(self):
        await self._remote_expr("json_encode(nvim_input('<Esc>'))", "feed_escape")


# ============================================================================
# Highlights, key capture and the jump session
# ============================================================================


class Highlighter:
    """Draws and clears the markers of one session."""

    def __init__(self, host: HostAdapter):
        self.host = host
        self.handles: List[int] = []
        self.rendered = False

    def adopt(self, handles: List[int]):
        """Take over markers drawn by an earlier process"""
        self.handles = list(handles)
        self.rendered = True

    async def render(
        self,
        labels: Dict[str, Target],
        remainder: List[Target],
        cursor: Tuple[int, int],
    ):
        batch = Batch()
        batch.set_session_flag(True)
        batch.notify_event(ENTER_EVENT)
        markers = []
        for label, target in labels.items():
            markers.append(
                batch.create_marker(
                    MARKER_LABEL, target.line, target.col, target.length, "Conceal", label
                )
            )
        markers.append(batch.create_marker(MARKER_CURSOR, cursor[0], cursor[1], 1, "Cursor"))
        for target in remainder:
            markers.append(
                batch.create_marker(
                    MARKER_REMAINDER,
                    target.line,
                    target.col,
                    target.length,
                    "Conceal",
                    REPEAT_KEY,
                )
            )
        self.rendered = True
        try:
            await self.host.execute(batch)
        finally:
            # A failed batch still drew the markers before the failing one
            self.handles = [m.result for m in markers if m.result is not None]

        # Later processes find the markers here
        store = Batch()
        store.set_var(MARKERS_VAR, self.handles)
        await self.host.execute(store)

    async def clear(self) -> bool:
        """Undo render, even a partial one; a no-op when nothing was rendered"""
        if not self.rendered:
            return False
        handles, self.handles = self.handles, []
        self.rendered = False
        batch = Batch()
        batch.set_session_flag(False)
        batch.notify_event(LEAVE_EVENT)
        if handles:
            batch.clear_markers(handles)
        batch.set_var(MARKERS_VAR, [])
        await self.host.execute(batch)
        return True


def _stored_handles(value) -> List[int]:
    return [int(h) for h in value] if isinstance(value, list) else []


async def clear_stale(host: HostAdapter, markers, flag) -> bool:
    """Clear markers and the session flag left behind by another process"""
    handles = _stored_handles(markers)
    if not handles and not _parse_bool(flag, False):
        return False
    logging.debug(f"Clearing stale markers {handles}")
    highlighter = Highlighter(host)
    highlighter.adopt(handles)
    return await highlighter.clear()


async def report(host: HostAdapter, error: HostError):
    """Log a host failure and show it in the editor, best effort"""
    logging.error(str(error))
    batch = Batch()
    batch.show_message(str(error), "error")
    try:
        await host.execute(batch)
    except HostError as e:
        logging.error(f"Could not show message: {e}")


class KeyCapture:
    """Races a single key read against the deadline; only one of them wins."""

    def __init__(self, host: HostAdapter, timeout: int):
        self.host = host
        self.timeout = max(timeout, 0)

    async def wait(self) -> Optional[str]:
        """Return the key pressed, or None once the deadline passed"""
        try:
            return await asyncio.wait_for(self.host.read_key(), self.timeout / 1000)
        except asyncio.TimeoutError:
            logging.debug(f"No key within {self.timeout}ms")

        try:
            await self.host.feed_escape()
        except HostError as e:
            logging.error(str(e))
        return None


class State(enum.Enum):
    IDLE = "idle"
    COLLECTING_INPUT = "collecting-input"
    SCANNING = "scanning"
    LABELING = "labeling"
    AWAITING_SELECTION = "awaiting-selection"
    RESOLVED = "resolved"
    TIMED_OUT = "timed-out"
    CANCELLED = "cancelled"


_FINAL_STATES = (State.RESOLVED, State.TIMED_OUT, State.CANCELLED)


class JumpSession:
    """One jump, from reading the search character to moving the cursor.

    run() returns True when the repeat key asked for another pass from the
    first remainder position; the caller starts that pass as a new session.
    """

    def __init__(
        self,
        host: HostAdapter,
        config: Config,
        forward: bool = True,
        character: Optional[str] = None,
    ):
        self.host = host
        self.config = config
        self.forward = forward
        self.character = character
        self.state = State.IDLE
        self.labels: Dict[str, Target] = {}
        self.remainder: List[Target] = []
        self.reference: Optional[Tuple[int, int]] = None
        self.highlighter = Highlighter(host)
        self._pending: Optional[asyncio.Future] = None

    @property
    def repeat_position(self) -> Optional[Tuple[int, int]]:
        return self.remainder[0].position if self.remainder else None

    @property
    def closed(self) -> bool:
        return self.state in _FINAL_STATES

    async def _wait(self, awaitable):
        self._pending = asyncio.ensure_future(awaitable)
        try:
            return await self._pending
        finally:
            self._pending = None

    async def _move(self, position: Tuple[int, int]):
        batch = Batch()
        batch.move_cursor(*position)
        await self.host.execute(batch)

    async def _clear(self):
        try:
            await self.highlighter.clear()
        except HostError as e:
            logging.error(str(e))
        self.labels.clear()

    async def run(self) -> bool:
        try:
            return await self._run()
        except asyncio.CancelledError:
            if self.state is not State.CANCELLED:
                raise
            return False
        except HostError as e:
            await report(self.host, e)
            await self._clear()
            self.state = State.IDLE
            return False

    async def _run(self) -> bool:
        self.state = State.COLLECTING_INPUT
        if self.character is None:
            key = await self._wait(self.host.read_key())
            if key in ABORT_KEYS:
                logging.debug(f"Search aborted with {key!r}")
                self.state = State.RESOLVED
                return False
            self.character = key

        self.state = State.SCANNING
        targets, cursor = await self._scan()
        if self.state is State.CANCELLED:
            return False
        if not targets:
            logging.debug(f"No match for {self.character!r}")
            self.state = State.RESOLVED
            return False

        if self.config.jump_on_trigger:
            first = targets.pop(0)
            await self._move(first.position)
            self.reference = first.position
        else:
            self.reference = cursor
        if self.state is State.CANCELLED:
            return False
        if not targets:
            self.state = State.RESOLVED
            return False

        self.state = State.LABELING
        self.labels, self.remainder = assign_labels(targets)
        logging.debug(
            f"Labels: {[(k, v.position) for k, v in self.labels.items()]}, "
            f"remainder: {len(self.remainder)}"
        )
        await self.highlighter.render(self.labels, self.remainder, self.reference)
        if self.state is State.CANCELLED:
            await self._clear()
            return False

        self.state = State.AWAITING_SELECTION
        key = await self._wait(KeyCapture(self.host, self.config.timeout).wait())
        return await self._resolve(key)

    @perf_timer("Scanning")
    async def _scan(self) -> Tuple[List[Target], Tuple[int, int]]:
        batch = Batch()
        cursor = batch.get_cursor()
        top = batch.get_viewport_top()
        current = batch.get_current_line()
        visible = batch.get_visible_lines()
        batch.set_conceal_level(2)
        markers = batch.get_var(MARKERS_VAR)
        flag = batch.get_var(SESSION_FLAG)
        await self.host.execute(batch)
        await clear_stale(self.host, markers.result, flag.result)

        cursor_pos = tuple(cursor.result)
        region = directional_region(
            self.forward, top.result, cursor_pos, current.result, visible.result
        )
        candidates = find_positions(
            self.character, region.lines, self.config.word_jump, region.offset
        )
        if not self.forward:
            candidates.reverse()
        logging.debug(f"Found {len(candidates)} candidates for {self.character!r}")
        return [region.target(c) for c in candidates], cursor_pos

    async def _resolve(self, key: Optional[str]) -> bool:
        if key is None:
            await self._clear()
            self.state = State.TIMED_OUT
            return False

        logging.debug(f"Key pressed: {key!r}")
        repeat = self.repeat_position
        if key == REPEAT_KEY and repeat:
            await self._clear()
            await self._move(repeat)
            self.state = State.RESOLVED
            return True

        target = self.labels.get(key)
        await self._clear()
        if target:
            await self._move(target.position)
        self.state = State.RESOLVED
        return False

    async def close(self):
        """Cancel the session and clear its markers. Safe to call repeatedly."""
        if self.closed:
            return
        logging.debug(f"Cancelling session in state {self.state.value}")
        self.state = State.CANCELLED
        if self._pending is not None:
            self._pending.cancel()
            # The editor is still blocked in its own key read
            try:
                await self.host.feed_escape()
            except HostError as e:
                logging.error(str(e))
        await self._clear()
        self.remainder = []


class JumpController:
    """Owns the active session slot and the last search."""

    def __init__(self, host: HostAdapter, config: Config):
        self.host = host
        self.config = config
        self.last_character: Optional[str] = None
        self.last_forward = True
        self.active: Optional[JumpSession] = None

    async def forward(self):
        await self.jump(True)

    async def backward(self):
        await self.jump(False)

    async def repeat(self):
        if self.last_character is None:
            return
        await self.jump(self.last_forward, self.last_character)

    async def repeat_opposite(self):
        if self.last_character is None:
            return
        await self.jump(not self.last_forward, self.last_character)

    @perf_timer("Jump")
    async def jump(self, forward: bool = True, character: Optional[str] = None):
        again = True
        while again:
            await self._cancel_active()
            session = JumpSession(self.host, self.config, forward, character)
            self.active = session
            try:
                again = await session.run()
            finally:
                if self.active is session:
                    self.active = None

            if character is None and session.character is not None:
                self.last_character = session.character
                self.last_forward = forward
            character = session.character

    async def _cancel_active(self) -> bool:
        session, self.active = self.active, None
        if session is None:
            return False
        await session.close()
        return True

    async def cancel(self):
        """Cancel the active session, or what an earlier process left drawn"""
        if await self._cancel_active():
            return
        batch = Batch()
        markers = batch.get_var(MARKERS_VAR)
        flag = batch.get_var(SESSION_FLAG)
        await self.host.execute(batch)
        await clear_stale(self.host, markers.result, flag.result)

    async def load_last_search(self):
        batch = Batch()
        last = batch.get_var(LAST_SEARCH_VAR)
        await self.host.execute(batch)
        if isinstance(last.result, dict) and last.result.get("character"):
            self.last_character = last.result["character"]
            self.last_forward = _parse_bool(last.result.get("forward"), True)

    async def save_last_search(self):
        if self.last_character is None:
            return
        batch = Batch()
        batch.set_var(
            LAST_SEARCH_VAR,
            {"character": self.last_character, "forward": self.last_forward},
        )
        await self.host.execute(batch)


MOTIONS = {
    "forward": JumpController.forward,
    "backward": JumpController.backward,
    "repeat": JumpController.repeat,
    "repeat-opposite": JumpController.repeat_opposite,
    "cancel": JumpController.cancel,
}


@perf_timer("Total execution")
async def main(motion: str, host: HostAdapter):
    try:
        config = await Config.from_host(host)
        setup_logging(config)
        logging.debug(f"Motion: {motion}, config: {config}")

        controller = JumpController(host, config)
        await controller.load_last_search()
        await MOTIONS[motion](controller)
        await controller.save_last_search()
    except HostError as e:
        await report(host, e)


def cli():
    motion = sys.argv[1] if len(sys.argv) > 1 else "forward"
    address = sys.argv[2] if len(sys.argv) > 2 else os.environ.get("NVIM", "")

    if motion not in MOTIONS:
        logging.error(f"Invalid motion type: {motion}")
        sys.exit(1)
    if not address:
        logging.error("No Neovim server address, pass one or set $NVIM")
        sys.exit(1)

    try:
        asyncio.run(main(motion, NvimHost(address)))
    except KeyboardInterrupt:
        logging.info("Operation cancelled by user")
    except Exception as e:
        logging.error(f"Error occurred: {str(e)}", exc_info=True)


if __name__ == "__main__":
    cli()
