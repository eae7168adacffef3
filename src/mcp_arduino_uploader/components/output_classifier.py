"""
Output classification for arduino-cli streams

Splits raw stdout/stderr chunks into color-tagged spans so the host can show a
semantic, color-coded log while a build or flash is still running.
"""

import inspect
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum

# --- ANSI markers ---
ANSI_CLEAR = "\x1b[0m"
ANSI_GREEN_DARK = "\x1b[32m"
ANSI_RED = "\x1b[31m"
ANSI_YELLOW_DARK = "\x1b[33m"

ANSI_ESCAPE_RE = re.compile(r'\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])')

# Appended once at the end of every build/flash so no color leaks to the sink
CLEAR_LINE = f"{ANSI_CLEAR}\r\n"

# --- Patterns ---
PROGRESS_START_RE = re.compile(r"Reading \||Writing \|")
PROGRESS_END_RE = re.compile(r"%")
COMPLETION_RE = re.compile(r"avrdude done")
DEVICE_ERROR_RE = re.compile(r"can't open device|programmer is not responding")
BUILD_SUMMARY_RE = re.compile(r"Sketch uses|Global variables")
BENIGN_STDERR_RE = re.compile(r"Executable segment sizes")

Sink = Callable[[str], Awaitable[None] | None]


class Tag(Enum):
    """Semantic category of a span of tool output"""
    PLAIN = "plain"
    PROGRESS = "progress"
    INFO = "info"
    ERROR = "error"
    ERROR_IGNORED = "error_ignored"

    @property
    def marker(self) -> str:
        return _MARKERS[self]


_MARKERS = {
    Tag.PLAIN: ANSI_CLEAR,
    Tag.PROGRESS: ANSI_GREEN_DARK,
    Tag.INFO: ANSI_GREEN_DARK,
    Tag.ERROR: ANSI_RED,
    Tag.ERROR_IGNORED: ANSI_YELLOW_DARK,
}


@dataclass(frozen=True)
class Span:
    """A piece of a chunk; `marked` spans open with their tag's color marker"""
    text: str
    tag: Tag
    marked: bool = False

    def render(self) -> str:
        return self.tag.marker + self.text if self.marked else self.text


def render(spans: list[Span]) -> str:
    """Join spans into text with embedded color markers"""
    return "".join(span.render() for span in spans)


def strip_ansi(text: str) -> str:
    return ANSI_ESCAPE_RE.sub('', text)


def tagged(text: str, tag: Tag) -> str:
    """Render a message line in a single color"""
    return Span(text, tag, marked=True).render()


async def send_to_sink(sink: Sink, text: str) -> None:
    """Deliver text to a sync or async sink"""
    result = sink(text)
    if inspect.isawaitable(result):
        await result


class StreamClassifier:
    """Passes every chunk through as plain text without inserting markers"""

    def classify(self, text: str) -> list[Span]:
        if not text:
            return []
        return [Span(text, Tag.PLAIN)]


class ChunkClassifier(StreamClassifier):
    """Tags each chunk as a whole: first matching rule wins, otherwise `default`"""

    def __init__(self, default: Tag, rules: list[tuple[re.Pattern, Tag]] | None = None):
        self.default = default
        self.rules = rules or []

    def classify(self, text: str) -> list[Span]:
        if not text:
            return []
        tag = self.default
        for pattern, rule_tag in self.rules:
            if pattern.search(text):
                tag = rule_tag
                break
        return [Span(text, tag, marked=True)]


class _Event(Enum):
    # Value orders events that share an offset: closers before openers
    PROGRESS_END = 0
    COMPLETION = 1
    PROGRESS_START = 2
    DEVICE_ERROR = 3


class ProgressClassifier(StreamClassifier):
    """
    Uploader stderr classifier.

    avrdude writes its progress bars in pieces, so the open color is carried
    between chunks as a small state machine: PLAIN, PROGRESS (a progress bar is
    open) or ERROR (a device error was reported). Patterns are matched per
    chunk only; a marker split across two chunks is not recognised.
    """

    def __init__(self):
        self.state = Tag.PLAIN

    def _events(self, text: str) -> list[tuple[int, _Event]]:
        events = [(m.start(), _Event.PROGRESS_START) for m in PROGRESS_START_RE.finditer(text)]
        events += [(m.end(), _Event.PROGRESS_END) for m in PROGRESS_END_RE.finditer(text)]
        events += [(m.start(), _Event.COMPLETION) for m in COMPLETION_RE.finditer(text)]
        events += [(m.start(), _Event.DEVICE_ERROR) for m in DEVICE_ERROR_RE.finditer(text)]
        return sorted(events, key=lambda event: (event[0], event[1].value))

    @staticmethod
    def _transition(state: Tag, event: _Event) -> Tag | None:
        if event is _Event.PROGRESS_START:
            target = Tag.PROGRESS
        elif event is _Event.PROGRESS_END:
            # '%' only closes a progress span, never an error
            target = Tag.PLAIN if state is Tag.PROGRESS else state
        elif event is _Event.COMPLETION:
            target = Tag.PLAIN
        else:
            target = Tag.ERROR
        return None if target is state else target

    def classify(self, text: str) -> list[Span]:
        if not text:
            return []

        spans: list[Span] = []
        pos = 0
        current, marked = self.state, False
        for offset, event in self._events(text):
            target = self._transition(current, event)
            if target is None:
                continue
            if offset > pos:
                spans.append(Span(text[pos:offset], current, marked))
                pos = offset
            current, marked = target, True

        if pos < len(text):
            spans.append(Span(text[pos:], current, marked))
        elif marked:
            # Transition at the very end of the chunk still needs its marker
            spans.append(Span("", current, marked))

        self.state = current
        return spans


def build_classifiers() -> tuple[StreamClassifier, StreamClassifier]:
    """(stdout, stderr) classifiers for `arduino-cli compile`"""
    stdout = ChunkClassifier(Tag.PLAIN, [(BUILD_SUMMARY_RE, Tag.INFO)])
    stderr = ChunkClassifier(Tag.ERROR, [(BENIGN_STDERR_RE, Tag.ERROR_IGNORED)])
    return stdout, stderr


def flash_classifiers() -> tuple[StreamClassifier, StreamClassifier]:
    """(stdout, stderr) classifiers for `arduino-cli upload`; avrdude only talks on stderr"""
    return StreamClassifier(), ProgressClassifier()
