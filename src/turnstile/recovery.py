"""Tool-invocation recovery for providers without native tool calling.

Some models never emit a structured tool call.  They either write an
explicit ``<function_calls>`` block into their text, or they simply
describe what they intend to do ("I'll run `git status`").
:func:`recover` inspects the full text of a finished turn and returns
the :class:`ToolInvocation` such a model meant, or ``None`` when the
text is ordinary content.

Detection runs in a fixed priority order and stops at the first hit:

1. an explicit invocation block,
2. the :data:`COMMAND_PATTERNS` table, in table order,
3. bare git subcommand mentions inside a ``<think>`` section.

The heuristics are deliberately permissive.  Text that only *discusses*
a command ("you could run git status to check") is recovered as a call
as well; there is no confidence scoring.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

BASH_TOOL = "Bash"
DEFAULT_COMMIT_MESSAGE = "Changes from Claude Code session"


class RecoverySource(str, Enum):
    EXPLICIT = "explicit"
    PATTERN = "pattern"
    REASONING = "reasoning"
    NATIVE = "native"


class ToolInvocation(BaseModel):
    """A resolved tool call.

    Args:
        name: Tool name, e.g. ``"Bash"``.
        arguments: Decoded argument object.
        source: How the call was obtained.  Informational only.
    """

    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    source: RecoverySource = RecoverySource.EXPLICIT


class MalformedInvocationBlock(ValueError):
    """An explicit invocation block is present but has no tool name."""


# ---------------------------------------------------------------------------
# Explicit invocation blocks
# ---------------------------------------------------------------------------

_BLOCK_RE = re.compile(r"<function_calls>([\s\S]*?)</function_calls>")
_INVOKE_RE = re.compile(r'<invoke name="([^"]+)">')
_PARAMETER_RE = re.compile(r'<parameter name="([^"]+)">([\s\S]*?)</parameter>')


def _decode_parameter(value: str) -> Any:
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return value


def parse_explicit_block(text: str) -> ToolInvocation | None:
    """Parse the first ``<function_calls>`` block in *text*.

    Returns ``None`` when there is no block.

    Raises:
        MalformedInvocationBlock: If a block exists but no
            ``<invoke name="...">`` can be found inside it.
    """
    block = _BLOCK_RE.search(text)
    if block is None:
        return None
    body = block.group(1)
    name = _INVOKE_RE.search(body)
    if name is None:
        raise MalformedInvocationBlock("invocation block has no tool name")
    arguments = {
        param: _decode_parameter(value)
        for param, value in _PARAMETER_RE.findall(body)
    }
    return ToolInvocation(
        name=name.group(1), arguments=arguments,
        source=RecoverySource.EXPLICIT,
    )


# ---------------------------------------------------------------------------
# Command pattern table
# ---------------------------------------------------------------------------

Extractor = Callable[[re.Match, str], "str | None"]


@dataclass(frozen=True)
class CommandPattern:
    """One row of the heuristic table.

    Args:
        name: Label used in logs.
        matcher: Searched against the whole text.
        extractor: Builds the command from the match and the full text.
            Returning ``None`` lets the next row try.
    """

    name: str
    matcher: re.Pattern
    extractor: Extractor

    def extract(self, text: str) -> str | None:
        match = self.matcher.search(text)
        if match is None:
            return None
        return self.extractor(match, text)


_FLAG_RE = re.compile(r"-{1,2}[A-Za-z][\w-]*")
_PATH_RE = re.compile(r"[\w.\-/*~]*[./*][\w.\-/*~]*")
_REF_RE = re.compile(r"[\w.\-/:@]*\w[\w.\-/:@]*")
_CLOSERS = ("`", "'", '"', ",", ";", ":", "!", "?", ")")
_PROSE_WORDS = frozenset({
    "a", "again", "all", "and", "any", "changes", "command", "first",
    "for", "it", "my", "now", "our", "so", "that", "the", "then", "this",
    "to", "with", "your",
})


def _leading_arguments(
    rest: str, accept: Callable[[str], bool], max_positional: int,
) -> list[str]:
    """Collect argument-looking tokens from the start of *rest*.

    Stops at the end of the line, at the first token that does not look
    like an argument, or at sentence punctuation.
    """
    args: list[str] = []
    positional = 0
    for raw in rest.split("\n", 1)[0].split():
        ends_sentence = raw.endswith(_CLOSERS)
        token = raw.strip("`'\"").rstrip(",;:!?)")
        if len(token) > 1 and token.endswith("."):
            token, ends_sentence = token[:-1], True
        if not token or not accept(token):
            break
        if not _FLAG_RE.fullmatch(token):
            positional += 1
            if positional > max_positional:
                break
        args.append(token)
        if ends_sentence:
            break
    return args


def _is_path(token: str) -> bool:
    return bool(_FLAG_RE.fullmatch(token) or _PATH_RE.fullmatch(token))


def _is_ref(token: str) -> bool:
    if token.lower() in _PROSE_WORDS:
        return False
    return bool(_FLAG_RE.fullmatch(token) or _REF_RE.fullmatch(token))


def _quoted_command(match: re.Match, text: str) -> str | None:
    return match.group("cmd").strip() or None


def _bare_command(match: re.Match, text: str) -> str | None:
    return match.group("cmd").strip() or None


def _git_status(match: re.Match, text: str) -> str:
    return "git status"


def _git_add(match: re.Match, text: str) -> str:
    paths = _leading_arguments(text[match.end():], _is_path, max_positional=8)
    if not paths:
        return "git add ."
    return "git add " + " ".join(paths)


_COMMIT_MESSAGE_RE = re.compile(
    r"""git\s+commit\s+-(?P<flag>a?m)\s+(?P<q>["'])(?P<msg>[^"']+)(?P=q)""",
    re.IGNORECASE,
)


def _git_commit(match: re.Match, text: str) -> str:
    message = _COMMIT_MESSAGE_RE.search(text)
    if message is None:
        return f'git commit -m "{DEFAULT_COMMIT_MESSAGE}"'
    return f'git commit -{message.group("flag")} "{message.group("msg")}"'


def _git_push(match: re.Match, text: str) -> str:
    refs = _leading_arguments(text[match.end():], _is_ref, max_positional=2)
    if not refs:
        return "git push"
    return "git push " + " ".join(refs)


# Order matters: the first row that yields a command wins.
COMMAND_PATTERNS: tuple[CommandPattern, ...] = (
    CommandPattern(
        "quoted command",
        re.compile(
            r"""\b(?:run|execute)\s+(?:the\s+command\s+)?"""
            r"""(?P<q>[`"'])(?P<cmd>[^\n]+?)(?P=q)""",
            re.IGNORECASE,
        ),
        _quoted_command,
    ),
    CommandPattern(
        "git status",
        re.compile(r"\bgit\s+status\b", re.IGNORECASE),
        _git_status,
    ),
    CommandPattern(
        "git add",
        re.compile(r"\bgit\s+add\b", re.IGNORECASE),
        _git_add,
    ),
    CommandPattern(
        "git commit",
        re.compile(r"\bgit\s+commit\b", re.IGNORECASE),
        _git_commit,
    ),
    CommandPattern(
        "git push",
        re.compile(r"\bgit\s+push\b", re.IGNORECASE),
        _git_push,
    ),
    CommandPattern(
        "bare command",
        re.compile(
            r"""\b(?:run|execute)\s+"""
            r"""(?P<cmd>[A-Za-z0-9_\-./]+(?:[ \t]+[^\n."']+)?)""",
            re.IGNORECASE,
        ),
        _bare_command,
    ),
)


def match_command(text: str) -> str | None:
    """Return the command recovered by the first matching table row."""
    for pattern in COMMAND_PATTERNS:
        command = pattern.extract(text)
        if command:
            logger.debug(f"Pattern '{pattern.name}' recovered: {command}")
            return command
    return None


# ---------------------------------------------------------------------------
# Reasoning-block fallback
# ---------------------------------------------------------------------------

_REASONING_RE = re.compile(r"<think>([\s\S]*?)</think>")

REASONING_COMMANDS: tuple[tuple[str, str], ...] = (
    ("git status", "git status"),
    ("git add", "git add ."),
    ("git commit", f'git commit -m "{DEFAULT_COMMIT_MESSAGE}"'),
    ("git push", "git push"),
)


def command_from_reasoning(text: str) -> str | None:
    """Look for git subcommand mentions inside a ``<think>`` section."""
    reasoning = _REASONING_RE.search(text)
    if reasoning is None:
        return None
    section = reasoning.group(1)
    for mention, command in REASONING_COMMANDS:
        if mention in section:
            return command
    return None


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def recover(text: str, model: str = "") -> ToolInvocation | None:
    """Recover a tool invocation from the accumulated text of a turn.

    Never raises; a malformed explicit block means the text is treated
    as ordinary content.
    """
    try:
        invocation = parse_explicit_block(text)
    except MalformedInvocationBlock as e:
        logger.warning(f"Ignoring invocation block from {model}: {e}")
        return None
    if invocation is not None:
        logger.info(f"Explicit {invocation.name} call found in {model} output")
        return invocation

    source = RecoverySource.PATTERN
    command = match_command(text)
    if command is None:
        source = RecoverySource.REASONING
        command = command_from_reasoning(text)
    if command is None:
        return None

    logger.info(f"Recovered {BASH_TOOL} call from {source.value} text: {command}")
    return ToolInvocation(
        name=BASH_TOOL, arguments={"command": command}, source=source,
    )
