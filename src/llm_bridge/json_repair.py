"""Best-effort completion of truncated JSON text.

Used while tool-call arguments are still streaming so that a partial value can
be rendered early. The result is lossy and never authoritative: the final parse
of a tool call always runs over the raw accumulated text.
"""

from __future__ import annotations

import re

_PARTIAL_LITERAL = re.compile(r"(?<![\w.])(t|tr|tru|f|fa|fal|fals|n|nu|nul)$")
_LITERALS = {"t": "true", "f": "false", "n": "null"}
_PARTIAL_UNICODE_ESCAPE = re.compile(r"\\u[0-9a-fA-F]{0,3}$")
_NUMBER_TAIL = "-+.eE"


def repair_json(text: str) -> str:
    """Return ``text`` with unterminated strings, arrays and objects closed.

    Returns the input unchanged when nothing is open or when the closers seen
    so far do not match their openers.
    """
    closers: list[str] = []
    in_string = False
    escaped = False
    string_is_key = False
    last_token = ""

    for ch in text:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
            string_is_key = bool(closers) and closers[-1] == "}" and last_token in ("{", ",")
        elif ch in "{[":
            closers.append("}" if ch == "{" else "]")
        elif ch in "}]":
            if not closers or closers[-1] != ch:
                return text
            closers.pop()
        if not ch.isspace():
            last_token = ch

    if not closers and not in_string:
        return text

    repaired = text
    if in_string:
        if escaped:
            repaired = repaired[:-1]
        repaired = _drop_partial_unicode_escape(repaired) + '"'
        if string_is_key:
            repaired += ":null"

    return _complete_tail(repaired, closers) + "".join(reversed(closers))


def _drop_partial_unicode_escape(text: str) -> str:
    match = _PARTIAL_UNICODE_ESCAPE.search(text)
    if match is None:
        return text
    head = text[: match.start()]
    if (len(head) - len(head.rstrip("\\"))) % 2:
        # the backslash of "\u" is itself escaped
        return text
    return head


def _complete_tail(text: str, closers: list[str]) -> str:
    """Finish whatever token the text was cut inside of."""
    text = text.rstrip()
    if not closers:
        return text

    literal = _PARTIAL_LITERAL.search(text)
    if literal:
        return text[: literal.start()] + _LITERALS[literal.group(1)[0]]

    stripped = text.rstrip(_NUMBER_TAIL)
    if stripped != text and (stripped[-1:].isdigit()):
        return stripped
    if stripped != text and text[-1] in "-+":
        # a value that is only a sign
        text = stripped.rstrip()

    if text.endswith(","):
        text = text[:-1].rstrip()
    if text.endswith(":"):
        return text + "null"
    if closers[-1] == "}" and text.endswith('"') and _ends_with_key(text):
        return text + ":null"
    return text


def _ends_with_key(text: str) -> bool:
    """True when the final complete string in ``text`` is an object key."""
    end = len(text) - 1
    index = end - 1
    while index >= 0:
        if text[index] == '"':
            backslashes = 0
            probe = index - 1
            while probe >= 0 and text[probe] == "\\":
                backslashes += 1
                probe -= 1
            if backslashes % 2 == 0:
                break
        index -= 1
    before = text[:index].rstrip()
    return before.endswith(("{", ","))
