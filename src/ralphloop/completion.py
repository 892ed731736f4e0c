"""Completion assertions: ``<promise>...</promise>`` spans in agent output."""

from __future__ import annotations

import re

PROMISE_OPEN = "<promise>"
PROMISE_CLOSE = "</promise>"

_ASSERTION_RE = re.compile(
    re.escape(PROMISE_OPEN) + r"(.*?)" + re.escape(PROMISE_CLOSE),
    re.DOTALL,
)


def extract_assertion(text: str | None) -> str | None:
    """Return the inner text of the first well-formed assertion, unmodified.

    An opening marker with no closing marker after it is not an assertion.
    """
    if not text:
        return None
    match = _ASSERTION_RE.search(text)
    if match is None:
        return None
    return match.group(1)


def matches(promise: str | None, extracted: str | None) -> bool:
    if promise is None or extracted is None:
        return False
    return extracted == promise


def output_fulfils(promise: str | None, output: str | None) -> bool:
    return matches(promise, extract_assertion(output))


def completion_instruction(promise: str) -> str:
    return f"{PROMISE_OPEN}{promise}{PROMISE_CLOSE}"
