"""Retry feedback: fold a failed attempt's error into the next instructions."""

from __future__ import annotations

FAILURE_TEMPLATE = (
    "{instructions}\n\nPrevious attempt failed with error:\n{error}\n\nPlease fix this issue."
)


def append_failure(instructions: str, error: str) -> str:
    """Return `instructions` with `error` appended verbatim.

    Feedback accumulates: attempt N sees the errors of every earlier attempt,
    oldest first. Sandbox, validator and inspector refusals read the same as
    execution failures here.
    """
    return FAILURE_TEMPLATE.format(instructions=instructions, error=error)
