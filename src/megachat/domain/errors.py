"""Error taxonomy shared by the archive, relay and collaborator layers."""

from __future__ import annotations


class InputMalformed(ValueError):
    """No ``=== file: <path> ===`` segment could be found in the submitted text."""


# Name used by callers of the archive builder
EmptyInput = InputMalformed


class OversizedContent(ValueError):
    def __init__(self, size: int, limit: int) -> None:
        super().__init__(f"Archive content is {size} bytes; limit is {limit} bytes")
        self.size = size
        self.limit = limit


class UpstreamUnavailable(RuntimeError):
    """The generation backend was unreachable, failed, or returned an unusable payload."""


class PersistenceFailure(RuntimeError):
    """A message could not be recorded. Callers log it and carry on."""
