"""Port for the upstream search fan-out."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Protocol, runtime_checkable

from streamwarden.domain.entities.candidate import Candidate, TitleQuery


@runtime_checkable
class CandidateSourcePort(Protocol):
    """Yields candidate batches as providers answer.

    Iteration ends when every provider has answered (end-of-stream).
    """

    def stream(self, query: TitleQuery) -> AsyncIterator[list[Candidate]]: ...
