"""Domain entities for stream candidates returned by the search fan-out.

Pure value objects without framework dependencies or I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class Candidate:
    """One playable title offering from one provider.

    ``episodes`` holds one stream URL per episode, in episode order.
    Movies carry a single entry.
    """

    provider_id: str
    candidate_id: str
    title: str = ""
    original_title: str = ""
    year: str = ""
    episodes: tuple[str, ...] = ()
    poster: str = ""
    catalog_id: str | None = None

    @property
    def episode_count(self) -> int:
        return len(self.episodes)

    @property
    def valuation_key(self) -> str:
        """Valuations are tracked per provider, not per candidate."""
        return self.provider_id.strip()

    @property
    def probe_url(self) -> str | None:
        # The second episode is less likely to be a cached preview.
        if not self.episodes:
            return None
        return self.episodes[1] if len(self.episodes) > 1 else self.episodes[0]

    def covers_episode(self, episode_index: int) -> bool:
        return 0 <= episode_index < len(self.episodes)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Candidate:
        """Build a candidate from a search payload (JSON object)."""
        episodes = data.get("episodes") or ()
        return cls(
            provider_id=str(data.get("source") or data.get("provider_id") or ""),
            candidate_id=str(data.get("id") or data.get("candidate_id") or ""),
            title=str(data.get("title") or ""),
            original_title=str(data.get("original_title") or ""),
            year=str(data.get("year") or ""),
            episodes=tuple(str(e) for e in episodes),
            poster=str(data.get("poster") or ""),
            catalog_id=data.get("douban_id") or data.get("catalog_id"),
        )


@dataclass(frozen=True)
class TitleQuery:
    """What the viewer asked for."""

    title: str
    year: str = ""
    original_title: str = ""
    session_id: str = ""
    episode_index: int = 0


@dataclass(frozen=True)
class CandidateCheck:
    """Verification outcome for one candidate against the requested title."""

    candidate: Candidate
    reasons: tuple[str, ...] = field(default_factory=tuple)

    @property
    def penalized(self) -> bool:
        return bool(self.reasons)

    @property
    def title_mismatch(self) -> bool:
        return "title mismatch" in self.reasons
