"""Initial-candidate heuristic and candidate verification.

Pure transformation logic, no I/O. Decides which candidate starts playback
before any valuation exists, and which candidates are suspicious matches for
the requested title.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence

import structlog
from unidecode import unidecode as _unidecode

from streamwarden.domain.entities.candidate import Candidate, CandidateCheck, TitleQuery

log = structlog.get_logger(__name__)

# Number of distinct providers sampled before playback starts.
FIRST_PLAY_CANDIDATE_LIMIT: int = 5

TRAILER_SCORE: int = -1000

_TRAILER_MARKERS: tuple[str, ...] = (
    "trailer",
    "预告",
    "預告",
    "bande-annonce",
    "tráiler",
)

_PUNCT_RE = re.compile(r"[^\w\s]")

REASON_TRAILER = "trailer"
REASON_YEAR = "year mismatch"
REASON_TITLE = "title mismatch"
REASON_NO_EPISODES = "no episodes"
REASON_EPISODE_RANGE = "episode out of range"


def normalize_title(text: str | None) -> str:
    """Fold script variants onto one form: transliterate, lowercase, drop punctuation."""
    if not text:
        return ""
    text = _unidecode(text.strip()).lower()
    text = _PUNCT_RE.sub(" ", text)
    return " ".join(text.split())


def is_trailer(candidate: Candidate) -> bool:
    for raw in (candidate.title, candidate.original_title):
        lowered = (raw or "").lower()
        if any(marker in lowered for marker in _TRAILER_MARKERS):
            return True
    return False


def _contains_either(a: str, b: str) -> bool:
    return bool(a) and bool(b) and (a in b or b in a)


def title_score(candidate: Candidate, expected_title: str) -> int:
    expected = normalize_title(expected_title)
    if not expected:
        return 10
    title = normalize_title(candidate.title)
    original = normalize_title(candidate.original_title)
    if title and title == expected:
        return 120
    if original and original == expected:
        return 110
    if _contains_either(title, expected):
        return 80
    if _contains_either(original, expected):
        return 70
    return 0


def year_matches(candidate: Candidate, expected_year: str) -> bool:
    expected = (expected_year or "").strip()
    year = (candidate.year or "").strip()
    return not expected or not year or year == expected


def score_initial_candidate(candidate: Candidate, query: TitleQuery) -> int:
    """``title + year + min(episodes, 20)``; trailers score ``TRAILER_SCORE``."""
    if is_trailer(candidate):
        return TRAILER_SCORE
    score = title_score(candidate, query.title)
    score += 20 if year_matches(candidate, query.year) else 0
    score += min(20, candidate.episode_count)
    return score


def pick_best_initial(
    candidates: Iterable[Candidate], query: TitleQuery
) -> Candidate | None:
    """Highest initial score, first-seen wins ties. Trailers are never picked."""
    best: Candidate | None = None
    best_score = TRAILER_SCORE
    for candidate in candidates:
        score = score_initial_candidate(candidate, query)
        if score > best_score:
            best = candidate
            best_score = score
    return best


class InitialCandidatePool:
    """Samples the best candidate of the first few providers to answer.

    Each provider contributes at most one candidate (its best with episodes),
    in the order providers first appear.
    """

    def __init__(self, query: TitleQuery, limit: int = FIRST_PLAY_CANDIDATE_LIMIT) -> None:
        self._query = query
        self._limit = limit
        self._providers: set[str] = set()
        self._candidates: list[Candidate] = []

    @property
    def candidates(self) -> list[Candidate]:
        return list(self._candidates)

    @property
    def provider_count(self) -> int:
        return len(self._providers)

    @property
    def ready(self) -> bool:
        return len(self._providers) >= self._limit and bool(self._candidates)

    def add(self, batch: Sequence[Candidate]) -> None:
        grouped: dict[str, list[Candidate]] = {}
        for candidate in batch:
            key = candidate.valuation_key
            if not key or not candidate.episodes:
                continue
            grouped.setdefault(key, []).append(candidate)

        for key, items in grouped.items():
            if key in self._providers:
                continue
            best = pick_best_initial(items, self._query)
            if best is None:
                continue
            self._providers.add(key)
            if len(self._candidates) < self._limit:
                self._candidates.append(best)

    def pick(self) -> Candidate | None:
        return pick_best_initial(self._candidates[: self._limit], self._query)


def verify_candidates(
    candidates: Sequence[Candidate], query: TitleQuery
) -> list[CandidateCheck]:
    """Annotate each candidate with the reasons it looks like a wrong match."""
    checks: list[CandidateCheck] = []
    expected = normalize_title(query.title)
    for candidate in candidates:
        reasons: list[str] = []
        if is_trailer(candidate):
            reasons.append(REASON_TRAILER)
        if not year_matches(candidate, query.year):
            reasons.append(REASON_YEAR)
        if expected and title_score(candidate, query.title) == 0:
            reasons.append(REASON_TITLE)
        if not candidate.episodes:
            reasons.append(REASON_NO_EPISODES)
        elif query.episode_index >= candidate.episode_count:
            reasons.append(REASON_EPISODE_RANGE)
        checks.append(CandidateCheck(candidate=candidate, reasons=tuple(reasons)))
    return checks


def order_for_playback(
    ranked: Sequence[Candidate], query: TitleQuery
) -> list[CandidateCheck]:
    """Keep valuation order, but push suspicious candidates to the back.

    Clean candidates first (more episodes first, ranking order otherwise),
    then penalised ones, then title mismatches.
    """
    checks = verify_candidates(ranked, query)
    clean = [c for c in checks if not c.penalized]
    penalized = [c for c in checks if c.penalized and not c.title_mismatch]
    mismatched = [c for c in checks if c.title_mismatch]
    clean.sort(key=lambda c: -c.candidate.episode_count)
    if penalized or mismatched:
        log.debug(
            "candidates_penalized",
            penalized=len(penalized),
            title_mismatch=len(mismatched),
        )
    return [*clean, *penalized, *mismatched]
