"""Play-title use case: from a search query to a live, self-healing session."""

from __future__ import annotations

import hashlib
from collections.abc import Callable

import structlog

from streamwarden.domain.entities import (
    Candidate,
    PersistenceError,
    PlaybackState,
    SourceExhausted,
    TitleQuery,
)
from streamwarden.domain.ports.candidate_source import CandidateSourcePort
from streamwarden.domain.ports.progress_store import ProgressStorePort
from streamwarden.infrastructure.playback.controller import ReliabilityController
from streamwarden.infrastructure.valuation.engine import SourceValuationEngine
from streamwarden.infrastructure.valuation.selection import (
    FIRST_PLAY_CANDIDATE_LIMIT,
    InitialCandidatePool,
    order_for_playback,
)

log = structlog.get_logger(__name__)

ControllerFactory = Callable[[str], ReliabilityController]


def session_id_for(query: TitleQuery) -> str:
    """Deterministic session id for queries that do not carry one."""
    if query.session_id:
        return query.session_id
    raw = f"{query.title.lower().strip()}:{query.year.strip()}"
    return f"title:{hashlib.sha256(raw.encode()).hexdigest()[:16]}"


class PlayTitleUseCase:
    """Starts playback as early as possible, then refines the failover order.

    Flow:
        1. Look up stored progress (resume episode and position)
        2. Consume candidate batches; the first few providers feed the
           initial pool, playback starts once the pool is full
        3. End of stream: load valuations, probe, rank and verify
        4. Hand the final order to the controller; start it if the pool
           never filled
    """

    def __init__(
        self,
        *,
        source: CandidateSourcePort,
        engine: SourceValuationEngine,
        controller_factory: ControllerFactory,
        progress_store: ProgressStorePort | None = None,
        initial_candidate_limit: int = FIRST_PLAY_CANDIDATE_LIMIT,
        penalize_empty_providers: bool = False,
    ) -> None:
        self._source = source
        self._engine = engine
        self._controller_factory = controller_factory
        self._progress_store = progress_store
        self._initial_limit = initial_candidate_limit
        self._penalize_empty = penalize_empty_providers

    async def _resume_point(self, session_id: str, query: TitleQuery) -> tuple[int, float]:
        if self._progress_store is None:
            return query.episode_index, 0.0
        try:
            record = await self._progress_store.get_progress(session_id)
        except PersistenceError as e:
            log.warning("progress_lookup_failed", session=session_id, error=str(e))
            return query.episode_index, 0.0
        if record is None:
            return query.episode_index, 0.0
        log.info(
            "resume_point_found",
            session=session_id,
            episode=record.episode_index,
            position=record.time_seconds,
        )
        return record.episode_index, record.time_seconds

    async def execute(self, query: TitleQuery) -> ReliabilityController:
        """Returns the running controller.

        If the candidate stream or ranking fails, the controller is closed
        (even when playback already started) and the error propagates.

        Raises:
            SourceExhausted: the search produced no playable candidate.
        """
        session_id = session_id_for(query)
        episode_index, resume_time = await self._resume_point(session_id, query)
        controller = self._controller_factory(session_id)
        pool = InitialCandidatePool(query, limit=self._initial_limit)

        try:
            ordered = await self._collect_and_rank(
                query, session_id, controller, pool, episode_index, resume_time
            )
        except BaseException as e:
            log.warning(
                "play_title_aborted",
                session=session_id,
                started=controller.state is not PlaybackState.IDLE,
                error=str(e) or type(e).__name__,
            )
            await controller.close()
            raise

        if controller.state is PlaybackState.IDLE:
            pick = pool.pick() or (ordered[0] if ordered else None)
            if pick is None:
                await controller.close()
                raise SourceExhausted(
                    "no playable candidate found", episode_index=episode_index
                )
            await controller.begin(pick, episode_index, resume_time)
        return controller

    async def _collect_and_rank(
        self,
        query: TitleQuery,
        session_id: str,
        controller: ReliabilityController,
        pool: InitialCandidatePool,
        episode_index: int,
        resume_time: float,
    ) -> list[Candidate]:
        collected: list[Candidate] = []
        async for batch in self._source.stream(query):
            collected.extend(batch)
            pool.add(batch)
            if controller.state is PlaybackState.IDLE and pool.ready:
                pick = pool.pick()
                if pick is not None:
                    log.info(
                        "initial_candidate_selected",
                        provider=pick.valuation_key,
                        candidate=pick.candidate_id,
                        sampled=pool.provider_count,
                    )
                    await controller.begin(pick, episode_index, resume_time)

        playable = [c for c in collected if c.episodes]
        await self._engine.load(c.valuation_key for c in collected)
        if self._penalize_empty:
            with_episodes = {c.valuation_key for c in playable}
            empty = sorted({c.valuation_key for c in collected} - with_episodes)
            await self._engine.penalize_empty_providers(empty)
        await self._engine.probe(playable)

        ordered = [check.candidate for check in order_for_playback(self._engine.rank(playable), query)]
        controller.update_candidates(ordered)
        log.info(
            "candidates_ranked",
            session=session_id,
            candidates=len(ordered),
            providers=len({c.valuation_key for c in ordered}),
        )
        return ordered
