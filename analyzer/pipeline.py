"""Finalization pipeline: canonicalize → segment → synthesize → persist."""

import logging
from typing import TYPE_CHECKING

from .schema import CapturedEvent, FinalizationResult
from .screen_canonicalizer import ScreenCanonicalizer
from .segmenter import Segmenter, create_segmenter
from .template_synthesizer import TemplateSynthesizer

if TYPE_CHECKING:
    from config import Config
    from recorder.session_store import SessionStore
    from storage.database import WorkflowDatabase
    from utils.llm import LLMClient
    from utils.logger import WorkflowLogger

_module_logger = logging.getLogger(__name__)


class FinalizationPipeline:
    """Turns a finished recording session into screens, templates and instances.

    Stages run strictly in sequence. Each collaborator-backed stage recovers
    from its own failures, so the pipeline never retries. Persistence errors
    propagate to the caller as ``StoreError``.

    Example:
        >>> pipeline = FinalizationPipeline.from_config(config, llm_client, database)
        >>> result = pipeline.run("session-1", events)
    """

    def __init__(
        self,
        canonicalizer: ScreenCanonicalizer,
        segmenter: Segmenter,
        synthesizer: TemplateSynthesizer,
        database: "WorkflowDatabase",
        logger: "WorkflowLogger | None" = None,
    ):
        self.canonicalizer = canonicalizer
        self.segmenter = segmenter
        self.synthesizer = synthesizer
        self.database = database
        self.logger = logger

    @classmethod
    def from_config(
        cls,
        config: "Config",
        llm_client: "LLMClient",
        database: "WorkflowDatabase",
        logger: "WorkflowLogger | None" = None,
    ) -> "FinalizationPipeline":
        """Wire the stages with the models and segmenter named in config."""
        return cls(
            canonicalizer=ScreenCanonicalizer(
                llm_client,
                config.models.canonicalization,
                max_tokens=config.max_tokens,
                logger=logger,
            ),
            segmenter=create_segmenter(
                config.segmenter,
                llm_client=llm_client,
                model=config.models.segmentation,
                max_tokens=config.max_tokens,
                logger=logger,
            ),
            synthesizer=TemplateSynthesizer(
                llm_client,
                config.models.synthesis,
                max_tokens=config.max_tokens,
                logger=logger,
            ),
            database=database,
            logger=logger,
        )

    def _log_stage(self, number: int, name: str) -> None:
        _module_logger.info("Stage %d: %s", number, name)
        if self.logger:
            self.logger.stage(number, name)

    def run(self, session_id: str, events: list[CapturedEvent]) -> FinalizationResult:
        """Run every stage over one session's events and persist the results.

        Args:
            session_id: Session the events were recorded in.
            events: Captured events in recording order.

        Returns:
            The screens, templates and instances produced by this run.

        Raises:
            StoreError: If persisting fails. Nothing from this run is stored then.
        """
        _module_logger.info(
            "Starting finalization for session %s with %d events", session_id, len(events)
        )
        if not events:
            if self.logger:
                self.logger.info("No events to process")
            return FinalizationResult()

        self._log_stage(1, "Canonicalizing screens")
        canonical = self.canonicalizer.canonicalize(events)
        screens = canonical.screens

        self._log_stage(2, "Segmenting into workflow instances")
        detected = self.segmenter.segment(events, screens)

        if not detected:
            if self.logger:
                self.logger.warning("No workflow instances detected")
            self.database.save_finalization(screens, [])
            return FinalizationResult(screens=screens)

        self._log_stage(3, "Synthesizing templates")
        results = self.synthesizer.synthesize_all(detected, screens, session_id)

        self._log_stage(4, "Persisting to database")
        # Screens and every pair commit or roll back together
        self.database.save_finalization(
            screens, [(r.template, r.instance) for r in results]
        )

        if self.logger:
            self.logger.success(
                f"Persisted {len(screens)} screens, {len(results)} templates "
                f"and {len(results)} instances"
            )
        return FinalizationResult(
            screens=screens,
            templates=[r.template for r in results],
            instances=[r.instance for r in results],
        )

    def finalize_session(self, store: "SessionStore", session_id: str) -> FinalizationResult:
        """Finalize a recorded session held in a SessionStore.

        The session is deleted once the run succeeds (including the no-event
        case). If the run raises, the session is kept and can be finalized
        again.

        Raises:
            SessionBusyError: If the session is already being finalized.
            StoreError: If persisting any result fails.
        """
        events = store.begin_finalize(session_id)
        if not events:
            store.end_finalize(session_id, success=True)
            return FinalizationResult()

        try:
            result = self.run(session_id, events)
        except Exception:
            store.end_finalize(session_id, success=False)
            raise
        store.end_finalize(session_id, success=True)
        return result
