"""Platform matrix runner: one isolated generate → verify → publish session per platform."""

from __future__ import annotations

import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field, replace
from pathlib import Path

from rich.console import Console

from bindsync.config import get_settings
from bindsync.core.errors import BindsyncError, PipelineError
from bindsync.core.logging import SyncLogger, Verbosity
from bindsync.core.models import PlatformTarget, SessionOutcome, SessionState, SourceTree
from bindsync.generate.session import GenerationSession
from bindsync.pipeline import Pipeline, validate_pipeline
from bindsync.publish.controller import PublishController
from bindsync.trigger import check_trigger, record_trigger
from bindsync.verify import VerificationGate


@dataclass
class RunResult:
    """Summary of a matrix run. Partial success is a normal outcome."""

    outcomes: list[SessionOutcome] = field(default_factory=list)
    source_revision: str = ""
    total_time: float = 0.0
    skipped: bool = False
    trigger_reasons: list[str] = field(default_factory=list)
    run_log: dict = field(default_factory=dict)

    @property
    def published(self) -> int:
        return sum(1 for o in self.outcomes if o.succeeded and o.commit_id and not o.no_op)

    @property
    def unchanged(self) -> int:
        return sum(1 for o in self.outcomes if o.succeeded and o.no_op)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if o.state == SessionState.FAILED)

    @property
    def succeeded(self) -> bool:
        return self.failed == 0

    def outcome(self, platform: str) -> SessionOutcome | None:
        return next((o for o in self.outcomes if o.platform.key == platform), None)

    def to_dict(self) -> dict:
        return {
            "skipped": self.skipped,
            "source_revision": self.source_revision,
            "trigger_reasons": list(self.trigger_reasons),
            "total_time": round(self.total_time, 3),
            "published": self.published,
            "unchanged": self.unchanged,
            "failed": self.failed,
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


def _select_platforms(pipeline: Pipeline, keys: list[str]) -> Pipeline:
    known = {t.key for t in pipeline.platforms}
    unknown = sorted(set(keys) - known)
    if unknown:
        raise PipelineError(f"Unknown platforms {unknown}; matrix has {sorted(known)}")
    wanted = set(keys)
    return replace(pipeline, platforms=[t for t in pipeline.platforms if t.key in wanted])


def run_session(
    pipeline: Pipeline,
    target: PlatformTarget,
    source_tree: SourceTree,
    logger: SyncLogger,
    retry_budget: int,
    retry_backoff: float,
    dry_run: bool = False,
    sleep: Callable[[float], None] = time.sleep,
) -> SessionOutcome:
    """Run one platform session. Never raises; failures land in the outcome."""
    start = time.time()
    path = pipeline.artifact_path(target)
    outcome = SessionOutcome(platform=target, artifact_path=path)
    platform = target.key

    def enter(state: SessionState) -> None:
        outcome.state = state

    mainline = None
    logger.session_start(platform, path)
    try:
        enter(SessionState.GENERATING)
        logger.stage(platform, SessionState.GENERATING.value)
        session = GenerationSession(
            target,
            source_tree,
            generator=pipeline.generator,
            artifact_path=path,
            rules=pipeline.rules,
            verify_determinism=pipeline.verify_determinism,
        )
        candidate = session.run()

        enter(SessionState.VERIFYING)
        logger.stage(platform, SessionState.VERIFYING.value, candidate.digest[:19])
        VerificationGate(pipeline.test_runner).check(candidate, source_tree)

        enter(SessionState.DIFFING)
        mainline = pipeline.mainline_factory(target)
        controller = PublishController(
            mainline,
            retry_budget=retry_budget,
            retry_backoff=retry_backoff,
            logger=logger,
            dry_run=dry_run,
            sleep=sleep,
            on_state=enter,
        )
        published = controller.publish(candidate)

        outcome.state = SessionState.DONE
        outcome.commit_id = published.commit_id
        outcome.attempts = published.attempts
        outcome.no_op = published.no_op
        if published.no_op:
            outcome.message = "unchanged"
        elif published.would_publish:
            outcome.message = "would publish"
        else:
            outcome.message = "published"
    except BindsyncError as e:
        outcome.stage = outcome.state.value
        outcome.state = SessionState.FAILED
        outcome.error_kind = e.kind
        outcome.message = str(e)
        outcome.attempts = getattr(e, "attempts", outcome.attempts)
    except Exception as e:
        # Any other failure stays local to this platform as well.
        outcome.stage = outcome.state.value
        outcome.state = SessionState.FAILED
        outcome.error_kind = "internal"
        outcome.message = f"{type(e).__name__}: {e}"
    finally:
        if mainline is not None:
            mainline.close()
        outcome.elapsed = time.time() - start
        logger.session_finish(platform, outcome.state.value, outcome.error_kind, outcome.message)
    return outcome


def run(
    pipeline: Pipeline,
    force: bool = False,
    dry_run: bool = False,
    verbosity: int = 0,
    max_workers: int | None = None,
    retry_budget: int | None = None,
    platforms: list[str] | None = None,
    console: Console | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> RunResult:
    """Execute the platform matrix.

    Args:
        pipeline: The pipeline definition.
        force: Run even if the change watcher sees nothing new.
        dry_run: Stop each session after Diffing.
        verbosity: Verbosity level (0=default, 1=verbose, 2=debug).
        max_workers: Concurrent sessions (None/0 = one per platform).
        retry_budget: Override for the push retry budget.
        platforms: Only run these platform keys (None = whole matrix).

    Returns:
        RunResult with one SessionOutcome per platform, in matrix order.
    """
    validate_pipeline(pipeline)
    if platforms:
        pipeline = _select_platforms(pipeline, platforms)
    settings = get_settings()
    start_time = time.time()

    state_dir = Path(pipeline.state_dir) if pipeline.state_dir else settings.state_dir
    budget = retry_budget or pipeline.retry_budget or settings.retry_budget
    backoff = pipeline.retry_backoff if pipeline.retry_backoff is not None else settings.retry_backoff
    workers = max_workers or settings.max_workers or len(pipeline.platforms)

    source_tree = pipeline.source_provider.checkout()
    decision = check_trigger(pipeline, state_dir, source_tree)
    result = RunResult(source_revision=source_tree.revision, trigger_reasons=decision.reasons)
    if not force and not decision.should_run:
        result.skipped = True
        result.total_time = time.time() - start_time
        return result

    logger = SyncLogger(
        verbosity=Verbosity(min(verbosity, Verbosity.DEBUG)),
        state_dir=state_dir,
        console=console,
    )
    try:
        result.outcomes = _run_matrix(pipeline, source_tree, logger, workers, budget, backoff, dry_run, sleep)
        result.total_time = time.time() - start_time

        if not dry_run and result.succeeded and decision.fingerprint is not None:
            record_trigger(state_dir, decision.fingerprint)

        logger.run_finish(result.total_time, result.published, result.unchanged, result.failed)
        result.run_log = logger.run_log.to_dict()
    finally:
        logger.close()
    return result


def _run_matrix(
    pipeline: Pipeline,
    source_tree: SourceTree,
    logger: SyncLogger,
    workers: int,
    budget: int,
    backoff: float,
    dry_run: bool,
    sleep: Callable[[float], None],
) -> list[SessionOutcome]:
    logger.run_start(pipeline.name, [t.key for t in pipeline.platforms])

    outcomes: dict[str, SessionOutcome] = {}
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="bindsync") as pool:
        futures = {
            pool.submit(
                run_session, pipeline, target, source_tree, logger,
                budget, backoff, dry_run, sleep,
            ): target
            for target in pipeline.platforms
        }
        for future in as_completed(futures):
            target = futures[future]
            try:
                outcomes[target.key] = future.result()
            except Exception as exc:
                outcomes[target.key] = SessionOutcome(
                    platform=target,
                    state=SessionState.FAILED,
                    error_kind="internal",
                    message=str(exc),
                    artifact_path=pipeline.artifact_path(target),
                )

    return [outcomes[t.key] for t in pipeline.platforms]
