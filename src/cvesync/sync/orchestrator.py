"""Sync orchestrator driving a full ingestion run.

A run fetches NVD records for a publication window, enriches them in
batches with EPSS and KEV data, merges them with what is already stored,
upserts them and checkpoints progress so an interrupted run can resume.
"""

import asyncio
import time
from collections.abc import Callable, Mapping
from contextlib import aclosing
from datetime import UTC, datetime, timedelta
from typing import Any

from loguru import logger
from pydantic import ValidationError

from cvesync.config import Settings, SyncSettings
from cvesync.events import (
    AbortEvent,
    CompleteEvent,
    ErrorEvent,
    Event,
    EventBus,
    FetchedEvent,
    ProgressEvent,
    SyncStartEvent,
)
from cvesync.models.cve import VulnerabilityRecord
from cvesync.models.sync import (
    Elapsed,
    ResumeState,
    SyncOptions,
    SyncResult,
    SyncRunState,
    SyncStatistics,
    SyncStatus,
)
from cvesync.services.epss_service import EPSSService
from cvesync.services.kev_diff import KEVDiffDetector
from cvesync.services.kev_service import KEVService
from cvesync.services.nvd_service import NVDService
from cvesync.services.osv_service import OSVService
from cvesync.sync.enrichment import EnrichmentResolver, EnrichmentResult
from cvesync.sync.errors import (
    InvalidSyncOptionsError,
    SyncAbortedError,
    SyncAlreadyRunningError,
)
from cvesync.sync.merge import merge_record
from cvesync.sync.repository import RecordRepository
from cvesync.sync.state_store import ResumeStateStore


def format_duration(ms: float) -> str:
    """Format a duration in milliseconds as ``1h 2m 3s``, ``2m 3s`` or ``3s``."""
    seconds = max(0, int(ms // 1000))
    minutes, seconds = divmod(seconds, 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h {minutes}m {seconds}s"
    if minutes:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"


def parse_options(options: SyncOptions | Mapping[str, Any] | None) -> SyncOptions:
    """Validate run options given as a model or a camelCase/snake_case mapping.

    Raises:
        InvalidSyncOptionsError: If the options are inconsistent.
    """
    if options is None:
        return SyncOptions()
    if isinstance(options, SyncOptions):
        return options
    try:
        return SyncOptions.model_validate(dict(options))
    except ValidationError as e:
        reasons = "; ".join(err["msg"].removeprefix("Value error, ") for err in e.errors())
        raise InvalidSyncOptionsError(f"Invalid sync options: {reasons}") from e


class SyncOrchestrator:
    """Owns all mutable state of sync runs in this process.

    Only one run may be active at a time. Run state stays readable through
    :meth:`get_status` after the run ends.
    """

    def __init__(
        self,
        nvd_service: NVDService,
        resolver: EnrichmentResolver,
        repository: RecordRepository,
        state_store: ResumeStateStore,
        event_bus: EventBus | None = None,
        osv_service: OSVService | None = None,
        settings: SyncSettings | None = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize orchestrator.

        Args:
            nvd_service: Primary record source.
            resolver: EPSS/KEV enrichment resolver.
            repository: Record storage.
            state_store: Resume checkpoint storage.
            event_bus: Channel lifecycle events are published on.
            osv_service: Secondary advisory source, used on request.
            settings: Batch, checkpoint and window settings.
            clock: Wall clock in epoch seconds, injectable for tests.
        """
        self.nvd_service = nvd_service
        self.resolver = resolver
        self.repository = repository
        self.state_store = state_store
        self.event_bus = event_bus or EventBus()
        self.osv_service = osv_service
        self.settings = settings or SyncSettings()
        self._clock = clock

        self._state: SyncRunState | None = None
        self._abort_requested = False
        self._run_started = 0.0
        self._processed_at_start = 0

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        repository: RecordRepository,
        event_bus: EventBus | None = None,
    ) -> "SyncOrchestrator":
        """Wire the orchestrator and its source clients from settings."""
        event_bus = event_bus or EventBus()
        kev_service = KEVService(settings, diff_detector=KEVDiffDetector(event_bus))
        return cls(
            nvd_service=NVDService(settings),
            resolver=EnrichmentResolver(EPSSService(settings), kev_service),
            repository=repository,
            state_store=ResumeStateStore(settings.sync.state_file),
            event_bus=event_bus,
            osv_service=OSVService(settings),
            settings=settings.sync,
        )

    @property
    def is_running(self) -> bool:
        return self._state is not None and self._state.status == SyncStatus.RUNNING

    def get_status(self) -> SyncRunState | None:
        """Snapshot of the current or last run, None if no run has started."""
        if self._state is None:
            return None
        return self._state.model_copy(deep=True)

    async def abort_run(self) -> bool:
        """Request cooperative abort of the active run.

        Returns:
            False if no run is active.
        """
        if not self.is_running or self._state is None:
            return False

        self._abort_requested = True
        logger.warning(f"Abort requested for sync {self._state.sync_id}")
        await self._publish(AbortEvent(sync_id=self._state.sync_id))
        return True

    def resolve_window(
        self,
        options: SyncOptions,
        now: datetime | None = None,
    ) -> tuple[datetime, datetime]:
        """Publication window a run covers."""
        now = now or datetime.fromtimestamp(self._clock(), tz=UTC)
        if options.date_range is not None:
            return options.date_range.start_date, options.date_range.end_date
        if options.full:
            return now - timedelta(days=365 * self.settings.full_sync_years), now
        if options.incremental:
            return now - timedelta(days=self.settings.incremental_days), now
        return now - timedelta(days=self.settings.default_days), now

    async def start_run(
        self,
        options: SyncOptions | Mapping[str, Any] | None = None,
    ) -> SyncResult:
        """Run a sync to completion.

        Args:
            options: Run options.

        Returns:
            SyncResult summarizing the run.

        Raises:
            InvalidSyncOptionsError: If the options are inconsistent.
            SyncAlreadyRunningError: If another run is active.
            SyncAbortedError: If the run was aborted.
        """
        opts = parse_options(options)

        # Check-and-set with no suspension point in between
        if self.is_running and self._state is not None:
            raise SyncAlreadyRunningError("A sync is already running", self._state.sync_id)
        state, resumed = self._initial_state(opts)
        self._state = state
        self._abort_requested = False
        self._run_started = time.monotonic()
        self._processed_at_start = state.progress.processed

        window_start, window_end = self.resolve_window(opts)
        logger.info(
            f"Starting {opts.mode} sync {state.sync_id}: "
            f"{window_start:%Y-%m-%d} to {window_end:%Y-%m-%d}"
        )

        try:
            await self._publish(
                SyncStartEvent(
                    sync_id=state.sync_id,
                    window_start=window_start,
                    window_end=window_end,
                    resumed=resumed,
                    options=opts.model_dump(mode="json", by_alias=True, exclude_defaults=True),
                )
            )

            records = await self._fetch(state, opts, window_start, window_end)
            await self._process(state, opts, records)

            if not opts.skip_retry and state.failed_cve_ids:
                await self._retry_failed(state, opts)

            return await self._complete(state)
        except asyncio.CancelledError:
            await self._fail(state, SyncStatus.ABORTED, "Sync cancelled")
            raise
        except SyncAbortedError as e:
            await self._fail(state, SyncStatus.ABORTED, str(e))
            raise
        except Exception as e:
            logger.exception(f"Sync {state.sync_id} failed")
            await self._fail(state, SyncStatus.FAILED, str(e))
            raise

    def _initial_state(self, opts: SyncOptions) -> tuple[SyncRunState, bool]:
        if opts.resume:
            saved = self.state_store.load()
            if saved is not None:
                logger.info(
                    f"Resuming sync {saved.sync_id}: "
                    f"{saved.progress.processed}/{saved.progress.total} processed"
                )
                return saved.to_run_state(), True
            logger.info("No resume state found, starting fresh")

        now_ms = self._now_ms()
        return SyncRunState(sync_id=now_ms, start_time=now_ms), False

    async def _fetch(
        self,
        state: SyncRunState,
        opts: SyncOptions,
        window_start: datetime,
        window_end: datetime,
    ) -> list[VulnerabilityRecord]:
        """Collect the window's records from NVD, applying the vendor filter."""
        records: list[VulnerabilityRecord] = []
        seen: set[str] = set()
        raw_fetched = 0
        expected = 0

        self._check_abort(state)
        async with aclosing(self.nvd_service.iter_pages(window_start, window_end)) as pages:
            async for page in pages:
                self._check_abort(state)
                state.stats.api_calls.nvd += 1

                if page.start_index == 0:
                    expected = raw_fetched + page.total_results
                raw_fetched += page.raw_count

                for record in page.records:
                    if record.cve_id in seen:
                        continue
                    if opts.vendors and not record.affects_vendor(opts.vendors):
                        continue
                    seen.add(record.cve_id)
                    records.append(record)

                await self._publish(
                    ProgressEvent(
                        sync_id=state.sync_id,
                        phase="fetch",
                        total=expected,
                        processed=raw_fetched,
                        percentage=round(raw_fetched / expected * 100, 2) if expected else 100.0,
                        rate=self._rate(raw_fetched),
                    )
                )

        self._check_abort(state)
        state.progress.total = len(records)
        state.stats.fetched = len(records)
        logger.info(f"Fetched {len(records)} CVEs from NVD")
        await self._publish(FetchedEvent(sync_id=state.sync_id, total=len(records)))
        return records

    async def _process(
        self,
        state: SyncRunState,
        opts: SyncOptions,
        records: list[VulnerabilityRecord],
    ) -> None:
        batch_size = opts.batch_size or self.settings.batch_size
        total_batches = (len(records) + batch_size - 1) // batch_size

        for number, offset in enumerate(range(0, len(records), batch_size), start=1):
            self._check_abort(state)
            batch = records[offset : offset + batch_size]
            logger.info(f"Processing batch {number}/{total_batches} ({len(batch)} CVEs)")

            pending = [r.cve_id for r in batch if r.cve_id not in state.processed_cve_ids]
            enrichment = await self._resolve(state, pending)

            for record in batch:
                self._check_abort(state)

                if record.cve_id in state.processed_cve_ids:
                    state.progress.skipped += 1
                    continue

                try:
                    await self._store(state, opts, record, enrichment)
                    state.progress.successful += 1
                except Exception as e:
                    logger.error(f"Failed to process {record.cve_id}: {e}")
                    state.record_failure(record.cve_id)

                state.progress.processed += 1
                state.processed_cve_ids.add(record.cve_id)

                if state.progress.processed % self.settings.progress_interval == 0:
                    await self._publish_progress(state)
                if state.progress.processed % self.settings.checkpoint_interval == 0:
                    self._save_checkpoint(state)

    async def _retry_failed(self, state: SyncRunState, opts: SyncOptions) -> None:
        failed_ids = list(state.failed_cve_ids)
        logger.info(f"Retrying {len(failed_ids)} failed CVEs")

        for cve_id in failed_ids:
            self._check_abort(state)
            try:
                state.stats.api_calls.nvd += 1
                record = await self.nvd_service.fetch_cve(cve_id)
                enrichment = await self._resolve(state, [cve_id])
                await self._store(state, opts, record, enrichment)
            except Exception as e:
                logger.warning(f"Retry failed for {cve_id}: {e}")
                continue
            state.record_recovery(cve_id)

        recovered = len(failed_ids) - len(state.failed_cve_ids)
        logger.info(f"Retry complete: {recovered}/{len(failed_ids)} recovered")

    async def _resolve(self, state: SyncRunState, cve_ids: list[str]) -> EnrichmentResult:
        if not cve_ids:
            return EnrichmentResult()
        enrichment = await self.resolver.resolve(cve_ids)
        if enrichment.epss_ok:
            state.stats.api_calls.epss += 1
        if enrichment.kev_ok:
            state.stats.api_calls.cisa_kev += 1
        return enrichment

    async def _store(
        self,
        state: SyncRunState,
        opts: SyncOptions,
        record: VulnerabilityRecord,
        enrichment: EnrichmentResult,
    ) -> None:
        """Merge one record with its stored version and upsert it."""
        existing = self.repository.find_by_id(record.cve_id)

        has_advisory = False
        if opts.check_secondary_enrichment and self.osv_service is not None:
            has_advisory = await self._check_osv(state, self.osv_service, record.cve_id)

        merged = merge_record(record, enrichment, existing, has_osv_advisory=has_advisory)
        if self.repository.upsert(merged):
            state.stats.new += 1
        else:
            state.stats.updated += 1

    async def _check_osv(self, state: SyncRunState, osv_service: OSVService, cve_id: str) -> bool:
        try:
            state.stats.api_calls.osv += 1
            return await osv_service.has_advisory(cve_id)
        except Exception as e:
            logger.debug(f"OSV check failed for {cve_id}: {e}")
            return False

    async def _complete(self, state: SyncRunState) -> SyncResult:
        state.status = SyncStatus.COMPLETED
        state.end_time = self._now_ms()
        result = self._build_result(state)

        logger.info(
            f"Sync {state.sync_id} completed in {result.elapsed.formatted}: "
            f"{state.stats.new} new, {state.stats.updated} updated, {state.stats.errors} errors"
        )
        await self._publish(CompleteEvent(sync_id=state.sync_id, result=result))
        self.state_store.clear()
        return result

    async def _fail(self, state: SyncRunState, status: SyncStatus, message: str) -> None:
        state.status = status
        state.error = message
        state.end_time = self._now_ms()
        self._save_checkpoint(state)
        logger.error(f"Sync {state.sync_id} {status}: {message}")
        await self._publish(ErrorEvent(sync_id=state.sync_id, message=message))

    def _build_result(self, state: SyncRunState) -> SyncResult:
        elapsed_ms = (state.end_time or self._now_ms()) - state.start_time
        return SyncResult(
            sync_id=state.sync_id,
            status=state.status,
            statistics=SyncStatistics(
                total=state.progress.total,
                fetched=state.stats.fetched,
                new=state.stats.new,
                updated=state.stats.updated,
                errors=state.stats.errors,
                successful=state.progress.successful,
                failed=state.progress.failed,
                skipped=state.progress.skipped,
            ),
            api_calls=state.stats.api_calls.model_copy(),
            elapsed=Elapsed(
                milliseconds=elapsed_ms,
                seconds=round(elapsed_ms / 1000, 3),
                formatted=format_duration(elapsed_ms),
            ),
            failed_cve_ids=list(state.failed_cve_ids),
        )

    async def _publish_progress(self, state: SyncRunState) -> None:
        progress = state.progress
        done_here = progress.processed - self._processed_at_start
        rate = self._rate(done_here)
        remaining = progress.total - progress.processed
        eta = format_duration(remaining / rate * 1000) if rate > 0 else None

        await self._publish(
            ProgressEvent(
                sync_id=state.sync_id,
                phase="process",
                total=progress.total,
                processed=progress.processed,
                successful=progress.successful,
                failed=progress.failed,
                skipped=progress.skipped,
                percentage=progress.percentage,
                rate=rate,
                estimated_time_remaining=eta,
            )
        )

    def _save_checkpoint(self, state: SyncRunState) -> None:
        self.state_store.save(ResumeState.from_run_state(state, timestamp=self._now_ms()))

    def _check_abort(self, state: SyncRunState) -> None:
        if self._abort_requested:
            raise SyncAbortedError("Sync aborted by request", state.sync_id)

    def _rate(self, count: int) -> float:
        elapsed = time.monotonic() - self._run_started
        if elapsed <= 0:
            return 0.0
        return round(count / elapsed, 2)

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    async def _publish(self, event: Event) -> None:
        await self.event_bus.publish(event)
