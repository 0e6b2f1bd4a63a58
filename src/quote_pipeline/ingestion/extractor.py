"""
Parallel extraction from every registered source.

Each source call runs concurrently under its own timeout. A failing or slow
source yields a failed `SourceOutcome`; nothing is raised past this stage.
"""

import asyncio
import time
from dataclasses import dataclass, field

from quote_pipeline.common.utils import run_with_timeout
from quote_pipeline.infrastructure.observability import get_ingestion_logger
from quote_pipeline.ingestion.registry import SourceRegistry
from quote_pipeline.shared.errors import SourceFetchError, SourceTimeoutError
from quote_pipeline.shared.models.market import QuoteRecord, Source


@dataclass
class SourceOutcome:
    """Result of one source call within a cycle."""

    source_id: str
    success: bool
    records: list[QuoteRecord] = field(default_factory=list)
    duration_seconds: float = 0.0
    error: str | None = None
    timed_out: bool = False

    @property
    def record_count(self) -> int:
        return len(self.records)


@dataclass
class ExtractionReport:
    outcomes: list[SourceOutcome] = field(default_factory=list)
    majority_failed: bool = False

    @property
    def attempted(self) -> int:
        return len(self.outcomes)

    @property
    def successes(self) -> list[SourceOutcome]:
        return [o for o in self.outcomes if o.success]

    @property
    def succeeded(self) -> int:
        return len(self.successes)

    @property
    def failed(self) -> int:
        return self.attempted - self.succeeded

    @property
    def total_records(self) -> int:
        return sum(o.record_count for o in self.successes)

    @property
    def slowest_duration(self) -> float:
        return max((o.duration_seconds for o in self.successes), default=0.0)

    @property
    def failures(self) -> list[tuple[str, str]]:
        return [(o.source_id, o.error or "unknown") for o in self.outcomes if not o.success]


class Extractor:
    """
    Fan out `fetch_quotes` to every requested source.

    Args:
        registry: Source registry (adapters + requested codes)
        timeout_seconds: Per-source bound on each adapter call
        majority_failure_ratio: Failed share above which a warning is emitted
    """

    def __init__(
        self,
        registry: SourceRegistry,
        timeout_seconds: float = 15.0,
        majority_failure_ratio: float = 0.5,
    ):
        self.registry = registry
        self.timeout_seconds = timeout_seconds
        self.majority_failure_ratio = majority_failure_ratio
        self.logger = get_ingestion_logger("extractor")

    async def extract(self, sources: list[Source] | None = None) -> ExtractionReport:
        if sources is None:
            sources = self.registry.sources()

        outcomes = await asyncio.gather(*(self._extract_one(s) for s in sources))
        report = ExtractionReport(outcomes=list(outcomes))

        if report.attempted and report.failed > report.attempted * self.majority_failure_ratio:
            report.majority_failed = True
            self.logger.warning(
                "majority_sources_failed",
                failed=report.failed,
                attempted=report.attempted,
                failures=report.failures,
            )

        self.logger.info(
            "extraction_completed",
            attempted=report.attempted,
            succeeded=report.succeeded,
            failed=report.failed,
            total_records=report.total_records,
            slowest_seconds=round(report.slowest_duration, 3),
        )
        return report

    async def _fetch(self, source_id: str) -> list[QuoteRecord]:
        adapter = self.registry.adapter(source_id)
        try:
            return await run_with_timeout(
                adapter.fetch_quotes(self.registry.requested_codes(source_id)),
                self.timeout_seconds,
            )
        except TimeoutError as e:
            raise SourceTimeoutError(
                f"timeout after {self.timeout_seconds}s", source_id=source_id
            ) from e

    async def _extract_one(self, source: Source) -> SourceOutcome:
        started = time.perf_counter()
        source_id = source.source_id

        def failed(reason: str, timed_out: bool = False) -> SourceOutcome:
            self.logger.warning("source_failed", source_id=source_id, reason=reason)
            return SourceOutcome(
                source_id=source_id,
                success=False,
                duration_seconds=time.perf_counter() - started,
                error=reason,
                timed_out=timed_out,
            )

        try:
            records = await self._fetch(source_id)
        except SourceTimeoutError as e:
            return failed(str(e), timed_out=True)
        except SourceFetchError as e:
            return failed(str(e))
        except Exception as e:
            self.logger.exception("source_unexpected_error", source_id=source_id)
            return failed(f"{type(e).__name__}: {e}")

        duration = time.perf_counter() - started
        self.logger.debug(
            "source_extracted",
            source_id=source_id,
            records=len(records),
            duration_seconds=round(duration, 3),
        )
        return SourceOutcome(
            source_id=source_id,
            success=True,
            records=list(records),
            duration_seconds=duration,
        )
