"""
Scraping Orchestrator

Processes countries one after another. For each country:

1. Load the progress tree; a completed country is skipped outright.
2. List states (and cities in city mode) and build one task per unfinished
   leaf.
3. Run the tasks on the TaskScheduler. Every successful leaf rewrites its
   state snapshot, is marked complete and the tree is saved, in that order,
   so a leaf never counts as done before its records are on disk.
4. Mark the country complete when every state is done and no interrupt
   happened, save the tree and export the country rollup.
"""

import logging
import random
import time
from dataclasses import dataclass, field
from enum import Enum
from threading import Lock
from typing import Dict, Iterable, List, Optional

from ..config import ScraperConfig
from ..exceptions import DirectoryError, PersistenceError
from ..extraction.categories import CategoryFilter
from ..extraction.fetcher import BusinessFetcher
from ..geo.directory import LocationDirectory
from ..geo.locale import Translator, localize_query
from ..models import LocationNode, Task, render_search_query, tag_records
from .dedup import Deduplicator, ResultAccumulator
from .export import SNAPSHOT_FORMAT, ExportManager
from .progress import ProgressStore, ProgressTree, city_key
from .retry import RetryPolicy
from .scheduler import CancellationToken, SchedulerStats, TaskOutcome, TaskScheduler

logger = logging.getLogger(__name__)


class CountryStatus(Enum):
    COMPLETED = "completed"
    ALREADY_COMPLETED = "already_completed"
    INCOMPLETE = "incomplete"      # ran to the end with failed leaves
    INTERRUPTED = "interrupted"
    FAILED = "failed"              # states could not be listed


@dataclass
class CountryResult:
    country: LocationNode
    status: CountryStatus
    businesses: List[Dict] = field(default_factory=list)
    failed_leaves: List[str] = field(default_factory=list)
    stats: Optional[SchedulerStats] = None


@dataclass
class RunSummary:
    results: List[CountryResult]
    elapsed_seconds: float
    cancelled: bool = False

    @property
    def countries_processed(self) -> int:
        return len(self.results)

    @property
    def countries_completed(self) -> int:
        done = (CountryStatus.COMPLETED, CountryStatus.ALREADY_COMPLETED)
        return sum(1 for r in self.results if r.status in done)

    @property
    def countries_failed(self) -> int:
        return sum(1 for r in self.results if r.status == CountryStatus.FAILED)

    @property
    def total_businesses(self) -> int:
        return sum(len(r.businesses) for r in self.results)

    @property
    def failed_leaves(self) -> List[str]:
        return [leaf for r in self.results for leaf in r.failed_leaves]


# =============================================================================
# Per-country bookkeeping
# =============================================================================

@dataclass
class _StateBucket:
    """Records and leaf accounting for one state during a country run."""
    state: LocationNode
    records: ResultAccumulator
    tasks: List[Task] = field(default_factory=list)
    pending: int = 0
    failures: int = 0
    listing_failed: bool = False
    closed: bool = False


@dataclass
class _CountryRun:
    """Shared state for one country; every mutation happens under ``lock``."""
    country: LocationNode
    tree: ProgressTree
    states: List[LocationNode]
    buckets: Dict[str, _StateBucket]
    records: ResultAccumulator
    failed_leaves: List[str] = field(default_factory=list)
    lock: Lock = field(default_factory=Lock)


def _bucket_key(state: LocationNode) -> str:
    return f"{state.code}|{state.name}"


class Orchestrator:
    """
    Drives a full run over the configured countries.

    Collaborators are injected; ``build_orchestrator`` in the CLI wires the
    default HTTP implementations.
    """

    def __init__(
        self,
        config: ScraperConfig,
        directory: LocationDirectory,
        fetcher: BusinessFetcher,
        progress_store: Optional[ProgressStore] = None,
        exporter: Optional[ExportManager] = None,
        translator: Optional[Translator] = None,
        category_filter: Optional[CategoryFilter] = None,
        cancel_token: Optional[CancellationToken] = None,
        retry_policy: Optional[RetryPolicy] = None,
        deduplicator: Optional[Deduplicator] = None,
        rng: Optional[random.Random] = None,
    ):
        self.config = config
        self.directory = directory
        self.fetcher = fetcher
        self.progress_store = progress_store or ProgressStore(config.output_dir)
        self.exporter = exporter or ExportManager(config.output_dir, config.export_formats)
        self.translator = translator
        self.category_filter = category_filter or CategoryFilter()
        self.cancel_token = cancel_token or CancellationToken()
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=config.retry_count, base_delay=config.retry_delay
        )
        self.deduplicator = deduplicator or Deduplicator()
        self.rng = rng or random.Random()

        # State scopes always get a JSON snapshot so a resumed run can read them back
        self.state_formats = list(self.exporter.formats)
        if SNAPSHOT_FORMAT not in self.state_formats:
            self.state_formats.append(SNAPSHOT_FORMAT)

    @property
    def query(self) -> str:
        return self.config.query

    # =========================================================================
    # Run level
    # =========================================================================

    def resolve_countries(self, codes: Iterable[str]) -> List[LocationNode]:
        """
        Match requested ISO-2 codes against the directory, sorted by name.

        Raises:
            DirectoryError: If the country list cannot be fetched
        """
        wanted = {code.upper() for code in codes}
        available = {c.code.upper(): c for c in self.directory.countries()}

        unknown = sorted(wanted - set(available))
        if unknown:
            logger.warning("Unknown country codes ignored: %s", ", ".join(unknown))

        countries = [available[code] for code in wanted if code in available]
        return sorted(countries, key=lambda c: c.name)

    def run(self, country_codes: Optional[Iterable[str]] = None) -> RunSummary:
        """Process every requested country in turn and return the run summary."""
        start = time.monotonic()
        codes = country_codes if country_codes is not None else self.config.countries
        countries = self.resolve_countries(codes)
        logger.info("Processing %d countries: %s", len(countries), ", ".join(c.name for c in countries))

        results = []
        for country in countries:
            if self.cancel_token.cancelled:
                break
            results.append(self.process_country(country))

        summary = RunSummary(
            results=results,
            elapsed_seconds=time.monotonic() - start,
            cancelled=self.cancel_token.cancelled,
        )
        log_summary(summary)
        return summary

    # =========================================================================
    # Country level
    # =========================================================================

    def process_country(self, country: LocationNode) -> CountryResult:
        tree = self.progress_store.load(self.query, country.code)
        if tree.is_country_done(country.code):
            logger.info("%s already completed, skipping", country.name)
            return CountryResult(country=country, status=CountryStatus.ALREADY_COMPLETED)

        logger.info("Processing %s (%s)", country.name, country.code)

        search_query = self.query
        if self.config.localize:
            search_query = localize_query(self.query, country.code, self.translator)

        try:
            states = self.directory.states(country.code)
        except DirectoryError as e:
            logger.error("Failed to list states for %s: %s", country.name, e)
            return CountryResult(country=country, status=CountryStatus.FAILED)

        if self.config.shuffle:
            states = list(states)
            self.rng.shuffle(states)

        run = self._start_run(country, tree, states)
        tasks = self.build_tasks(run, search_query)
        logger.info("%s: %d states, %d tasks to run", country.name, len(states), len(tasks))

        scheduler = TaskScheduler(
            parallelism=self.config.parallel,
            cancel_token=self.cancel_token,
            delay_range=self.config.delay_range,
        )
        stats = scheduler.run(
            tasks,
            should_skip=lambda task: self._is_leaf_done(run, task),
            execute=self.execute_task,
            on_complete=lambda task, outcome: self._on_task_complete(run, task, outcome),
        )
        return self._finish_run(run, stats)

    def _start_run(self, country: LocationNode, tree: ProgressTree, states: List[LocationNode]) -> _CountryRun:
        """Create the country accumulator, seeded with state snapshots from earlier runs."""
        country_records = ResultAccumulator(self.deduplicator)
        buckets = {}
        for state in states:
            previous = self.exporter.read_json(self.query, country.code, state.name)
            buckets[_bucket_key(state)] = _StateBucket(
                state=state, records=ResultAccumulator(self.deduplicator, previous)
            )
            country_records.add(previous)
        if len(country_records):
            logger.info("Resuming %s with %d businesses from earlier runs", country.name, len(country_records))
        return _CountryRun(country=country, tree=tree, states=states, buckets=buckets, records=country_records)

    def build_tasks(self, run: _CountryRun, search_query: str) -> List[Task]:
        """
        One task per unfinished leaf. Leaves already marked done are left out.
        """
        country = run.country
        tree = run.tree
        tasks = []
        tree_changed = False

        for state in run.states:
            bucket = run.buckets[_bucket_key(state)]
            if tree.is_state_done(country.code, state.name):
                bucket.closed = True
                continue

            if not self.config.include_cities:
                bucket.tasks = [Task(query=search_query, country=country, state=state)]
            else:
                try:
                    cities = list(self.directory.cities(country.code, state.code))
                except DirectoryError as e:
                    logger.error("Failed to list cities for %s, %s: %s", state.name, country.name, e)
                    bucket.listing_failed = True
                    bucket.closed = True
                    continue
                if self.config.shuffle:
                    self.rng.shuffle(cities)

                seen = set()
                for city in cities:
                    key = city_key(country.code, state.code, city.name)
                    if key in seen or tree.is_city_done(country.code, state.code, city.name):
                        continue
                    seen.add(key)
                    bucket.tasks.append(Task(query=search_query, country=country, state=state, city=city))

                if not bucket.tasks:
                    # Every city finished earlier (or the state has none)
                    tree.mark_state_complete(country.code, state.name)
                    bucket.closed = True
                    tree_changed = True
                    continue

            bucket.pending = len(bucket.tasks)
            tasks.extend(bucket.tasks)

        if tree_changed:
            self._save_progress(run)
        return tasks

    def _finish_run(self, run: _CountryRun, stats: SchedulerStats) -> CountryResult:
        country = run.country
        with run.lock:
            for bucket in run.buckets.values():
                if not bucket.closed and self._all_leaves_done(run, bucket):
                    self._close_state(run, bucket, save=False)

            cancelled = self.cancel_token.cancelled
            all_states_done = all(run.tree.is_state_done(country.code, s.name) for s in run.states)
            if cancelled:
                status = CountryStatus.INTERRUPTED
                logger.warning("%s interrupted; saving partial progress", country.name)
            elif all_states_done:
                run.tree.mark_country_complete(country.code)
                status = CountryStatus.COMPLETED
            else:
                status = CountryStatus.INCOMPLETE

            self._save_progress(run)
            businesses = run.records.records
            self.exporter.write(businesses, self.query, country.code, country.name)

        if status == CountryStatus.COMPLETED:
            logger.info("%s completed: %d unique businesses found", country.name, len(businesses))
        elif status == CountryStatus.INCOMPLETE:
            logger.warning("%s finished with %d failed tasks; rerun to retry them",
                           country.name, len(run.failed_leaves))

        return CountryResult(
            country=country,
            status=status,
            businesses=businesses,
            failed_leaves=list(run.failed_leaves),
            stats=stats,
        )

    # =========================================================================
    # Task level
    # =========================================================================

    def execute_task(self, task: Task) -> List[Dict]:
        """Fetch (with retries), tag and filter the records for one leaf."""
        search_query = render_search_query(task)
        raw = self.retry_policy.run(
            lambda: self.fetcher.fetch(search_query, task.country.code),
            description=task.label,
        )
        records = tag_records(raw or [], task, source_name=getattr(self.fetcher, "source_name", ""))
        return self.category_filter.apply(records)

    def _is_leaf_done(self, run: _CountryRun, task: Task) -> bool:
        with run.lock:
            return self._leaf_done(run.tree, task)

    @staticmethod
    def _leaf_done(tree: ProgressTree, task: Task) -> bool:
        if task.city is not None:
            return tree.is_city_done(task.country.code, task.state.code, task.city.name)
        return tree.is_state_done(task.country.code, task.state.name)

    def _on_task_complete(self, run: _CountryRun, task: Task, outcome: TaskOutcome):
        with run.lock:
            bucket = run.buckets[_bucket_key(task.state)]
            bucket.pending -= 1

            if outcome.ok:
                self._record_success(run, bucket, task, outcome.result)
            else:
                bucket.failures += 1
                run.failed_leaves.append(task.label)
                logger.error("Failed to process %s: %s", task.label, outcome.error)

            if bucket.pending == 0 and not bucket.closed:
                self._close_state(run, bucket)

    def _record_success(self, run: _CountryRun, bucket: _StateBucket, task: Task, records: List[Dict]):
        country = run.country
        new_in_state = bucket.records.add(records)
        run.records.add(records)
        logger.info("%s: %d businesses (%d new)", task.label, len(records), new_in_state)

        if len(bucket.records):
            written = self.exporter.write(
                bucket.records.records, self.query, country.code, bucket.state.name, formats=self.state_formats
            )
            if SNAPSHOT_FORMAT not in written:
                # No snapshot to resume from: leave the leaf unfinished so the next run repeats it
                bucket.failures += 1
                run.failed_leaves.append(task.label)
                logger.error("Not marking %s complete: its state snapshot could not be saved", task.label)
                return

        if task.city is not None:
            run.tree.mark_city_complete(country.code, task.state.code, task.city.name)
        else:
            run.tree.mark_state_complete(country.code, task.state.name)
        self._save_progress(run)

    def _all_leaves_done(self, run: _CountryRun, bucket: _StateBucket) -> bool:
        if bucket.listing_failed or bucket.failures:
            return False
        return all(self._leaf_done(run.tree, t) for t in bucket.tasks)

    def _close_state(self, run: _CountryRun, bucket: _StateBucket, save: bool = True):
        """State boundary: mark the state done if all of its leaves succeeded, then persist."""
        bucket.closed = True
        state = bucket.state
        if self._all_leaves_done(run, bucket):
            run.tree.mark_state_complete(run.country.code, state.name)
            logger.info("State %s completed: %d businesses", state.name, len(bucket.records))
        else:
            logger.warning("State %s finished with %d failed tasks", state.name, bucket.failures)
        if save:
            self._save_progress(run)

    def _save_progress(self, run: _CountryRun):
        try:
            self.progress_store.save(self.query, run.country.code, run.tree)
        except PersistenceError as e:
            logger.error("%s", e)


def log_summary(summary: RunSummary):
    logger.info("=" * 60)
    logger.info("SCRAPING %s", "INTERRUPTED" if summary.cancelled else "COMPLETE")
    logger.info("=" * 60)
    logger.info("Countries processed: %d (%d completed)", summary.countries_processed, summary.countries_completed)
    if summary.countries_failed:
        logger.error("Countries failed: %d", summary.countries_failed)
    if summary.failed_leaves:
        logger.warning("Failed tasks: %d", len(summary.failed_leaves))
    logger.info("Total businesses found: %d", summary.total_businesses)
    logger.info("Total execution time: %.0f seconds", summary.elapsed_seconds)
    logger.info("=" * 60)
