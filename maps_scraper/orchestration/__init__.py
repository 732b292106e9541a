"""
Orchestration module.

- progress.py: Persisted completion tree per query and country
- dedup.py: Record deduplication
- export.py: JSON / CSV / XLSX snapshots
- retry.py: Linear-backoff retry policy
- scheduler.py: Bounded worker pool with cooperative cancellation
- orchestrator.py: Country-by-country run driver
"""

from .dedup import Deduplicator, ResultAccumulator
from .export import ExportManager
from .orchestrator import CountryResult, CountryStatus, Orchestrator, RunSummary
from .progress import ProgressStore, ProgressTree
from .retry import RetryPolicy
from .scheduler import CancellationToken, SchedulerStats, TaskOutcome, TaskScheduler
