"""Step timing and temp-table bookkeeping for the hourly SOFA pipeline.

Provides:
- StepTimer: Collects per-step wall-clock timing via context manager
- NoOpTimer: Does nothing; used when profiling is off
- _materialize / _cleanup_temp_tables: Temp tables for relations read by
  several downstream queries. Each pipeline call owns its own registry list.
"""
from __future__ import annotations

import itertools
import time
from contextlib import contextmanager
from dataclasses import dataclass, field

import duckdb
from duckdb import DuckDBPyRelation

from sofapy.utils.logging_config import get_logger

logger = get_logger('utils.sofa.perf')

_TEMP_TABLE_COUNTER = itertools.count()


def _materialize(rel: DuckDBPyRelation, prefix: str, registry: list[str]) -> DuckDBPyRelation:
    """Evaluate ``rel`` once into a temp table recorded in ``registry``."""
    name = f"_sofapy_{prefix}_{next(_TEMP_TABLE_COUNTER)}"
    duckdb.execute(f"CREATE OR REPLACE TEMP TABLE {name} AS FROM rel")
    registry.append(name)
    return duckdb.table(name)


def _cleanup_temp_tables(registry: list[str]):
    """Drop the temp tables recorded in ``registry``."""
    while registry:
        name = registry.pop()
        try:
            duckdb.execute(f"DROP TABLE IF EXISTS {name}")
        except duckdb.Error as e:
            logger.warning(f"Could not drop temp table {name}: {e}")


@dataclass
class StepTimer:
    """Per-step wall-clock timings.

    Usage:
        timer = StepTimer()
        with timer.step("timeline"):
            slots_rel = _build_hourly_timeline(...)
        print(timer.report(cohort_size=n_stays))
    """

    results: list[dict] = field(default_factory=list)
    children: dict[str, StepTimer] = field(default_factory=dict)

    @contextmanager
    def step(self, name: str):
        start = time.perf_counter()
        try:
            yield
        finally:
            self.results.append({
                'step': name,
                'elapsed_s': time.perf_counter() - start,
            })

    def child(self, name: str) -> StepTimer:
        """Timer for the sub-steps of step ``name``; reported under it."""
        return self.children.setdefault(name, StepTimer())

    @property
    def total(self) -> float:
        return sum(r['elapsed_s'] for r in self.results)

    def report(self, cohort_size: int | None = None) -> str:
        lines = [f"{'Step':<30} {'Time (s)':<12} {'% Total':<10}", "-" * 52]
        total = self.total
        shown = set()
        for r in self.results:
            pct = r['elapsed_s'] / total * 100 if total > 0 else 0
            lines.append(f"{r['step']:<30} {r['elapsed_s']:<12.3f} {pct:<10.1f}")
            sub = self.children.get(r['step'])
            if sub is not None and r['step'] not in shown:
                shown.add(r['step'])
                for s in sub.results:
                    lines.append(f"{'  ' + s['step']:<30} {s['elapsed_s']:<12.3f}")
        lines.append("-" * 52)
        lines.append(f"{'TOTAL':<30} {total:<12.3f}")
        if cohort_size:
            lines.append(f"{'Time per stay (ms)':<30} {total / cohort_size * 1000:<12.2f}")
        return "\n".join(lines)


class NoOpTimer:
    """Stand-in for StepTimer when profiling is off."""

    @property
    def results(self) -> list:
        return []

    @contextmanager
    def step(self, name: str):
        yield

    def child(self, name: str) -> NoOpTimer:
        return self

    @property
    def total(self) -> float:
        return 0.0

    def report(self, cohort_size: int | None = None) -> str:
        return "Profiling disabled"
