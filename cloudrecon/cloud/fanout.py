"""Service x region fan-out with per-unit deadlines and partial-result aggregation.

A provider describes what it can list as a set of :class:`Service` entries.
``enumerate`` picks the services for a resource type, expands regional ones
across the active regions, runs every unit on a thread pool and folds the
outcomes into ``{result_key: [records...], "errors": [...]}``.
"""

from __future__ import annotations

import math
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from cloudrecon.core.exceptions import NoResultsError
from cloudrecon.core.logging import get_logger

logger = get_logger(__name__)

Lister = Callable[[Optional[str]], List[Dict[str, Any]]]


@dataclass(frozen=True)
class Service:
    """One listable resource family.

    ``label`` prefixes error messages (``"EC2 (us-east-1): ..."``); global
    services are invoked once with ``region=None`` and are not region-stamped.
    """

    key: str
    label: str
    lister: Lister
    regional: bool = True
    timeout: float = 10.0


@dataclass(frozen=True)
class Unit:
    service: Service
    region: Optional[str]

    @property
    def name(self) -> str:
        if self.region is None:
            return self.service.label
        return f"{self.service.label} ({self.region})"


def plan_units(services: Iterable[Service], regions: Sequence[str]) -> List[Unit]:
    """Expand services into invocation units, preserving declaration order."""
    units: List[Unit] = []
    for service in services:
        if service.regional:
            units.extend(Unit(service, region) for region in regions)
        else:
            units.append(Unit(service, None))
    return units


class _Clock:
    """Start and finish times of one unit, written by the pool thread."""

    def __init__(self):
        self.started = threading.Event()
        self.started_at = 0.0
        self.finished_at: Optional[float] = None


class FanOut:
    """Runs units in parallel and aggregates ``(ok, records)`` / ``(err, message)``."""

    def __init__(self, max_workers: int = 8, provider: str = ""):
        self.max_workers = max(1, max_workers)
        self.provider = provider

    def run(self, units: Sequence[Unit]) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        for unit in units:
            result.setdefault(unit.service.key, [])
        if not units:
            return result

        errors: List[str] = []
        succeeded = 0
        clocks = [_Clock() for _ in units]
        workers = min(self.max_workers, len(units))
        # Upper bound on how long a unit may sit in the pool queue before it starts.
        longest = max(unit.service.timeout for unit in units)
        queue_deadline = time.monotonic() + longest * (math.ceil(len(units) / workers) + 1)

        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="fanout")
        try:
            futures = [
                executor.submit(self._invoke, unit, clocks[index])
                for index, unit in enumerate(units)
            ]
            for index, (unit, future) in enumerate(zip(units, futures)):
                try:
                    records = self._await(future, unit, clocks[index], queue_deadline)
                except FutureTimeoutError:
                    future.cancel()
                    errors.append(f"{unit.name}: timed out after {unit.service.timeout:g}s")
                    self._warn(unit, "timeout")
                    continue
                except Exception as exc:
                    errors.append(f"{unit.name}: {exc}")
                    self._warn(unit, str(exc))
                    continue

                succeeded += 1
                for record in records or []:
                    if unit.region is not None and isinstance(record, dict):
                        record = dict(record)
                        record["region"] = unit.region
                    result[unit.service.key].append(record)
        finally:
            # Timed-out units keep their thread until the SDK's own timeout fires.
            executor.shutdown(wait=False, cancel_futures=True)

        if succeeded == 0:
            raise NoResultsError(errors=errors)
        if errors:
            result["errors"] = errors
        return result

    @staticmethod
    def _invoke(unit: Unit, clock: _Clock) -> List[Dict[str, Any]]:
        clock.started_at = time.monotonic()
        clock.started.set()
        try:
            return unit.service.lister(unit.region)
        finally:
            clock.finished_at = time.monotonic()

    @staticmethod
    def _await(future, unit: Unit, clock: _Clock, queue_deadline: float):
        """Records of ``unit``, or TimeoutError once its own deadline has passed.

        The deadline runs from when the unit started, not from when the
        collector reaches it; a unit that finished late still counts as
        timed out.
        """
        if not clock.started.wait(timeout=max(queue_deadline - time.monotonic(), 0)):
            raise FutureTimeoutError()
        deadline = clock.started_at + unit.service.timeout
        records = future.result(timeout=max(deadline - time.monotonic(), 0))
        if clock.finished_at is not None and clock.finished_at > deadline:
            raise FutureTimeoutError()
        return records

    def _warn(self, unit: Unit, error: str) -> None:
        logger.warning(
            "Enumeration unit failed",
            data={
                "provider": self.provider,
                "service": unit.service.label,
                "region": unit.region,
                "error": error,
            },
        )
