"""Metrics capture around store invocations.

Measures wall-clock time, process CPU time and resident-memory growth for
each store call. Latency cannot be observed separately from the driver, so
it is estimated as a fixed share of execution time and flagged as such.
"""

import asyncio
import logging
import os
import time
from collections.abc import Awaitable, Callable

import psutil

from .errors import StoreExecutionError, StoreUnavailableError
from .models import ExecutionMetrics, Measurement, StoreResult

logger = logging.getLogger(__name__)


class MetricsRecorder:
    """Wraps store calls and reports what they cost.

    Failures and timeouts never propagate: they come back as a failed
    Measurement with zeroed metrics. Cancellation does propagate, so a
    cancelled request leaves nothing behind to record.
    """

    def __init__(self, latency_ratio: float = 0.3):
        if not 0.0 <= latency_ratio <= 1.0:
            raise ValueError(f"latency_ratio must be between 0 and 1, got {latency_ratio}")
        self.latency_ratio = latency_ratio
        self._process = psutil.Process(os.getpid())

    def _rss_bytes(self) -> int:
        try:
            return self._process.memory_info().rss
        except (psutil.NoSuchProcess, psutil.AccessDenied, OSError) as e:
            logger.debug(f"Unable to read process memory: {e}")
            return 0

    async def measure(
        self,
        store_name: str,
        call: Callable[[], Awaitable[StoreResult]],
        timeout: float | None = None,
    ) -> Measurement:
        """Run one store call and measure it.

        Args:
            store_name: Store being called, for logs and error messages.
            call: Zero-argument coroutine factory performing the call.
            timeout: Seconds to wait before treating the store as unavailable.

        Returns:
            Measurement holding the store's result and the observed metrics.
        """
        start_rss = self._rss_bytes()
        start_cpu = time.process_time()
        start = time.perf_counter()

        try:
            result = await asyncio.wait_for(call(), timeout=timeout)
        except TimeoutError:
            error = StoreUnavailableError(store_name, f"no response within {timeout}s")
            logger.warning(str(error), extra={"store": store_name})
            return Measurement(
                store=store_name,
                result=StoreResult(success=False, error=str(error)),
                metrics=ExecutionMetrics.zero(),
            )
        except Exception as e:
            error = StoreExecutionError(store_name, str(e) or type(e).__name__)
            logger.warning(str(error), extra={"store": store_name})
            return Measurement(
                store=store_name,
                result=StoreResult(success=False, error=str(error)),
                metrics=ExecutionMetrics.zero(),
            )

        elapsed_ms = (time.perf_counter() - start) * 1000.0
        cpu_ms = (time.process_time() - start_cpu) * 1000.0
        memory_delta = max(self._rss_bytes() - start_rss, 0)

        metrics = ExecutionMetrics(
            execution_time_ms=elapsed_ms,
            latency_ms=elapsed_ms * self.latency_ratio,
            cpu_time_ms=max(cpu_ms, 0.0),
            memory_used_bytes=memory_delta,
            latency_estimated=True,
        )
        return Measurement(store=store_name, result=result, metrics=metrics)
