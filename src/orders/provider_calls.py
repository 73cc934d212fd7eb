"""Bounded-time execution of payment gateway and carrier calls."""

from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any

import structlog

from orders.errors import ProviderError, ProviderTimeoutError
from payments.gateway.port import GatewayError
from shipping.carrier.port import CarrierError

logger = structlog.get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0


class ProviderCalls:
    """Runs provider calls on a shared pool and waits at most ``timeout`` seconds.

    A call that outlives the timeout keeps running in the pool; its outcome is
    unknown to the caller and it is never retried.
    """

    def __init__(self, timeout: float = DEFAULT_TIMEOUT_SECONDS, max_workers: int = 8) -> None:
        self.timeout = timeout
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="provider")

    def call(self, provider: str, operation: str, fn: Callable[..., Any], *args, **kwargs) -> Any:
        future = self._executor.submit(fn, *args, **kwargs)
        try:
            return future.result(timeout=self.timeout)
        except FutureTimeoutError as exc:
            logger.error("provider_call_timed_out", provider=provider, operation=operation, timeout=self.timeout)
            raise ProviderTimeoutError(
                f"{provider} {operation} timed out after {self.timeout:g}s; outcome unknown"
            ) from exc
        except (GatewayError, CarrierError) as exc:
            logger.warning("provider_call_failed", provider=provider, operation=operation, error=str(exc))
            raise ProviderError(f"{provider} {operation} failed: {exc}") from exc

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
