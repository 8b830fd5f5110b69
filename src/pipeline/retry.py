from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, Optional, TypeVar

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)


T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry with linear backoff (``base_delay_s * attempt``).

    ``sleep`` is injectable so tests run without waiting.
    """
    max_attempts: int = 3
    base_delay_s: float = 2.0
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False, compare=False)

    def backoff(self, attempt: int) -> float:
        return self.base_delay_s * attempt

    def retrying(self, on_retry: Optional[Callable[[int, Exception], None]] = None) -> Retrying:
        def _before_sleep(state: RetryCallState) -> None:
            if on_retry is None or state.outcome is None:
                return
            try:
                on_retry(state.attempt_number, state.outcome.exception())
            except Exception:
                pass

        return Retrying(
            stop=stop_after_attempt(max(1, int(self.max_attempts))),
            wait=wait_incrementing(start=self.base_delay_s, increment=self.base_delay_s),
            retry=retry_if_exception_type(Exception),
            sleep=self.sleep,
            before_sleep=_before_sleep,
            reraise=True,
        )

    def call(
        self,
        fn: Callable[[], T],
        on_retry: Optional[Callable[[int, Exception], None]] = None,
    ) -> T:
        """Call ``fn`` until it succeeds; re-raise the last error on exhaustion."""
        return self.retrying(on_retry)(fn)
