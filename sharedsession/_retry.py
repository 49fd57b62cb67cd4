'''
simple caller-side retry policy for session executes. Sessions and
shared handles never retry on their own; wrap the call with this when
retrying makes sense for the endpoint.

Raises
------
NoAttemptsLeftError
    _raised from previous exception when all attempts are exhausted_
'''

import functools
import logging
import random
import time
from collections.abc import Callable
from typing import ParamSpec, TypeVar

from sharedsession._errors import SessionError, TransportError, TransportErrorCode

P = ParamSpec("P")
R = TypeVar("R")

logger = logging.getLogger(__name__)


class NoAttemptsLeftError(SessionError):
    ...


class retry_policy:

    _RETRYABLE_CODES = frozenset({
        TransportErrorCode.COULDNT_CONNECT,
        TransportErrorCode.OPERATION_TIMEDOUT,
        TransportErrorCode.SEND_ERROR,
        TransportErrorCode.RECV_ERROR,
        TransportErrorCode.PROTOCOL_ERROR,
        TransportErrorCode.COULDNT_RESOLVE_PROXY,
    })

    def __init__(
        self,
        *,
        attempts: int = 3,
        delay: float = 0.25,
        jitter: float = 0.1,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        '''
        Parameters
        ----------
        attempts : int, optional
            The maximum number of attempts, by default 3
        delay : float, optional
            The base delay between attempts, by default 0.25
        jitter : float, optional
            The jitter factor to apply to the delay, by default 0.1
        sleep : Callable[[float], None], optional
            Used to wait between attempts, by default time.sleep
        '''
        if attempts < 1:
            raise ValueError('attempts must be at least 1')
        self.attempts: int = attempts
        self.delay: float = delay
        self.jitter: float = jitter
        self._sleep = sleep

    def get_timeout(self, attempt_no: int) -> float:
        base = self.delay * attempt_no

        if self.jitter:
            j = base * self.jitter
            base += random.uniform(-j, j)

        return max(0.0, base)

    def is_retryable(self, exc: TransportError) -> bool:
        return exc.code in self._RETRYABLE_CODES

    def call_with_retries(
        self,
        func: Callable[P, R],
        *args: P.args,
        **kwargs: P.kwargs,
    ) -> R:
        last_exc: TransportError | None = None
        for attempt_no in range(1, self.attempts + 1):
            try:
                return func(*args, **kwargs)
            except TransportError as exc:
                if not self.is_retryable(exc):
                    raise
                if attempt_no == self.attempts:
                    raise NoAttemptsLeftError(
                        f"Failed after {self.attempts} attempts: {exc}"
                    ) from exc
                last_exc = exc
                wait = self.get_timeout(attempt_no)
                logger.warning(
                    f'Attempt {attempt_no}/{self.attempts} failed ({exc}), retrying in {wait:.2f}s'
                )
                self._sleep(wait)

        raise NoAttemptsLeftError(
            f"Failed after {self.attempts} attempts: {last_exc}"
        ) from last_exc

    def __call__(self, func: Callable[P, R]) -> Callable[P, R]:

        @functools.wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            return self.call_with_retries(func, *args, **kwargs)

        return wrapper
