'''
**sharedsession._shared**

Pooled sessions shared by key.

A `ConnectionRegistry` maps an integer context id to a `ConnectionContext`:
one `HttpSession`, the number of open `SharedHandle`s referencing it, and a
lock. Two lock domains are involved:

- the registry lock guards membership and reference counts and is never
  held across a request
- each context's own lock guards its session's configuration and is held
  for the whole of one `SharedHandle.execute()`

Handles with the same context id therefore run one at a time, while
handles on different ids run in parallel.
'''
import collections
import contextlib
import copy
import dataclasses as dc
import logging
import re
import threading
from collections.abc import Callable, Mapping
from typing import Self

from sharedsession._config import SessionConfig
from sharedsession._errors import ConnectionClosedError, InvalidProtocolError
from sharedsession._http_session import HttpMethod, HttpSession
from sharedsession._session import ExecuteResult, Fields, HeaderPairs

logger = logging.getLogger(__name__)


SessionFactory = Callable[[str | None, HttpMethod], HttpSession]

_PROTO_RX = re.compile(r'https?://')


@dc.dataclass(slots=True)
class ConnectionContext:
    session: HttpSession
    refcount: int = 0
    lock: threading.Lock = dc.field(default_factory=threading.Lock)


class ConnectionRegistry:
    '''
    Process-wide (or test-local) pool of shared sessions keyed by context id.

    Parameters
    ----------
    session_factory : SessionFactory | None, optional
        Builds the pooled session for a new context from the first
        reference's url and method. By default an `HttpSession` built with
        `config`.
    config : SessionConfig | None, optional
        Used by the default factory.
    '''
    __slots__ = (
        '_contexts',
        '_lock',
        '_pending',
        '_session_factory',
    )

    def __init__(
        self,
        session_factory: SessionFactory | None = None,
        *,
        config: SessionConfig | None = None,
    ) -> None:
        self._contexts: dict[int, ConnectionContext] = {}
        self._lock = threading.Lock()
        self._pending: collections.deque[int] = collections.deque()
        self._session_factory: SessionFactory = session_factory or (
            lambda url, method: HttpSession(url, method, config=config)
        )

    @contextlib.contextmanager
    def _locked(self):
        with self._lock:
            while self._pending:
                self._decr(self._pending.popleft())
            yield

    # the two helpers below expect the registry lock to be held
    def _incr(self, context_id: int) -> None:
        ctx = self._contexts[context_id]
        ctx.refcount += 1
        logger.debug(f'Context {context_id} refcount -> {ctx.refcount}')

    def _decr(self, context_id: int) -> None:
        ctx = self._contexts[context_id]
        ctx.refcount -= 1
        logger.debug(f'Context {context_id} refcount -> {ctx.refcount}')

        if ctx.refcount == 0:
            del self._contexts[context_id]
            ctx.session.close()
            logger.debug(f'Erased context {context_id}')

    def open(
        self,
        context_id: int,
        url: str | None = None,
        method: HttpMethod | str = HttpMethod.GET,
    ) -> None:
        '''
        Add one reference to `context_id`, creating its context on first use.

        For an existing context the pooled session's method, and url when
        given, are updated under the context lock so the TLS check runs for
        the new url. The reference is taken first so the context cannot be
        erased while waiting for that lock.

        Raises
        ------
        InvalidProtocolError
            If `url` is neither http nor https.
        InvalidMethodError
            If `method` is not a known HTTP method.
        '''
        method = HttpMethod.coerce(method)
        with self._locked():
            ctx = self._contexts.get(context_id)
            created = ctx is None
            if ctx is None:
                ctx = ConnectionContext(session=self._session_factory(url, method))
                self._contexts[context_id] = ctx
                logger.debug(f'Created context {context_id} for {url or "<no url>"}')
            self._incr(context_id)

        if created:
            return

        try:
            with ctx.lock:
                ctx.session.set_method(method)
                if url:
                    ctx.session.set_url(url)
        except Exception:
            self.release(context_id)
            raise

    def acquire(self, context_id: int) -> None:
        with self._locked():
            self._incr(context_id)

    def release(self, context_id: int) -> None:
        with self._locked():
            self._decr(context_id)

    def release_nowait(self, context_id: int) -> None:
        '''
        Drop one reference without waiting on the registry lock.

        Used from `SharedHandle.__del__`, which can run on a thread that
        already holds the lock. When the lock is busy the release is queued
        and applied by the next registry operation.
        '''
        if self._lock.acquire(blocking=False):
            try:
                self._decr(context_id)
            finally:
                self._lock.release()
        else:
            self._pending.append(context_id)
            logger.debug(f'Deferred release of context {context_id}')

    def transfer(self, old_id: int | None, new_id: int | None) -> None:
        '''
        Move one reference from `old_id` to `new_id` in a single step.
        Either side may be None for "no reference".
        '''
        if old_id == new_id:
            return
        with self._locked():
            if new_id is not None:
                self._incr(new_id)
            if old_id is not None:
                self._decr(old_id)

    def context(self, context_id: int) -> ConnectionContext:
        with self._locked():
            ctx = self._contexts.get(context_id)
        if ctx is None:
            raise ConnectionClosedError(f'no shared context for id {context_id}')
        return ctx

    def nconnections(self, context_id: int) -> int:
        with self._locked():
            ctx = self._contexts.get(context_id)
            return 0 if ctx is None else ctx.refcount

    def __contains__(self, context_id: object) -> bool:
        with self._locked():
            return context_id in self._contexts

    def __len__(self) -> int:
        with self._locked():
            return len(self._contexts)


_default_registry = ConnectionRegistry()


def default_registry() -> ConnectionRegistry:
    return _default_registry


def nconnections(context_id: int, registry: ConnectionRegistry | None = None) -> int:
    '''
    Number of open SharedHandles referencing `context_id`, 0 if none.
    '''
    return (registry if registry is not None else _default_registry).nconnections(context_id)


def _check_url(url: str) -> str:
    if not _PROTO_RX.match(url):
        raise InvalidProtocolError(url)
    return url


def _header_list(headers: HeaderPairs) -> list[tuple[str, str]]:
    if isinstance(headers, Mapping):
        return list(headers.items())
    return list(headers)


def _field_value(fields: Fields) -> str | list[tuple[str, str]]:
    if isinstance(fields, str):
        return fields
    return list(fields)


class SharedHandle:
    '''
    A reference into a pooled context carrying its own pending request:
    url, method, headers, fields and timeout. Nothing touches the pooled
    session until `execute()`, which replays this state onto it under the
    context lock.

    Copying a handle (`copy.copy`) opens another reference to the same
    context. Closing, or garbage collecting an open handle, drops the
    reference; the context goes away with its last reference.

    Parameters
    ----------
    url : str, optional
        The request url, by default '' (none yet).
    method : HttpMethod | str, optional
        By default GET.
    context_id : int, optional
        Handles with the same id share one session, by default 0.
    registry : ConnectionRegistry | None, optional
        By default the process-wide registry.
    '''

    def __init__(
        self,
        url: str = '',
        method: HttpMethod | str = HttpMethod.GET,
        context_id: int = 0,
        *,
        registry: ConnectionRegistry | None = None,
    ) -> None:
        self._is_open = False
        self._registry = registry if registry is not None else _default_registry
        self._url = _check_url(url) if url else ''
        self._method = HttpMethod.coerce(method)
        self._headers: list[tuple[str, str]] = []
        self._fields: str | list[tuple[str, str]] = []
        self._timeout = 0
        self._context_id = context_id

        self._registry.open(context_id, self._url or None, self._method)
        self._is_open = True

    def __copy__(self) -> Self:
        clone = object.__new__(type(self))
        clone._registry = self._registry
        clone._is_open = False
        clone._copy_state(self)
        if self._is_open:
            self._registry.acquire(self._context_id)
            clone._is_open = True
        return clone

    def __deepcopy__(self, memo) -> Self:
        return copy.copy(self)

    def _copy_state(self, other: 'SharedHandle') -> None:
        self._url = other._url
        self._method = other._method
        self._headers = list(other._headers)
        self._fields = other._fields if isinstance(other._fields, str) else list(other._fields)
        self._timeout = other._timeout
        self._context_id = other._context_id

    def assign(self, other: 'SharedHandle') -> Self:
        '''
        Make this handle a copy of `other`, moving its reference from its
        current context to `other`'s.
        '''
        if self is other or (self == other and self._registry is other._registry):
            return self

        old_id = self._context_id if self._is_open else None
        new_id = other._context_id if other._is_open else None

        if other._registry is self._registry:
            self._registry.transfer(old_id, new_id)
        else:
            if new_id is not None:
                other._registry.acquire(new_id)
            if old_id is not None:
                self._registry.release(old_id)
            self._registry = other._registry

        self._is_open = other._is_open
        self._copy_state(other)
        return self

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SharedHandle):
            return NotImplemented
        return (
            self._is_open == other._is_open
            and self._url == other._url
            and self._method == other._method
            and self._headers == other._headers
            and self._fields == other._fields
            and self._timeout == other._timeout
            and self._context_id == other._context_id
        )

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        state = 'open' if self._is_open else 'closed'
        return (
            f'<SharedHandle context={self._context_id} {state} '
            f'{self._method.value} {self._url or "<no url>"}>'
        )

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def __del__(self) -> None:
        if getattr(self, '_is_open', False):
            self._is_open = False
            self._registry.release_nowait(self._context_id)

    @property
    def context_id(self) -> int:
        return self._context_id

    @property
    def is_open(self) -> bool:
        return self._is_open

    @property
    def closed(self) -> bool:
        return not self._is_open

    @property
    def url(self) -> str:
        return self._url

    @property
    def method(self) -> HttpMethod:
        return self._method

    @property
    def headers(self) -> list[tuple[str, str]]:
        return list(self._headers)

    @property
    def fields(self) -> str | list[tuple[str, str]]:
        return self._fields

    @property
    def timeout(self) -> int:
        return self._timeout

    def set_url(self, url: str) -> None:
        '''
        Set the url for the next execute. Only the scheme is checked here.

        Raises
        ------
        InvalidProtocolError
            If `url` does not start with `http://` or `https://`.
        '''
        self._url = _check_url(url)

    def set_method(self, method: HttpMethod | str) -> None:
        self._method = HttpMethod.coerce(method)

    def set_headers(self, headers: HeaderPairs) -> None:
        self._headers = _header_list(headers)

    def set_fields(self, fields: Fields) -> None:
        self._fields = _field_value(fields)

    def set_timeout(self, timeout_ms: int) -> None:
        self._timeout = max(int(timeout_ms), 0)

    def close(self) -> None:
        if not self._is_open:
            return
        self._registry.release(self._context_id)
        self._is_open = False

    def execute(self, return_headers: bool = False) -> ExecuteResult:
        '''
        Replay this handle's pending request onto the pooled session and
        perform it while holding the context lock.

        Fields are sent once: they are cleared from the handle whether or
        not they were staged. A GET never carries fields.

        Parameters
        ----------
        return_headers : bool, optional
            Collect the raw response headers, by default False

        Returns
        -------
        ExecuteResult

        Raises
        ------
        ConnectionClosedError
            If the handle has been closed.
        TransportError
            If the request fails.
        '''
        if not self._is_open:
            raise ConnectionClosedError()

        ctx = self._registry.context(self._context_id)

        with ctx.lock:
            session = ctx.session
            session.set_url(self._url)

            session.reset_headers()
            if self._headers:
                session.add_headers(self._headers)

            session.set_method(self._method)
            if self._method is not HttpMethod.GET and self._fields:
                session.set_fields(self._fields)
            else:
                session.clear_fields()
            self._fields = []

            session.set_timeout(self._timeout)

            logger.debug(
                f'Executing {self._method.value} {self._url} on context {self._context_id}'
            )
            return session.execute(return_headers)