'''
**sharedsession._session**

`Session` owns exactly one `TransportHandle` and everything hanging off it:
the header list and the `OptionStore`. It cannot be copied; ownership can be
handed to a new object with `move()`, which leaves the source closed.
'''
import datetime as dt
import io
import logging
from collections.abc import Iterable, Mapping
from typing import NamedTuple, Self

from sharedsession import _codecs
from sharedsession._config import SessionConfig
from sharedsession._errors import (
    OptionRejectedError,
    SessionClosedError,
    TransportError,
)
from sharedsession._options import Option, OptionStore, dump_options, stringify_option_value
from sharedsession._transport import TransportHandle, write_to_target

logger = logging.getLogger(__name__)


HeaderPairs = Iterable[tuple[str, str]] | Mapping[str, str]
Fields = str | Iterable[tuple[str, str]]


class ExecuteResult(NamedTuple):
    '''
    The outcome of one request.

    `completed_at` is taken as soon as the transport returns, before the
    status code is read. `headers` is the raw response header text and is
    empty unless headers were requested.
    '''
    status: int
    body: bytes
    headers: str
    completed_at: dt.datetime

    @property
    def text(self) -> str:
        return self.body.decode('utf-8', errors='replace')

    def header_pairs(self) -> list[tuple[str, str]]:
        return _codecs.parse_header_block(self.headers)


def _iter_pairs(headers: HeaderPairs) -> Iterable[tuple[str, str]]:
    if isinstance(headers, Mapping):
        return headers.items()
    return headers


class Session:
    __slots__ = (
        '_config',
        '_handle',
        '_header_lines',
        '_options',
    )

    def __init__(
        self,
        url: str | None = None,
        *,
        config: SessionConfig | None = None,
    ) -> None:
        self._config: SessionConfig = config or SessionConfig()
        self._handle: TransportHandle | None = TransportHandle(
            transport=self._config.transport,
            http2=self._config.http2,
            trust_env=self._config.trust_env,
        )
        self._header_lines: list[str] | None = None
        self._options = OptionStore()

        if url is not None:
            self.set_url(url)

    def _require_handle(self) -> TransportHandle:
        if self._handle is None:
            raise SessionClosedError()
        return self._handle

    @property
    def closed(self) -> bool:
        return self._handle is None

    def __bool__(self) -> bool:
        return not self.closed

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def __copy__(self):
        raise TypeError(f'{type(self).__name__} owns its transport handle and cannot be copied')

    def __deepcopy__(self, memo):
        raise TypeError(f'{type(self).__name__} owns its transport handle and cannot be copied')

    def __eq__(self, other: object) -> bool:
        '''
        Sessions are equal only when they share the same underlying resources.
        '''
        if not isinstance(other, Session):
            return NotImplemented
        if self is other:
            return True
        return self._handle is not None and (
            self._handle is other._handle
            and self._header_lines is other._header_lines
            and self._options is other._options
        )

    __hash__ = object.__hash__

    def __repr__(self) -> str:
        state = 'closed' if self.closed else self.url() or 'open'
        return f'<{type(self).__name__} {state}>'

    def _adopt(self, other: 'Session') -> None:
        self._config = other._config
        self._handle = other._handle
        self._header_lines = other._header_lines
        self._options = other._options

        other._handle = None
        other._header_lines = None
        other._options = OptionStore()

    def move(self) -> Self:
        '''
        Transfer the handle, header list and option record into a new
        session of the same type. This session is closed afterwards.

        Returns
        -------
        Self
        '''
        moved = object.__new__(type(self))
        moved._adopt(self)
        return moved

    def move_from(self, other: Self) -> Self:
        '''
        Close this session's resources and take over `other`'s. Moving a
        session onto itself is a no-op.
        '''
        if self == other:
            return self
        self.close()
        self._adopt(other)
        return self

    def set_option(self, option: Option, value: object) -> None:
        '''
        Apply an option to the transport handle and record it.

        Parameters
        ----------
        option : Option
        value : object

        Raises
        ------
        SessionClosedError
            If the session has been closed.
        OptionRejectedError
            If the transport does not accept the value.
        '''
        handle = self._require_handle()
        if not handle.set_option(option, value):
            raise OptionRejectedError(option, stringify_option_value(value))
        as_str = self._options.record(option, value)
        logger.debug(f'Applied option {option.name}={as_str}')

    def option_strings(self) -> dict[Option, str]:
        return self._options.snapshot()

    def dump_options(self) -> str:
        return dump_options(self._options, lambda: list(self._header_lines or []))

    def execute(self, return_headers: bool = False) -> ExecuteResult:
        '''
        Perform the configured request, blocking until it completes.

        Parameters
        ----------
        return_headers : bool, optional
            Collect the raw response headers too, by default False

        Returns
        -------
        ExecuteResult
            _(status, body, headers, completed_at)_

        Raises
        ------
        SessionClosedError
            If the session has been closed.
        TransportError
            If the request fails at the transport layer.
        '''
        handle = self._require_handle()

        body_sink = io.BytesIO()
        header_sink = io.BytesIO()
        self.set_option(Option.WRITE_FUNCTION, write_to_target)
        self.set_option(Option.WRITE_DATA, body_sink)

        if return_headers:
            self.set_option(Option.HEADER_FUNCTION, write_to_target)
            self.set_option(Option.HEADER_DATA, header_sink)
        elif Option.HEADER_DATA in self._options:
            handle.unset(Option.HEADER_DATA)
            self._options.discard(Option.HEADER_DATA)

        try:
            handle.perform()
        except TransportError as exc:
            logger.warning(f'Request to {self.url()} failed: {exc}')
            raise
        completed_at = dt.datetime.now(dt.timezone.utc)

        status = handle.response_code()
        logger.debug(f'Request to {self.url()} finished with status {status}')

        return ExecuteResult(
            status=status,
            body=body_sink.getvalue(),
            headers=header_sink.getvalue().decode('latin-1') if return_headers else '',
            completed_at=completed_at,
        )

    def close(self) -> None:
        if self._header_lines is not None:
            TransportHandle.free_header_list(self._header_lines)
            self._header_lines = None
        if self._handle is not None:
            self._handle.free()
            self._handle = None
        self._options.clear()

    def set_url(self, url: str) -> None:
        '''
        Set the request url. A plain session passes any scheme through to
        the transport; only `HttpSession.set_url` restricts it to http and
        https.
        '''
        self.set_option(Option.URL, url)

    def url(self) -> str:
        return self._options.get(Option.URL) or ''

    def set_ssl_verify(self, on: bool) -> None:
        self.set_option(Option.VERIFY_PEER, 1 if on else 0)
        self.set_option(Option.VERIFY_HOST, 2 if on else 0)

    def set_ssl_verify_using_ca_bundle(self, path: str) -> None:
        self.set_ssl_verify(True)
        self.set_option(Option.CA_INFO, path)

    def set_ssl_verify_using_ca_certs(self, directory: str) -> None:
        self.set_ssl_verify(True)
        self.set_option(Option.CA_PATH, directory)

    def set_encoding(self, encoding: str) -> None:
        self.set_option(Option.ACCEPT_ENCODING, encoding)

    def set_keepalive(self, on: bool) -> None:
        self.set_option(Option.TCP_KEEPALIVE, 1 if on else 0)

    def set_timeout(self, timeout_ms: int) -> None:
        '''
        Set the whole-request timeout in milliseconds. Zero or a negative
        value means no timeout.
        '''
        self.set_option(Option.TIMEOUT_MS, max(int(timeout_ms), 0))

    def timeout(self) -> int:
        return int(self._options.get(Option.TIMEOUT_MS) or 0)

    def add_headers(self, headers: HeaderPairs) -> None:
        '''
        Append `name: value` lines to the header list and apply the list.

        Parameters
        ----------
        headers : Iterable[tuple[str, str]] | Mapping[str, str]

        Raises
        ------
        SessionClosedError
            If the session has been closed.
        OptionRejectedError
            If a line cannot be added to the list.
        '''
        self._require_handle()
        pairs = list(_iter_pairs(headers))
        if not pairs:
            return

        for name, value in pairs:
            line = _codecs.format_header_line(name, value)
            lines = TransportHandle.append_header(self._header_lines, line)
            if lines is None:
                raise OptionRejectedError(
                    Option.HTTP_HEADER,
                    line,
                    f'failed trying to add header: {line!r}',
                )
            self._header_lines = lines

        self.set_option(Option.HTTP_HEADER, self._header_lines)

    def headers(self) -> list[tuple[str, str]]:
        '''
        The headers added so far, in order.

        Raises
        ------
        MalformedHeaderError
            If a stored line has no `": "` separator.
        '''
        self._require_handle()
        return [_codecs.parse_header_line(line) for line in self._header_lines or []]

    def has_headers(self) -> bool:
        return bool(self._header_lines)

    def reset_headers(self) -> None:
        handle = self._require_handle()
        TransportHandle.free_header_list(self._header_lines)
        self._header_lines = None
        handle.unset(Option.HTTP_HEADER)
        self._options.discard(Option.HTTP_HEADER)

    def set_fields(self, fields: Fields) -> None:
        '''
        Stage a request body of form fields, given either as a raw
        `a=1&b=2` string or as name/value pairs. Empty input is ignored.
        '''
        self._require_handle()
        if not isinstance(fields, str):
            fields = _codecs.encode_fields(fields)
        if fields:
            self.set_option(Option.POST_FIELDS, fields)

    def clear_fields(self) -> None:
        handle = self._require_handle()
        handle.unset(Option.POST_FIELDS)
        self._options.discard(Option.POST_FIELDS)

    def reset_options(self) -> None:
        '''
        Drop the header list and every applied option, returning the
        transport handle to its defaults.
        '''
        self.reset_headers()
        self._require_handle().reset()
        self._options.clear()
