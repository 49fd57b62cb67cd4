'''
**sharedsession._transport**

`TransportHandle` is the "native handle" every Session owns. It exposes a
small set-option / perform / response-code / free contract and carries out
the request with an `httpx.Client` it builds lazily from the applied options.
Options that affect the connection itself (TLS verification, trust store,
keep-alive) mark the client stale so the next `perform()` rebuilds it.
'''
import contextlib
import logging
import socket
import ssl
from collections.abc import Callable
from typing import BinaryIO

import httpx

from sharedsession._errors import TransportError, TransportErrorCode
from sharedsession._options import Option

logger = logging.getLogger(__name__)


def default_socket_options() -> list[tuple]:
    '''
    cross platform TCP keep-alive socket options, applied when the
    `TCP_KEEPALIVE` option is on

    Returns
    -------
    list[SockOpt]
    '''
    opts = []

    if hasattr(socket, "SO_KEEPALIVE"):
        opts.append((socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1))

    if hasattr(socket, "TCP_KEEPIDLE"):
        opts.append((socket.IPPROTO_TCP, socket.TCP_KEEPIDLE, 60))

    if hasattr(socket, "TCP_KEEPINTVL"):
        opts.append((socket.IPPROTO_TCP, socket.TCP_KEEPINTVL, 60))

    return opts


def build_ssl_context(
    *,
    verify_peer: bool = True,
    verify_host: bool = True,
    ca_info: str | None = None,
    ca_path: str | None = None,
) -> ssl.SSLContext:
    '''
    creates the SSL context for the handle's client from the verification
    options. With verification on, the peer certificate is checked against
    `ca_info` / `ca_path` when given, otherwise the system trust store.

    Parameters
    ----------
    verify_peer : bool, optional
        Check the peer certificate, by default True
    verify_host : bool, optional
        Check the certificate's hostname, by default True
    ca_info : str | None, optional
        Path to a CA bundle file
    ca_path : str | None, optional
        Path to a directory of CA certificates

    Returns
    -------
    ssl.SSLContext
    '''
    if not verify_peer:
        ctx = ssl.create_default_context(purpose=ssl.Purpose.SERVER_AUTH)
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
        return ctx

    ctx = ssl.create_default_context(
        purpose=ssl.Purpose.SERVER_AUTH,
        cafile=ca_info or None,
        capath=ca_path or None,
    )
    ctx.minimum_version = ssl.TLSVersion.TLSv1_2
    ctx.verify_mode = ssl.CERT_REQUIRED
    ctx.check_hostname = verify_host

    with contextlib.suppress(NotImplementedError):
        ctx.set_alpn_protocols(["http/1.1"])

    return ctx


_ERROR_CODES: tuple[tuple[type[Exception], TransportErrorCode], ...] = (
    (httpx.TimeoutException, TransportErrorCode.OPERATION_TIMEDOUT),
    (httpx.ProxyError, TransportErrorCode.COULDNT_RESOLVE_PROXY),
    (httpx.UnsupportedProtocol, TransportErrorCode.UNSUPPORTED_PROTOCOL),
    (httpx.ConnectError, TransportErrorCode.COULDNT_CONNECT),
    (httpx.ReadError, TransportErrorCode.RECV_ERROR),
    (httpx.WriteError, TransportErrorCode.SEND_ERROR),
    (httpx.ProtocolError, TransportErrorCode.PROTOCOL_ERROR),
    (httpx.DecodingError, TransportErrorCode.BAD_CONTENT_ENCODING),
    (httpx.TooManyRedirects, TransportErrorCode.TOO_MANY_REDIRECTS),
)


def error_code_for(exc: Exception) -> TransportErrorCode:
    '''
    Map an httpx exception onto a `TransportErrorCode`.

    Parameters
    ----------
    exc : Exception

    Returns
    -------
    TransportErrorCode
    '''
    if isinstance(exc, httpx.ConnectError) and 'SSL' in str(exc):
        return TransportErrorCode.SSL_CONNECT_ERROR

    for exc_type, code in _ERROR_CODES:
        if isinstance(exc, exc_type):
            return code
    return TransportErrorCode.UNKNOWN


def _is_flag(value: object) -> bool:
    return isinstance(value, bool) or value in (0, 1)


def _is_text(value: object) -> bool:
    return isinstance(value, str)


def _is_verb(value: object) -> bool:
    return isinstance(value, str) and bool(value) and not any(c.isspace() for c in value)


def _is_timeout(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def _is_writer_or_none(value: object) -> bool:
    return value is None or callable(getattr(value, 'write', None))


def _is_callable_or_none(value: object) -> bool:
    return value is None or callable(value)


def _is_header_list(value: object) -> bool:
    return value is None or (
        isinstance(value, list) and all(isinstance(v, str) for v in value)
    )


_VALIDATORS: dict[Option, Callable[[object], bool]] = {
    Option.URL: _is_text,
    Option.VERIFY_PEER: _is_flag,
    Option.VERIFY_HOST: lambda v: isinstance(v, bool) or v in (0, 2),
    Option.CA_INFO: _is_text,
    Option.CA_PATH: _is_text,
    Option.ACCEPT_ENCODING: _is_text,
    Option.TCP_KEEPALIVE: _is_flag,
    Option.HTTP_GET: lambda v: v is True or v == 1,
    Option.POST: lambda v: v is True or v == 1,
    Option.CUSTOM_REQUEST: _is_verb,
    Option.POST_FIELDS: _is_text,
    Option.HTTP_HEADER: _is_header_list,
    Option.TIMEOUT_MS: _is_timeout,
    Option.WRITE_FUNCTION: _is_callable_or_none,
    Option.WRITE_DATA: _is_writer_or_none,
    Option.HEADER_FUNCTION: _is_callable_or_none,
    Option.HEADER_DATA: _is_writer_or_none,
}

_CONNECTION_OPTIONS = frozenset({
    Option.VERIFY_PEER,
    Option.VERIFY_HOST,
    Option.CA_INFO,
    Option.CA_PATH,
    Option.TCP_KEEPALIVE,
})


def write_to_target(chunk: bytes, target: BinaryIO) -> int:
    written = target.write(chunk)
    return len(chunk) if written is None else written


class TransportHandle:
    '''
    One configurable request handle. Not thread safe; callers serialize
    access (Session executes one request at a time, SharedHandle holds the
    context lock).
    '''
    __slots__ = (
        '_transport',
        '_http2',
        '_trust_env',
        '_client',
        '_client_stale',
        '_settings',
        '_response_code',
        '_freed',
    )

    def __init__(
        self,
        *,
        transport: httpx.BaseTransport | None = None,
        http2: bool = False,
        trust_env: bool = False,
    ) -> None:
        self._transport = transport
        self._http2 = http2
        self._trust_env = trust_env
        self._client: httpx.Client | None = None
        self._client_stale = True
        self._settings: dict[Option, object] = {}
        self._response_code = 0
        self._freed = False

    def set_option(self, option: Option, value: object) -> bool:
        '''
        Apply one option. Returns False when the option or its value is
        not acceptable, leaving the handle unchanged.
        '''
        validator = _VALIDATORS.get(option)
        if self._freed or validator is None or not validator(value):
            return False

        if option is Option.HTTP_GET or option is Option.POST:
            self._settings.pop(Option.CUSTOM_REQUEST, None)
            self._settings.pop(Option.HTTP_GET, None)
            self._settings.pop(Option.POST, None)

        self._settings[option] = value
        if option in _CONNECTION_OPTIONS:
            self._client_stale = True
        return True

    def unset(self, option: Option) -> None:
        '''
        Return a single option to its default.
        '''
        if self._settings.pop(option, None) is not None and option in _CONNECTION_OPTIONS:
            self._client_stale = True

    @staticmethod
    def append_header(lines: list[str] | None, line: str) -> list[str] | None:
        '''
        Append a header line to a header list, creating the list when
        `lines` is None. Returns None when the line cannot be stored.
        '''
        if '\r' in line or '\n' in line:
            return None
        if lines is None:
            lines = []
        lines.append(line)
        return lines

    @staticmethod
    def free_header_list(lines: list[str] | None) -> None:
        if lines is not None:
            lines.clear()

    @property
    def method(self) -> str:
        if custom := self._settings.get(Option.CUSTOM_REQUEST):
            return str(custom)
        if self._settings.get(Option.POST):
            return 'POST'
        if self._settings.get(Option.HTTP_GET):
            return 'GET'
        if Option.POST_FIELDS in self._settings:
            return 'POST'
        return 'GET'

    def _build_client(self) -> httpx.Client:
        if self._transport is not None:
            return httpx.Client(
                transport=self._transport,
                follow_redirects=False,
                trust_env=self._trust_env,
            )

        verify_peer = bool(self._settings.get(Option.VERIFY_PEER, True))
        verify_host = bool(self._settings.get(Option.VERIFY_HOST, True))
        keepalive = bool(self._settings.get(Option.TCP_KEEPALIVE, False))

        transport = httpx.HTTPTransport(
            verify=build_ssl_context(
                verify_peer=verify_peer,
                verify_host=verify_host,
                ca_info=self._settings.get(Option.CA_INFO),  # type: ignore[arg-type]
                ca_path=self._settings.get(Option.CA_PATH),  # type: ignore[arg-type]
            ),
            http2=self._http2,
            trust_env=self._trust_env,
            socket_options=default_socket_options() if keepalive else None,
        )
        return httpx.Client(
            transport=transport,
            follow_redirects=False,
            trust_env=self._trust_env,
        )

    def _ensure_client(self) -> httpx.Client:
        if self._client is not None:
            # an injected transport ignores the connection options
            if not self._client_stale or self._transport is not None:
                return self._client
            self._client.close()

        logger.debug('Building transport client')
        self._client = self._build_client()
        self._client_stale = False
        return self._client

    def _request_headers(self, has_body: bool) -> httpx.Headers:
        headers = httpx.Headers()

        encoding = self._settings.get(Option.ACCEPT_ENCODING)
        if encoding is not None:
            headers['Accept-Encoding'] = str(encoding) or 'gzip, deflate'

        if has_body:
            headers['Content-Type'] = 'application/x-www-form-urlencoded'

        for line in self._settings.get(Option.HTTP_HEADER) or []:
            name, _, value = line.partition(':')
            name, value = name.strip(), value.strip()
            if not name:
                continue
            if value:
                headers[name] = value
            elif name in headers:
                del headers[name]

        return headers

    def _timeout(self) -> httpx.Timeout:
        timeout_ms = self._settings.get(Option.TIMEOUT_MS, 0)
        if not timeout_ms:
            return httpx.Timeout(None)
        return httpx.Timeout(int(timeout_ms) / 1000)  # type: ignore[call-overload]

    def _deliver(
        self,
        chunk: bytes,
        function: Option,
        target: Option,
    ) -> None:
        sink = self._settings.get(target)
        if sink is None:
            return
        write = self._settings.get(function) or write_to_target
        if write(chunk, sink) != len(chunk):  # type: ignore[operator]
            raise TransportError(
                TransportErrorCode.WRITE_ERROR,
                'failed writing received data to the output target',
            )

    def perform(self) -> None:
        '''
        Perform the configured request, blocking until the response body
        has been delivered to the write target.

        Raises
        ------
        TransportError
            If no URL is set, the request fails, or a write target refuses data.
        '''
        url = self._settings.get(Option.URL)
        if not url:
            raise TransportError(TransportErrorCode.UNSUPPORTED_PROTOCOL, 'no URL set')

        method = self.method
        body = self._settings.get(Option.POST_FIELDS)
        content = str(body).encode('utf-8') if body is not None and method != 'GET' else None

        client = self._ensure_client()
        try:
            request = client.build_request(
                method,
                str(url),
                headers=self._request_headers(content is not None),
                content=content,
                timeout=self._timeout(),
            )
        except httpx.InvalidURL as exc:
            raise TransportError(TransportErrorCode.UNSUPPORTED_PROTOCOL, str(exc)) from exc

        logger.debug(f'Sending request: {method} {url}')
        try:
            response = client.send(request, stream=True)
        except httpx.RequestError as exc:
            raise TransportError(error_code_for(exc), str(exc) or type(exc).__name__) from exc

        try:
            self._response_code = response.status_code
            self._deliver(
                _header_block(response),
                Option.HEADER_FUNCTION,
                Option.HEADER_DATA,
            )
            for chunk in response.iter_bytes():
                self._deliver(chunk, Option.WRITE_FUNCTION, Option.WRITE_DATA)
        except httpx.RequestError as exc:
            raise TransportError(error_code_for(exc), str(exc) or type(exc).__name__) from exc
        finally:
            response.close()

    def response_code(self) -> int:
        return self._response_code

    def reset(self) -> None:
        '''
        Restore every option to its default. The client is rebuilt on the
        next perform.
        '''
        self._settings.clear()
        self._response_code = 0
        self._client_stale = True

    def free(self) -> None:
        if self._freed:
            return
        self._freed = True
        self._settings.clear()
        if self._client is not None:
            self._client.close()
            self._client = None


def _header_block(response: httpx.Response) -> bytes:
    lines = [
        f'{response.http_version} {response.status_code} {response.reason_phrase}'.encode('latin-1')
    ]
    lines.extend(name + b': ' + value for name, value in response.headers.raw)
    return b'\r\n'.join(lines) + b'\r\n\r\n'
