'''
Error taxonomy for sharedsession. Everything raised by the package derives
from `SessionError` so callers can catch the whole family at once.
'''
from __future__ import annotations

import enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sharedsession._options import Option


class SessionError(Exception):
    ...


class SessionClosedError(SessionError):
    '''
    Raised when an operation is attempted on a closed/freed session.

    Parent: SessionError
    '''
    def __init__(self, message: str = 'connection/handle has been closed') -> None:
        super().__init__(message)


class ConnectionClosedError(SessionError):
    '''
    Raised when a SharedHandle is used after it has been closed.

    Parent: SessionError
    '''
    def __init__(self, message: str = 'connection has been closed') -> None:
        super().__init__(message)


class OptionRejectedError(SessionError, ValueError):
    '''
    Raised when the transport rejects a configuration value.

    Parent: SessionError, ValueError
    '''
    def __init__(
        self,
        option: 'Option',
        value: str,
        message: str | None = None,
    ) -> None:
        self.option = option
        self.value = value
        super().__init__(
            message or f'error setting option({option.name}) with value({value})'
        )


class InvalidProtocolError(SessionError, ValueError):
    '''
    Raised when a URL scheme is neither http nor https.

    Parent: SessionError, ValueError
    '''
    def __init__(self, url: str) -> None:
        self.url = url
        super().__init__(f'invalid protocol in url: {url}')


class InvalidMethodError(SessionError, ValueError):
    def __init__(self, method: object) -> None:
        self.method = method
        super().__init__(f'invalid HttpMethod: {method!r}')


class MalformedHeaderError(SessionError, ValueError):
    def __init__(self, line: str) -> None:
        self.line = line
        super().__init__(f'malformed header: {line!r}')


class TransportErrorCode(enum.IntEnum):
    '''
    Failure codes reported by the transport. The numbering follows the
    familiar libcurl codes so logs read the same across tools.
    '''
    UNKNOWN = -1
    UNSUPPORTED_PROTOCOL = 1
    COULDNT_RESOLVE_PROXY = 5
    COULDNT_CONNECT = 7
    OPERATION_TIMEDOUT = 28
    TOO_MANY_REDIRECTS = 47
    SEND_ERROR = 55
    RECV_ERROR = 56
    BAD_CONTENT_ENCODING = 61
    WRITE_ERROR = 23
    PROTOCOL_ERROR = 8
    SSL_CONNECT_ERROR = 35


class TransportError(SessionError):
    '''
    Raised when request execution fails at the transport layer.

    Attributes
    ----------
    code : TransportErrorCode
    message : str
    '''
    def __init__(self, code: TransportErrorCode, message: str) -> None:
        self.code = code
        self.message = message
        super().__init__(f'connection error ({int(code)} {code.name}): {message}')
