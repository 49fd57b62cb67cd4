'''
**sharedsession**
---------

Blocking HTTP sessions on top of httpx, plus a reference-counted pool that
lets many `SharedHandle`s multiplex onto one pooled session per context id.
Requests on the same context id are serialized; different ids run in
parallel.
'''
from sharedsession._codecs import (
    decode_fields,
    encode_fields,
    parse_header_block,
    parse_header_line,
    split_header_line,
)
from sharedsession._config import (
    SessionConfig,
    get_certificate_bundle_path,
    set_certificate_bundle_path,
)
from sharedsession._errors import (
    ConnectionClosedError,
    InvalidMethodError,
    InvalidProtocolError,
    MalformedHeaderError,
    OptionRejectedError,
    SessionClosedError,
    SessionError,
    TransportError,
    TransportErrorCode,
)
from sharedsession._http_session import HttpMethod, HttpSession, Protocol
from sharedsession._options import Option, OptionStore
from sharedsession._retry import NoAttemptsLeftError, retry_policy
from sharedsession._session import ExecuteResult, Session
from sharedsession._shared import (
    ConnectionContext,
    ConnectionRegistry,
    SharedHandle,
    default_registry,
    nconnections,
)
from sharedsession._transport import TransportHandle

__all__ = [
    'decode_fields',
    'encode_fields',
    'parse_header_block',
    'parse_header_line',
    'split_header_line',
    'SessionConfig',
    'get_certificate_bundle_path',
    'set_certificate_bundle_path',
    'ConnectionClosedError',
    'InvalidMethodError',
    'InvalidProtocolError',
    'MalformedHeaderError',
    'OptionRejectedError',
    'SessionClosedError',
    'SessionError',
    'TransportError',
    'TransportErrorCode',
    'HttpMethod',
    'HttpSession',
    'Protocol',
    'Option',
    'OptionStore',
    'NoAttemptsLeftError',
    'retry_policy',
    'ExecuteResult',
    'Session',
    'ConnectionContext',
    'ConnectionRegistry',
    'SharedHandle',
    'default_registry',
    'nconnections',
    'TransportHandle',
]
