import dataclasses as dc
import threading
from collections.abc import Callable

import httpx

DEFAULT_ENCODING = 'gzip'

_certificate_bundle_path: str = ''
_certificate_lock = threading.Lock()


def set_certificate_bundle_path(path: str) -> None:
    '''
    Set the process-wide certificate bundle used when an HttpSession
    enables TLS verification. An empty string means the system trust store.

    Parameters
    ----------
    path : str
    '''
    global _certificate_bundle_path
    with _certificate_lock:
        _certificate_bundle_path = path or ''


def get_certificate_bundle_path() -> str:
    with _certificate_lock:
        return _certificate_bundle_path


@dc.dataclass(slots=True)
class SessionConfig:
    '''
    Construction options for sessions. The defaults match what every
    HttpSession applies on construction.

    `transport` replaces the network transport, mainly so tests can plug in
    an `httpx.MockTransport`. `ca_bundle` is read each time a session enters
    https, so changes to the process-wide path are picked up by later URLs.
    '''
    default_encoding: str = DEFAULT_ENCODING
    keepalive: bool = True
    http2: bool = False
    trust_env: bool = False
    transport: httpx.BaseTransport | None = None
    ca_bundle: Callable[[], str] = get_certificate_bundle_path
