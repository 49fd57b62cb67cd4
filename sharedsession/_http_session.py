import enum
import logging

from sharedsession._config import SessionConfig
from sharedsession._errors import InvalidMethodError, InvalidProtocolError
from sharedsession._options import Option
from sharedsession._session import Session

logger = logging.getLogger(__name__)


class Protocol(enum.Enum):
    NONE = 'none'
    HTTP = 'http'
    HTTPS = 'https'


class HttpMethod(enum.Enum):
    GET = 'GET'
    POST = 'POST'
    PUT = 'PUT'
    DELETE = 'DELETE'

    @classmethod
    def coerce(cls, method: 'HttpMethod | str') -> 'HttpMethod':
        '''
        Accept an HttpMethod or its name in any case.

        Raises
        ------
        InvalidMethodError
        '''
        if isinstance(method, cls):
            return method
        if isinstance(method, str):
            try:
                return cls(method.upper())
            except ValueError:
                pass
        raise InvalidMethodError(method)


def protocol_of(url: str) -> Protocol:
    '''
    Scheme of `url` by literal prefix.

    Raises
    ------
    InvalidProtocolError
        If `url` starts with neither `https://` nor `http://`.
    '''
    if url.startswith('https://'):
        return Protocol.HTTPS
    if url.startswith('http://'):
        return Protocol.HTTP
    raise InvalidProtocolError(url)


class HttpSession(Session):
    '''
    A Session that knows about HTTP methods and turns on TLS verification
    when its URL moves into https.

    Verification is configured on each transition into https, using the
    certificate bundle from `SessionConfig.ca_bundle` when one is set and the
    system trust store otherwise. Changing between two https URLs leaves the
    verification options alone.
    '''
    __slots__ = ('_protocol', '_method')

    def __init__(
        self,
        url: str | None = None,
        method: HttpMethod | str = HttpMethod.GET,
        *,
        config: SessionConfig | None = None,
    ) -> None:
        super().__init__(config=config)
        self._protocol = Protocol.NONE
        try:
            self._method = self._apply_method(method)
            self._apply_defaults()
            if url is not None:
                self.set_url(url)
        except Exception:
            self.close()
            raise

    def _apply_defaults(self) -> None:
        self.set_encoding(self._config.default_encoding)
        self.set_keepalive(self._config.keepalive)

    def _apply_method(self, method: HttpMethod | str) -> HttpMethod:
        method = HttpMethod.coerce(method)
        if method is HttpMethod.GET:
            self.set_option(Option.HTTP_GET, 1)
        elif method is HttpMethod.POST:
            self.set_option(Option.POST, 1)
        else:
            self.set_option(Option.CUSTOM_REQUEST, method.value)
        return method

    def _adopt(self, other: Session) -> None:
        if isinstance(other, HttpSession):
            self._protocol = other._protocol
            self._method = other._method
            other._protocol = Protocol.NONE
        else:
            self._protocol = Protocol.NONE
            self._method = HttpMethod.GET
        super()._adopt(other)

    @property
    def protocol(self) -> Protocol:
        return self._protocol

    @property
    def method(self) -> HttpMethod:
        return self._method

    def set_method(self, method: HttpMethod | str) -> None:
        self._method = self._apply_method(method)

    def _enable_verification(self) -> None:
        bundle = self._config.ca_bundle()
        if bundle:
            logger.debug(f'Verifying TLS peers with certificate bundle {bundle}')
            self.set_ssl_verify_using_ca_bundle(bundle)
        else:
            self.set_ssl_verify(True)

    def set_url(self, url: str) -> None:
        '''
        Set the request URL, enabling TLS verification when the session
        enters https.

        Parameters
        ----------
        url : str

        Raises
        ------
        InvalidProtocolError
            If the URL does not start with `http://` or `https://`.
        '''
        protocol = protocol_of(url)
        if protocol is Protocol.HTTPS and self._protocol is not Protocol.HTTPS:
            self._enable_verification()
        self._protocol = protocol
        super().set_url(url)

    def reset_options(self) -> None:
        '''
        Reset the transport to its defaults, then reapply the method,
        encoding and keep-alive this session was configured with. The next
        https URL sets up verification again.
        '''
        super().reset_options()
        self._protocol = Protocol.NONE
        self._apply_method(self._method)
        self._apply_defaults()
