import httpx
import pytest

from sharedsession import (
    HttpMethod,
    HttpSession,
    InvalidMethodError,
    InvalidProtocolError,
    Option,
    Protocol,
    SessionConfig,
    get_certificate_bundle_path,
    set_certificate_bundle_path,
)

from tests.conftest import make_config


@pytest.fixture
def verification_calls(monkeypatch) -> list[str]:
    calls: list[str] = []
    original = HttpSession._enable_verification

    def spy(self):
        calls.append(self.url())
        original(self)

    monkeypatch.setattr(HttpSession, '_enable_verification', spy)
    return calls


def test_construction_applies_defaults(config):
    session = HttpSession('http://example.com/', config=config)

    strings = session.option_strings()
    assert strings[Option.HTTP_GET] == '1'
    assert strings[Option.ACCEPT_ENCODING] == 'gzip'
    assert strings[Option.TCP_KEEPALIVE] == '1'
    assert session.method is HttpMethod.GET
    assert session.protocol is Protocol.HTTP


def test_construction_without_url(config):
    session = HttpSession(method=HttpMethod.POST, config=config)
    assert session.protocol is Protocol.NONE
    assert session.url() == ''
    assert session.option_strings()[Option.POST] == '1'


def test_default_config_is_used_without_one():
    session = HttpSession()
    try:
        assert session.option_strings()[Option.ACCEPT_ENCODING] == SessionConfig().default_encoding
    finally:
        session.close()


@pytest.mark.parametrize('bad', ['PATCH', 'head', 42, None])
def test_unknown_method_is_rejected(config, bad):
    with pytest.raises(InvalidMethodError):
        HttpSession(method=bad, config=config)

    session = HttpSession(config=config)
    with pytest.raises(InvalidMethodError):
        session.set_method(bad)
    assert session.method is HttpMethod.GET


@pytest.mark.parametrize(
    'method, wire',
    [
        (HttpMethod.GET, 'GET'),
        (HttpMethod.POST, 'POST'),
        (HttpMethod.PUT, 'PUT'),
        (HttpMethod.DELETE, 'DELETE'),
        ('put', 'PUT'),
    ],
)
def test_method_reaches_the_wire(config, handler, method, wire):
    session = HttpSession('http://example.com/', method, config=config)
    session.execute()
    assert handler.last.method == wire


def test_switching_methods(config, handler):
    session = HttpSession('http://example.com/', HttpMethod.DELETE, config=config)
    session.set_method(HttpMethod.GET)
    session.execute()
    assert handler.last.method == 'GET'

    session.set_method('POST')
    session.set_fields([('a', '1')])
    session.execute()
    assert handler.last.method == 'POST'
    assert handler.last.content == b'a=1'


@pytest.mark.parametrize(
    'url',
    ['ftp://example.com/', 'example.com', 'HTTPS://example.com/', 'https:/x', ''],
)
def test_non_http_urls_are_rejected(config, url):
    session = HttpSession(config=config)
    with pytest.raises(InvalidProtocolError) as info:
        session.set_url(url)
    assert info.value.url == url
    assert session.protocol is Protocol.NONE

    with pytest.raises(InvalidProtocolError):
        HttpSession(url, config=config)


def test_https_enables_verification_once_per_entry(config, verification_calls):
    session = HttpSession(config=config)

    session.set_url('https://x.example/')
    session.set_url('https://x.example/other')
    assert verification_calls == ['']

    session.set_url('http://x.example/')
    session.set_url('http://x.example/again')
    assert len(verification_calls) == 1

    session.set_url('https://y.example/')
    assert len(verification_calls) == 2
    assert session.protocol is Protocol.HTTPS

    strings = session.option_strings()
    assert strings[Option.VERIFY_PEER] == '1'
    assert strings[Option.VERIFY_HOST] == '2'
    assert Option.CA_INFO not in strings


def test_https_uses_certificate_bundle_when_configured(handler):
    session = HttpSession(config=make_config(handler, ca_bundle='/etc/certs/bundle.pem'))

    session.set_url('https://secure.example/')

    strings = session.option_strings()
    assert strings[Option.CA_INFO] == '/etc/certs/bundle.pem'
    assert strings[Option.VERIFY_PEER] == '1'


def test_process_wide_certificate_bundle_is_the_default(handler):
    set_certificate_bundle_path('/etc/pki/process.pem')
    try:
        assert get_certificate_bundle_path() == '/etc/pki/process.pem'
        config = SessionConfig(transport=httpx.MockTransport(handler))
        session = HttpSession('https://secure.example/', config=config)
        assert session.option_strings()[Option.CA_INFO] == '/etc/pki/process.pem'
    finally:
        set_certificate_bundle_path('')
    assert get_certificate_bundle_path() == ''


def test_certificate_bundle_is_read_on_each_https_entry(handler):
    bundles = iter(['/first.pem', '/second.pem'])
    config = make_config(handler)
    config.ca_bundle = lambda: next(bundles)
    session = HttpSession(config=config)

    session.set_url('https://a.example/')
    assert session.option_strings()[Option.CA_INFO] == '/first.pem'

    session.set_url('http://a.example/')
    session.set_url('https://a.example/')
    assert session.option_strings()[Option.CA_INFO] == '/second.pem'


def test_verification_can_be_switched_off(config):
    session = HttpSession('https://self-signed.example/', config=config)
    session.set_ssl_verify(False)
    strings = session.option_strings()
    assert strings[Option.VERIFY_PEER] == '0'
    assert strings[Option.VERIFY_HOST] == '0'

    session.set_ssl_verify_using_ca_certs('/etc/ssl/certs')
    strings = session.option_strings()
    assert strings[Option.VERIFY_PEER] == '1'
    assert strings[Option.CA_PATH] == '/etc/ssl/certs'


def test_reset_options_restores_http_defaults(config, verification_calls):
    session = HttpSession('https://a.example/', HttpMethod.PUT, config=config)
    session.add_headers([('X-A', '1')])

    session.reset_options()

    strings = session.option_strings()
    assert strings[Option.CUSTOM_REQUEST] == 'PUT'
    assert strings[Option.ACCEPT_ENCODING] == 'gzip'
    assert Option.URL not in strings
    assert session.protocol is Protocol.NONE

    session.set_url('https://a.example/')
    assert len(verification_calls) == 2


def test_move_keeps_protocol_and_method(config):
    session = HttpSession('https://a.example/', HttpMethod.POST, config=config)

    moved = session.move()

    assert isinstance(moved, HttpSession)
    assert moved.protocol is Protocol.HTTPS
    assert moved.method is HttpMethod.POST
    assert session.closed
