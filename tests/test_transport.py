import io
import ssl

import httpx
import pytest

from sharedsession import Option, TransportError, TransportErrorCode, TransportHandle
from sharedsession._transport import build_ssl_context, error_code_for


@pytest.mark.parametrize(
    'option, value',
    [
        (Option.URL, 5),
        (Option.TIMEOUT_MS, -1),
        (Option.TIMEOUT_MS, True),
        (Option.CUSTOM_REQUEST, 'BAD VERB'),
        (Option.CUSTOM_REQUEST, ''),
        (Option.VERIFY_HOST, 1),
        (Option.HTTP_HEADER, ['ok', 3]),
        (Option.WRITE_DATA, object()),
    ],
)
def test_set_option_rejects_bad_values(option, value):
    handle = TransportHandle()
    assert handle.set_option(option, value) is False


def test_set_option_refused_after_free():
    handle = TransportHandle()
    handle.free()
    assert handle.set_option(Option.URL, 'http://example.com') is False


def test_method_follows_last_method_option():
    handle = TransportHandle()
    assert handle.method == 'GET'

    handle.set_option(Option.CUSTOM_REQUEST, 'PUT')
    assert handle.method == 'PUT'

    handle.set_option(Option.POST, 1)
    assert handle.method == 'POST'

    handle.set_option(Option.HTTP_GET, 1)
    assert handle.method == 'GET'


def test_append_header_refuses_line_breaks():
    lines = TransportHandle.append_header(None, 'X-A: 1')
    assert lines == ['X-A: 1']
    assert TransportHandle.append_header(lines, 'X-B: 2\r\nX-C: 3') is None
    assert lines == ['X-A: 1']


def test_perform_without_url_fails():
    handle = TransportHandle(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
    with pytest.raises(TransportError) as info:
        handle.perform()
    assert info.value.code is TransportErrorCode.UNSUPPORTED_PROTOCOL


def test_perform_delivers_body_and_status():
    handle = TransportHandle(
        transport=httpx.MockTransport(lambda r: httpx.Response(201, content=b'created'))
    )
    sink = io.BytesIO()
    handle.set_option(Option.URL, 'http://example.com/items')
    handle.set_option(Option.WRITE_DATA, sink)

    handle.perform()

    assert handle.response_code() == 201
    assert sink.getvalue() == b'created'


def test_short_write_is_a_write_error():
    handle = TransportHandle(
        transport=httpx.MockTransport(lambda r: httpx.Response(200, content=b'data'))
    )
    handle.set_option(Option.URL, 'http://example.com/')
    handle.set_option(Option.WRITE_FUNCTION, lambda chunk, target: 0)
    handle.set_option(Option.WRITE_DATA, io.BytesIO())

    with pytest.raises(TransportError) as info:
        handle.perform()
    assert info.value.code is TransportErrorCode.WRITE_ERROR


def test_custom_header_overrides_and_removes_defaults():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(request.headers)
        return httpx.Response(200)

    handle = TransportHandle(transport=httpx.MockTransport(handler))
    handle.set_option(Option.URL, 'http://example.com/')
    handle.set_option(Option.ACCEPT_ENCODING, 'gzip')
    handle.set_option(Option.HTTP_HEADER, ['X-Token: abc', 'Accept-Encoding:'])

    handle.perform()

    assert seen['x-token'] == 'abc'
    assert seen.get('accept-encoding') != 'gzip'


@pytest.mark.parametrize(
    'exc, code',
    [
        (httpx.ConnectTimeout('slow'), TransportErrorCode.OPERATION_TIMEDOUT),
        (httpx.ReadTimeout('slow'), TransportErrorCode.OPERATION_TIMEDOUT),
        (httpx.ConnectError('refused'), TransportErrorCode.COULDNT_CONNECT),
        (httpx.ConnectError('[SSL: CERTIFICATE_VERIFY_FAILED]'), TransportErrorCode.SSL_CONNECT_ERROR),
        (httpx.ReadError('reset'), TransportErrorCode.RECV_ERROR),
        (httpx.WriteError('broken pipe'), TransportErrorCode.SEND_ERROR),
        (httpx.RemoteProtocolError('bad'), TransportErrorCode.PROTOCOL_ERROR),
        (httpx.UnsupportedProtocol('ftp'), TransportErrorCode.UNSUPPORTED_PROTOCOL),
        (RuntimeError('?'), TransportErrorCode.UNKNOWN),
    ],
)
def test_error_code_for(exc, code):
    assert error_code_for(exc) is code


def test_build_ssl_context_verification_modes():
    ctx = build_ssl_context()
    assert ctx.verify_mode == ssl.CERT_REQUIRED
    assert ctx.check_hostname is True

    no_host = build_ssl_context(verify_host=False)
    assert no_host.verify_mode == ssl.CERT_REQUIRED
    assert no_host.check_hostname is False

    off = build_ssl_context(verify_peer=False)
    assert off.verify_mode == ssl.CERT_NONE
    assert off.check_hostname is False
