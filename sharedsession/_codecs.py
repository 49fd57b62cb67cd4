'''
String codecs for form fields and header lines.

Header lines come in two flavours of parsing: `parse_header_line` is strict
and used when handing headers back to callers, `split_header_line` is lenient
and only used for diagnostics. They disagree on lines such as `name:value`
and that disagreement is kept on purpose.
'''
from collections.abc import Iterable, Iterator

from sharedsession._errors import MalformedHeaderError

FieldPairs = list[tuple[str, str]]


def encode_fields(fields: Iterable[tuple[str, str]]) -> str:
    '''
    Join field pairs into a `name=value&name=value` string. Values are
    not url-encoded.

    Parameters
    ----------
    fields : Iterable[tuple[str, str]]

    Returns
    -------
    str
    '''
    return '&'.join(f'{name}={value}' for name, value in fields)


def _iter_field_segments(fields_str: str) -> Iterator[tuple[str, str]]:
    for segment in fields_str.split('&'):
        if not segment:
            continue
        name, sep, value = segment.partition('=')
        if not sep:
            continue
        yield name, value


def decode_fields(fields_str: str) -> FieldPairs:
    '''
    Inverse of `encode_fields`. Empty segments are skipped and segments
    without an `=` are dropped.

    Parameters
    ----------
    fields_str : str

    Returns
    -------
    list[tuple[str, str]]
    '''
    return list(_iter_field_segments(fields_str))


def format_header_line(name: str, value: str) -> str:
    return f'{name}: {value}'


def parse_header_line(line: str) -> tuple[str, str]:
    '''
    Split a stored `name: value` header line.

    Parameters
    ----------
    line : str

    Returns
    -------
    tuple[str, str]

    Raises
    ------
    MalformedHeaderError
        If the line has no `": "` separator.
    '''
    name, sep, value = line.partition(': ')
    if not sep:
        raise MalformedHeaderError(line)
    return name, value


def split_header_line(line: str) -> tuple[str, str]:
    '''
    Split a header line on its first colon. Never raises; the value keeps
    any leading whitespace, and a line without a colon yields an empty value.
    '''
    name, _, value = line.partition(':')
    return name, value


def parse_header_block(header_text: str) -> FieldPairs:
    '''
    Parse the raw response header text produced by `Session.execute`
    (status line first, CRLF separated) into name/value pairs.
    '''
    pairs = []
    for line in header_text.splitlines():
        if not line or line.startswith('HTTP/'):
            continue
        name, value = split_header_line(line)
        pairs.append((name.strip(), value.strip()))
    return pairs
