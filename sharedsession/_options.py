'''
Option identifiers understood by the transport handle and the
`OptionStore` that mirrors what has been applied to a session.

The store is purely diagnostic; nothing reads it back for correctness
except the `url()`/`timeout()` getters, which only report.
'''
import enum
from collections.abc import Callable, Iterator

from sharedsession import _codecs


class Option(enum.Enum):
    URL = 'url'
    VERIFY_PEER = 'ssl_verifypeer'
    VERIFY_HOST = 'ssl_verifyhost'
    CA_INFO = 'cainfo'
    CA_PATH = 'capath'
    ACCEPT_ENCODING = 'accept_encoding'
    TCP_KEEPALIVE = 'tcp_keepalive'
    HTTP_GET = 'httpget'
    POST = 'post'
    CUSTOM_REQUEST = 'customrequest'
    POST_FIELDS = 'copypostfields'
    HTTP_HEADER = 'httpheader'
    TIMEOUT_MS = 'timeout_ms'
    WRITE_FUNCTION = 'writefunction'
    WRITE_DATA = 'writedata'
    HEADER_FUNCTION = 'headerfunction'
    HEADER_DATA = 'headerdata'


_ADDRESS_VALUED = frozenset({
    Option.WRITE_FUNCTION,
    Option.WRITE_DATA,
    Option.HEADER_FUNCTION,
    Option.HEADER_DATA,
    Option.HTTP_HEADER,
})


def stringify_option_value(value: object) -> str:
    '''
    String form of an option value as kept in the `OptionStore`.

    bools become `1`/`0`, ints and strings are kept as-is, anything else
    (callables, sinks, header lists) is stored as an opaque address.

    Parameters
    ----------
    value : object

    Returns
    -------
    str
    '''
    if isinstance(value, bool):
        return '1' if value else '0'
    if isinstance(value, (int, str)):
        return str(value)
    return str(id(value))


class OptionStore:
    __slots__ = ('_values',)

    def __init__(self) -> None:
        self._values: dict[Option, str] = {}

    def record(self, option: Option, value: object) -> str:
        as_str = stringify_option_value(value)
        self._values[option] = as_str
        return as_str

    def get(self, option: Option, default: str | None = None) -> str | None:
        return self._values.get(option, default)

    def discard(self, option: Option) -> None:
        self._values.pop(option, None)

    def clear(self) -> None:
        self._values.clear()

    def snapshot(self) -> dict[Option, str]:
        return dict(self._values)

    def __contains__(self, option: object) -> bool:
        return option in self._values

    def __len__(self) -> int:
        return len(self._values)

    def __iter__(self) -> Iterator[Option]:
        return iter(self._values)


def dump_options(
    store: OptionStore,
    header_lines: Callable[[], list[str]],
) -> str:
    '''
    Render the applied options, one tab-indented line per option. Header
    and field options are expanded into their entries; address-valued
    options print as hex.

    Parameters
    ----------
    store : OptionStore
    header_lines : Callable[[], list[str]]
        Supplies the session's current header lines.

    Returns
    -------
    str
    '''
    out: list[str] = []
    for option, value in store.snapshot().items():
        if option is Option.POST_FIELDS:
            out.append(f'\t{option.name}:')
            for name, field_value in _codecs.decode_fields(value):
                out.append(f'\t\t{name}\t{field_value}')
        elif option is Option.HTTP_HEADER:
            out.append(f'\t{option.name}:')
            for line in header_lines():
                name, header_value = _codecs.split_header_line(line)
                out.append(f'\t\t{name}\t{header_value}')
        elif option in _ADDRESS_VALUED:
            out.append(f'\t{option.name}\t{int(value):#x}')
        else:
            out.append(f'\t{option.name}\t{value}')
    return '\n'.join(out)
