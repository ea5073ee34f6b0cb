#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
Abstraction of a Datagram packet used in the SSDP protocol (HTTP over UDP).
"""

from __future__ import annotations

from .internal_types import *
from .pkg_logging import logger

from .constants import (
    METHOD_SEARCH,
    METHOD_NOTIFY,
    HTTP_PROTOCOL,
    HEAD_BOOTID,
    HEAD_CACHE_CONTROL,
    HEAD_CONFIGID,
    HEAD_CP_FN,
    HEAD_HOST,
    HEAD_LOCATION,
    HEAD_MAN,
    HEAD_MX,
    HEAD_NEXT_BOOTID,
    HEAD_NT,
    HEAD_NTS,
    HEAD_SEARCH_PORT,
    HEAD_SERVER,
    HEAD_ST,
    HEAD_USER_AGENT,
    HEAD_USN,
    REQUIRED_SEARCH_HEADERS,
    REQUIRED_NOTIFY_HEADERS,
    REQUIRED_RESPONSE_HEADERS,
  )
from .exceptions import MalformedStartLineError, MissingRequiredHeaderError
from .protocol_version import ProtocolVersion
from .util import (
    CaseInsensitiveDict,
    split_bytes_at_lf_or_crlf,
    parse_http_headers,
    encode_http_header,
)

def parse_max_age(cache_control: Optional[str]) -> Optional[int]:
    """Extracts the numeric max-age directive from a CACHE-CONTROL value such as
       "max-age=1800" or "no-cache, max-age = 1800". Returns None if there is no valid directive."""
    if cache_control is None:
        return None
    for directive in cache_control.split(','):
        name, sep, value = directive.partition('=')
        if sep != '' and name.strip().lower() == 'max-age':
            value = value.strip().strip('"')
            if value.isdigit():
                return int(value)
            return None
    return None

def _parse_optional_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value.strip())
    except ValueError:
        return None

class SsdpDatagram(MutableMapping[str, str]):
    """Wrapper for a raw SSDP datagram.

    This class provides parsing and formatting of the HTTP-like packets, a dict-like
    interface to the headers, and a few other convenient properties. Header names are
    case-insensitive; their order and the sender's spelling are preserved.
    """

    _raw_data: bytes
    """The raw UDP datagram contents"""

    _statement_line: str
    """The first line of the datagram; e.g., "HTTP/1.1 200 OK",
       "NOTIFY * HTTP/1.1", etc."""

    _raw_headers: CaseInsensitiveDict[str]
    """The headers as a CaseInsensitiveDict[str]. Values are not decoded."""

    def __init__(
            self,
            statement: Optional[str]=None,
            headers: Optional[Union[Mapping[str, Optional[str]], Iterable[Tuple[str, Optional[str]]]]]=None,
            raw_data: Optional[bytes]=None,
            copy_from: Optional[SsdpDatagram]=None
          ):
        if copy_from is not None:
            assert statement is None and headers is None and raw_data is None
            self._raw_data = copy_from._raw_data
            self._statement_line = copy_from._statement_line
            self._raw_headers = copy_from._raw_headers.copy()
            return
        self._raw_headers = CaseInsensitiveDict()
        if raw_data is None:
            if statement is None:
                raise ValueError("Either statement or raw_data must be provided")
            assert isinstance(statement, str)
            self._statement_line = statement
            if not headers is None:
                self._update_no_rebuild(headers)
            self._rebuild_raw_data()
        else:
            assert isinstance(raw_data, bytes)
            if not (statement is None and headers is None):
                raise ValueError("If raw_data is provided, statement and headers must be None")
            self.raw_data = raw_data
            # derived attributes are set by the setter for raw_data

    @classmethod
    def decode(cls, data: bytes, version: ProtocolVersion=ProtocolVersion.V10) -> SsdpDatagram:
        """Decode and validate a received datagram.

        Raises MalformedStartLineError or MalformedHeaderError if the datagram does not follow the
        grammar, and MissingRequiredHeaderError if a header mandated for the message's kind at the
        given protocol version is absent. Unknown headers are kept.
        """
        datagram = cls(raw_data=data)
        datagram.check_start_line()
        datagram.check_required_headers(version)
        return datagram

    def encode(self) -> bytes:
        """The wire form of this datagram."""
        return self._raw_data

    def __str__(self) -> str:
        return f"SsdpDatagram('{self._statement_line}', headers={dict(self._raw_headers)})"

    def __repr__(self) -> str:
        return str(self)

    @property
    def raw_data(self) -> bytes:
        """The raw UDP datagram contents"""
        return self._raw_data

    @raw_data.setter
    def raw_data(self, value: bytes) -> None:
        """Set the raw UDP datagram contents, and recompute headers."""
        assert isinstance(value, bytes)
        self._raw_data = value
        statement_and_remainder = split_bytes_at_lf_or_crlf(value.lstrip(b'\r\n'), 1)
        self._statement_line = statement_and_remainder[0].decode('utf-8', errors='replace').strip()
        headers_and_body = b'' if len(statement_and_remainder) < 2 else statement_and_remainder[1]
        # SSDP messages have no body; anything after the blank line is ignored
        self._raw_headers, _ = parse_http_headers(headers_and_body)

    @property
    def statement_line(self) -> str:
        """The first line of the datagram; e.g., "HTTP/1.1 200 OK",
           "NOTIFY * HTTP/1.1", etc."""
        return self._statement_line

    @statement_line.setter
    def statement_line(self, value: str) -> None:
        assert isinstance(value, str)
        self._statement_line = value
        self._rebuild_raw_data()

    @property
    def statement_tokens(self) -> List[str]:
        return self._statement_line.split()

    @property
    def is_response(self) -> bool:
        """True if the statement line is an HTTP status line."""
        tokens = self.statement_tokens
        return len(tokens) > 0 and tokens[0].upper().startswith('HTTP/')

    @property
    def is_request(self) -> bool:
        return not self.is_response

    @property
    def method(self) -> Optional[str]:
        """The request method (e.g., "M-SEARCH"), or None for a response."""
        if self.is_response:
            return None
        tokens = self.statement_tokens
        return tokens[0].upper() if len(tokens) > 0 else None

    @property
    def is_search(self) -> bool:
        return self.method == METHOD_SEARCH

    @property
    def is_notify(self) -> bool:
        return self.method == METHOD_NOTIFY

    @property
    def status_code(self) -> Optional[int]:
        """The status code of a response (e.g., 200), or None for a request or an unparseable status."""
        if not self.is_response:
            return None
        tokens = self.statement_tokens
        if len(tokens) < 2 or not tokens[1].isdigit():
            return None
        return int(tokens[1])

    @property
    def status(self) -> Optional[str]:
        """The reason phrase of a response (e.g., "OK")."""
        if not self.is_response:
            return None
        tokens = self.statement_tokens
        return ' '.join(tokens[2:])

    def check_start_line(self) -> None:
        """Raise MalformedStartLineError unless the statement line is a request line
           ("<method> <uri> HTTP/x.y") or a status line ("HTTP/x.y <code> [<reason>]")."""
        tokens = self.statement_tokens
        if self.is_response:
            if len(tokens) < 2 or not tokens[1].isdigit():
                raise MalformedStartLineError(self._statement_line)
        elif len(tokens) != 3 or not tokens[2].upper().startswith('HTTP/'):
            raise MalformedStartLineError(self._statement_line)

    def required_headers(self, version: ProtocolVersion=ProtocolVersion.V10) -> List[str]:
        """The headers that this kind of message must carry at the given protocol version."""
        if self.is_response:
            return list(REQUIRED_RESPONSE_HEADERS)
        method = self.method
        if method == METHOD_SEARCH:
            result = list(REQUIRED_SEARCH_HEADERS)
            if version >= ProtocolVersion.V11:
                result.append(HEAD_CP_FN)
            return result
        if method == METHOD_NOTIFY:
            return list(REQUIRED_NOTIFY_HEADERS)
        return []

    def check_required_headers(self, version: ProtocolVersion=ProtocolVersion.V10) -> None:
        for name in self.required_headers(version):
            if not name in self._raw_headers:
                raise MissingRequiredHeaderError(name)

    def clear_headers(self) -> None:
        """Clear all headers."""
        self._raw_headers.clear()
        self._rebuild_raw_data()

    @property
    def raw_headers(self) -> CaseInsensitiveDict[str]:
        """The headers as a CaseInsensitiveDict[str]."""
        return self._raw_headers

    @raw_headers.setter
    def raw_headers(self, value: Optional[Mapping[str, str]]) -> None:
        """Set all of the headers from a dict, and updates the raw data as well."""
        if value is None:
            self.clear_headers()
        else:
            assert isinstance(value, Mapping)
            self._raw_headers.clear()
            self.update(value)

    def get_header(self, name: str) -> Optional[str]:
        return self._raw_headers.get(name)

    def set_header(self, name: str, value: Optional[Union[str, int]]) -> None:
        """Set a header value. If value is None, the header is removed.

           `name` is case-insensitive, but the case of the header name is preserved
           and updated to reflect the provided value.

           The raw packet byte string is updated to reflect the new header value.
        """
        self._set_header_no_rebuild(name, value)
        self._rebuild_raw_data()

    def del_header(self, name: str) -> None:
        """Delete a header if it exists. `name` is case-insensitive.
           If the header does not exist, this is a no-op.
        """
        self._raw_headers.pop(name, None)
        self._rebuild_raw_data()

    @property
    def hdr_host(self) -> Optional[str]:
        return self.get_header(HEAD_HOST)

    @hdr_host.setter
    def hdr_host(self, value: Optional[str]) -> None:
        self.set_header(HEAD_HOST, value)

    @property
    def hdr_man(self) -> Optional[str]:
        return self.get_header(HEAD_MAN)

    @property
    def hdr_mx(self) -> Optional[int]:
        """Returns the "MX" header as an int.

        Returns None if there is no valid MX header.
        """
        return _parse_optional_int(self.get_header(HEAD_MX))

    @hdr_mx.setter
    def hdr_mx(self, value: Optional[int]) -> None:
        assert value is None or isinstance(value, int)
        self.set_header(HEAD_MX, value)

    @property
    def hdr_st(self) -> Optional[str]:
        return self.get_header(HEAD_ST)

    @hdr_st.setter
    def hdr_st(self, value: Optional[str]) -> None:
        self.set_header(HEAD_ST, value)

    @property
    def hdr_nt(self) -> Optional[str]:
        return self.get_header(HEAD_NT)

    @property
    def hdr_nts(self) -> Optional[str]:
        return self.get_header(HEAD_NTS)

    @property
    def hdr_usn(self) -> Optional[str]:
        return self.get_header(HEAD_USN)

    @property
    def hdr_location(self) -> Optional[str]:
        return self.get_header(HEAD_LOCATION)

    @property
    def hdr_server(self) -> Optional[str]:
        return self.get_header(HEAD_SERVER)

    @property
    def hdr_user_agent(self) -> Optional[str]:
        return self.get_header(HEAD_USER_AGENT)

    @property
    def hdr_cache_control(self) -> Optional[str]:
        return self.get_header(HEAD_CACHE_CONTROL)

    @property
    def hdr_max_age(self) -> Optional[int]:
        """Returns the max-age directive of the "CACHE-CONTROL" header as an int.

        Returns None if there is no CACHE-CONTROL header or it has no valid max-age directive.
        """
        return parse_max_age(self.hdr_cache_control)

    @hdr_max_age.setter
    def hdr_max_age(self, value: Optional[int]) -> None:
        """Set the "CACHE-CONTROL" header to "max-age=<value>".

        If value is None, the header is removed.
        """
        assert value is None or isinstance(value, int)
        self.set_header(HEAD_CACHE_CONTROL, None if value is None else f"max-age={value}")

    @property
    def hdr_boot_id(self) -> Optional[int]:
        return _parse_optional_int(self.get_header(HEAD_BOOTID))

    @property
    def hdr_config_id(self) -> Optional[int]:
        return _parse_optional_int(self.get_header(HEAD_CONFIGID))

    @property
    def hdr_next_boot_id(self) -> Optional[int]:
        return _parse_optional_int(self.get_header(HEAD_NEXT_BOOTID))

    @property
    def hdr_search_port(self) -> Optional[int]:
        return _parse_optional_int(self.get_header(HEAD_SEARCH_PORT))

    @property
    def hdr_cp_fn(self) -> Optional[str]:
        return self.get_header(HEAD_CP_FN)

    def __setitem__(self, key: str, value: Optional[Union[str, int]]) -> None:
        self.set_header(key, value)

    def __getitem__(self, key: str) -> str:
        return self._raw_headers[key]

    def __delitem__(self, key: str) -> None:
        if not key in self._raw_headers:
            raise KeyError(key)
        self.del_header(key)

    def __iter__(self):
        return iter(self._raw_headers)

    def __len__(self):
        return len(self._raw_headers)

    def update(   # type: ignore[override]
            self,
            other: Union[Mapping[str, Optional[str]], Iterable[Tuple[str, Optional[str]]]]=(),
            /,
            **kwargs: Optional[str]
          ) -> None:
        self._update_no_rebuild(other, **kwargs)
        self._rebuild_raw_data()

    def clear(self):
        self.clear_headers()

    def lower_items(self):
        """Like items(), but with all lowercase keys."""
        return self._raw_headers.lower_items()

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, SsdpDatagram):
            return False
        return (self._statement_line == other._statement_line and
                self._raw_headers == other._raw_headers)

    # Copy is required
    def copy(self):
        return SsdpDatagram(copy_from=self)

    def _update_no_rebuild(
            self,
            other: Union[Mapping[str, Optional[str]], Iterable[Tuple[str, Optional[str]]]]=(),
            /,
            **kwargs: Optional[str]
          ) -> None:
        if isinstance(other, Mapping):
            for key in other:
                self._set_header_no_rebuild(key, other[key])
        else:
            for key, value in other:
                self._set_header_no_rebuild(key, value)
        for key, value in kwargs.items():
            self._set_header_no_rebuild(key, value)

    def _set_header_no_rebuild(self, name: str, value: Optional[Union[str, int]]) -> None:
        if value is None:
            self._raw_headers.pop(name, None)
        else:
            assert isinstance(value, (str, int))
            # re-inserting keeps the original position but takes the new spelling
            self._raw_headers[name] = str(value)

    def _rebuild_raw_data(self) -> None:
        """Rebuild the raw data from the statement line and headers, in header insertion order."""
        raw_data = self.statement_line.encode('utf-8') + b'\r\n'
        for k, v in self._raw_headers.items():
            raw_data += encode_http_header(k, v)
        raw_data += b'\r\n'
        self._raw_data = raw_data

def search_request_statement() -> str:
    return f"{METHOD_SEARCH} * {HTTP_PROTOCOL}"

def notify_statement() -> str:
    return f"{METHOD_NOTIFY} * {HTTP_PROTOCOL}"

def ok_response_statement() -> str:
    return f"{HTTP_PROTOCOL} 200 OK"
