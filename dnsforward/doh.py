"""DNS-over-HTTPS request parsing and client address detection."""

from __future__ import annotations

import base64
import binascii
import ipaddress
import logging
from http import HTTPStatus
from typing import Any, Mapping, Optional, Tuple, Union
from urllib.parse import parse_qs

import dns.message

logger = logging.getLogger(__name__)

DNS_MESSAGE_CONTENT_TYPE = "application/dns-message"
"""The media type of DNS messages sent over HTTP."""

HEADER_CF_CONNECTING_IP = "CF-Connecting-IP"
HEADER_TRUE_CLIENT_IP = "True-Client-IP"
HEADER_X_REAL_IP = "X-Real-IP"
HEADER_X_FORWARDED_FOR = "X-Forwarded-For"

Address = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
AddrPort = Tuple[Address, int]


class DoHRequestError(ValueError):
    """An invalid DoH request; status is the HTTP status to answer with."""

    def __init__(self, status: HTTPStatus, detail: str = "") -> None:
        self.status = HTTPStatus(status)
        self.detail = detail
        message = self.status.phrase
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


def _decode_raw_urlsafe_b64(data: str) -> bytes:
    """Decode unpadded URL-safe base64, rejecting padding and stray characters."""
    if "=" in data:
        raise ValueError("illegal padding in unpadded base64 data")
    padded = data + "=" * (-len(data) % 4)
    try:
        return base64.b64decode(padded.encode("ascii"), altchars=b"-_", validate=True)
    except (binascii.Error, UnicodeEncodeError) as exc:
        raise ValueError(f"illegal base64 data: {exc}") from exc


def _query_param(query: Union[str, Mapping[str, Any], None], name: str) -> str:
    if query is None:
        return ""
    if isinstance(query, str):
        values = parse_qs(query, keep_blank_values=True).get(name, [])
        return values[0] if values else ""
    value = query.get(name, "")
    if isinstance(value, (list, tuple)):
        return str(value[0]) if value else ""
    return str(value)


def _read_body(body: Any) -> bytes:
    if body is None:
        return b""
    if isinstance(body, (bytes, bytearray, memoryview)):
        return bytes(body)
    data = body.read()
    return bytes(data)


def new_doh_request(
    method: str,
    query: Union[str, Mapping[str, Any], None] = None,
    content_type: Optional[str] = None,
    body: Any = None,
) -> dns.message.Message:
    """Parse the DNS request carried by an HTTP request.

    For GET the message is taken from the "dns" parameter of query, either a
    raw query string or a mapping.  For POST it is the body, which must have
    the DNS message content type.  Raises DoHRequestError with the suitable
    HTTP status for an invalid request.
    """
    method = method.upper()
    if method == "GET":
        param = _query_param(query, "dns")
        try:
            buf = _decode_raw_urlsafe_b64(param)
        except ValueError as exc:
            logger.debug("parsing dns request from http get param %r: %s", param, exc)
            raise DoHRequestError(HTTPStatus.BAD_REQUEST, str(exc)) from exc
        if not buf:
            logger.debug("parsing dns request from http get param %r: empty", param)
            raise DoHRequestError(HTTPStatus.BAD_REQUEST, "no dns request data")
    elif method == "POST":
        if content_type != DNS_MESSAGE_CONTENT_TYPE:
            logger.debug("unsupported media type %r", content_type)
            raise DoHRequestError(
                HTTPStatus.UNSUPPORTED_MEDIA_TYPE, f"content type {content_type!r}"
            )
        try:
            buf = _read_body(body)
        except OSError as exc:
            logger.debug("reading http request body: %s", exc)
            raise DoHRequestError(HTTPStatus.BAD_REQUEST, str(exc)) from exc
        finally:
            close = getattr(body, "close", None)
            if callable(close):
                try:
                    close()
                except OSError as exc:
                    logger.debug("closing http request body: %s", exc)
    else:
        logger.debug("bad http method %r", method)
        raise DoHRequestError(HTTPStatus.METHOD_NOT_ALLOWED, f"method {method!r}")

    try:
        return dns.message.from_wire(buf)
    except Exception as exc:  # noqa: BLE001
        logger.debug("unpacking http msg: %s", exc)
        raise DoHRequestError(HTTPStatus.BAD_REQUEST, str(exc)) from exc


def _normalize_headers(headers: Optional[Mapping[str, str]]) -> dict:
    normalized: dict = {}
    if headers is None:
        return normalized
    for key, value in headers.items():
        normalized.setdefault(key.lower(), value)
    return normalized


def real_ip_from_headers(headers: Optional[Mapping[str, str]]) -> Address:
    """Return the client's real IP address from the first suitable header.

    The headers are tried in order: CF-Connecting-IP, True-Client-IP,
    X-Real-IP, then the first address of X-Forwarded-For.  Header names are
    matched case-insensitively.  Raises ValueError if none holds an address.
    """
    hdrs = _normalize_headers(headers)
    for name in (HEADER_CF_CONNECTING_IP, HEADER_TRUE_CLIENT_IP, HEADER_X_REAL_IP):
        try:
            return ipaddress.ip_address(hdrs.get(name.lower(), "").strip())
        except ValueError:
            continue

    xff = hdrs.get(HEADER_X_FORWARDED_FOR.lower(), "")
    first_comma = xff.find(",")
    if first_comma > 0:
        xff = xff[:first_comma]
    return ipaddress.ip_address(xff.strip())


def _parse_addr_port(text: str) -> AddrPort:
    if text.startswith("["):
        host, sep, port = text[1:].partition("]:")
        if not sep:
            raise ValueError(f"bad address and port {text!r}")
        ip: Address = ipaddress.IPv6Address(host)
    else:
        host, sep, port = text.rpartition(":")
        if not sep or ":" in host:
            raise ValueError(f"bad address and port {text!r}")
        ip = ipaddress.IPv4Address(host)

    if not port.isdigit() or not port.isascii() or int(port) > 0xFFFF:
        raise ValueError(f"bad port in {text!r}")
    return ip, int(port)


def remote_addr(
    remote: str, headers: Optional[Mapping[str, str]] = None
) -> Tuple[AddrPort, Optional[AddrPort]]:
    """Return the real client's address and the address of the proxy, if any.

    remote is the "host:port" address of the peer.  If the headers name the
    real client, its address is returned with port 0 and the peer is
    returned as the proxy.  Raises ValueError if remote is invalid.
    """
    host = _parse_addr_port(remote)

    try:
        real_ip = real_ip_from_headers(headers)
    except ValueError as exc:
        logger.debug("getting ip address from http request: %s", exc)
        return host, None

    logger.debug("using ip address from http request: %s", real_ip)
    return (real_ip, 0), host


def matches_userinfo(
    username: str, password: Optional[str], user: str, passwd: str
) -> bool:
    """Whether user and passwd match the required username and password."""
    required = password if password is not None else ""
    return user == username and passwd == required