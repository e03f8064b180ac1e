"""
HTTP transport for the Connect API, built on http.client
"""

from __future__ import annotations

import base64
import json
import os
import ssl
from http import client as http
from http.cookies import SimpleCookie
from typing import IO, Any, Dict, List, Mapping, Optional, Tuple, Union
from urllib.parse import ParseResult, urlencode, urlparse

from . import VERSION
from .log import logger
from .timeouts import get_request_timeout

# A union type that describes types that can be converted to and from JSON.
JsonData = Union[
    str,
    int,
    float,
    bool,
    None,
    List["JsonData"],
    Dict[str, "JsonData"],
]

RequestBody = Union[bytes, IO[bytes], Mapping[str, Any], List[Any], None]

USER_AGENT = "rsconnect-deploy/%s" % VERSION

_REDACTED_HEADERS = ("authorization", "proxy-authorization", "cookie")

# socket errors and timeouts are all OSError subclasses
_TRANSPORT_ERRORS = (http.HTTPException, ssl.CertificateError, OSError)


def append_to_path(uri: str, path: str) -> str:
    """Join path onto uri with exactly one slash between them."""
    return uri.rstrip("/") + "/" + path.lstrip("/")


def proxy_settings(host_name: str) -> Optional[Tuple[str, int, Dict[str, str]]]:
    """
    Find the HTTPS proxy to tunnel through for host_name.

    HTTPS_PROXY (or https_proxy) names the proxy; hosts ending in any of the
    comma separated suffixes in NO_PROXY (or no_proxy) connect directly.

    :return: the proxy host, port and tunnel headers, or None for a direct connection.
    """
    proxy_url = os.environ.get("https_proxy") or os.environ.get("HTTPS_PROXY")
    if not proxy_url:
        return None

    no_proxy = os.environ.get("no_proxy") or os.environ.get("NO_PROXY") or ""
    suffixes = [suffix.strip() for suffix in no_proxy.split(",") if suffix.strip()]
    if any(host_name.endswith(suffix) for suffix in suffixes):
        return None

    parsed = urlparse(proxy_url)
    if parsed.hostname is None:
        return None
    headers = {}
    if parsed.username and parsed.password:
        credentials = ("%s:%s" % (parsed.username, parsed.password)).encode("utf-8")
        headers["Proxy-Authorization"] = "Basic %s" % base64.b64encode(credentials).decode("ascii")
    port = parsed.port or 8080
    logger.debug("Tunnelling to %s through the proxy %s:%d", host_name, parsed.hostname, port)
    return parsed.hostname, port, headers


def open_connection(
    url: ParseResult,
    insecure: bool = False,
    ca_data: Optional[str | bytes] = None,
) -> http.HTTPConnection:
    """
    Make an unopened connection to the host of url.  Each request gets its own.

    :param url: the parsed server URL.
    :param insecure: skip TLS certificate and host name checks.
    :param ca_data: PEM text or DER bytes of the certificate authorities to trust.
    """
    if url.hostname is None:
        raise ValueError("The URL %s does not contain a host name." % url.geturl())
    timeout = get_request_timeout() or None

    if url.scheme == "http":
        return http.HTTPConnection(url.hostname, port=url.port or http.HTTP_PORT, timeout=timeout)
    if url.scheme != "https":
        raise ValueError('The "%s" URL scheme is not supported.' % url.scheme)

    if ca_data is not None and insecure:
        raise ValueError("Cannot both disable TLS checking and provide a custom certificate")
    if ca_data is not None:
        context = ssl.create_default_context(cadata=ca_data)
    elif insecure:
        context = ssl._create_unverified_context()
    else:
        context = None

    port = url.port or http.HTTPS_PORT
    proxy = proxy_settings(url.hostname)
    if proxy is None:
        return http.HTTPSConnection(url.hostname, port=port, timeout=timeout, context=context)
    proxy_host, proxy_port, tunnel_headers = proxy
    conn = http.HTTPSConnection(proxy_host, port=proxy_port, timeout=timeout, context=context)
    conn.set_tunnel(url.hostname, port, headers=tunnel_headers)
    return conn


class HTTPResponse(object):
    """
    The outcome of one request: either a status, headers and body, or the
    exception that kept the request from getting an answer.
    """

    def __init__(
        self,
        full_uri: str,
        status: int = 0,
        reason: str = "",
        headers: Optional[Mapping[str, str]] = None,
        body: bytes = b"",
        exception: Optional[Exception] = None,
    ):
        self.full_uri = full_uri
        self.status = status
        self.reason = reason
        self.headers = {key.lower(): value for key, value in (headers or {}).items()}
        self.body = body
        self.exception = exception
        self.json_data: JsonData = None

        if body and self.headers.get("content-type", "").startswith("application/json"):
            try:
                self.json_data = json.loads(body)
            except ValueError:
                logger.debug("The response from %s claimed to be JSON but could not be decoded.", full_uri)

    @property
    def ok(self) -> bool:
        return self.exception is None and 200 <= self.status <= 299


class HTTPServer(object):
    """
    Sends requests to paths below a base URL.  Cookies the server sets are sent
    back on later requests.
    """

    def __init__(
        self,
        url: str,
        insecure: bool = False,
        ca_data: Optional[str | bytes] = None,
        max_redirects: int = 5,
    ):
        self._url = urlparse(url)
        if self._url.scheme not in ("http", "https"):
            raise ValueError('The "%s" URL scheme is not supported.' % self._url.scheme)
        self._insecure = insecure
        self._ca_data = ca_data
        self.max_redirects = max_redirects
        self.headers: Dict[str, str] = {"User-Agent": USER_AGENT}
        self.cookies: Dict[str, str] = {}

    def key_authorization(self, key: str):
        self.headers["Authorization"] = "Key %s" % key

    def get(self, path: str, query_params: Optional[Mapping[str, Any]] = None) -> HTTPResponse:
        return self.request("GET", path, query_params)

    def post(
        self,
        path: str,
        body: RequestBody = None,
        headers: Optional[Mapping[str, str]] = None,
        follow_redirects: bool = True,
    ) -> HTTPResponse:
        return self.request("POST", path, body=body, headers=headers, follow_redirects=follow_redirects)

    def delete(self, path: str) -> HTTPResponse:
        return self.request("DELETE", path)

    def request(
        self,
        method: str,
        path: str,
        query_params: Optional[Mapping[str, Any]] = None,
        body: RequestBody = None,
        headers: Optional[Mapping[str, str]] = None,
        follow_redirects: bool = True,
    ) -> HTTPResponse:
        """
        Send one request.  Mappings and lists are sent as JSON; bytes and binary
        files are sent as they are.

        A redirect is followed with a GET, up to max_redirects times.  When
        follow_redirects is False, or the limit is reached, the redirect becomes
        the response's exception.
        """
        target = append_to_path(self._url.path, path)
        if query_params:
            target = "%s?%s" % (target, urlencode(query_params))

        send_headers = dict(self.headers)
        send_headers.update(headers or {})
        if isinstance(body, (Mapping, list)):
            body = json.dumps(body).encode("utf-8")
            send_headers["Content-Type"] = "application/json; charset=utf-8"

        redirects_left = self.max_redirects if follow_redirects else 0
        while True:
            response = self._send(method, target, body, send_headers)
            if response.exception is not None or not 300 <= response.status < 400:
                return response

            location = response.headers.get("location")
            if redirects_left <= 0 or not location:
                error = http.CannotSendRequest(
                    "Unexpected redirect (%s %s) to %s" % (response.status, response.reason, location)
                )
                return HTTPResponse(target, exception=error)

            redirects_left -= 1
            redirected = urlparse(location)
            target = redirected.path + ("?" + redirected.query if redirected.query else "")
            method, body = "GET", None
            send_headers.pop("Content-Type", None)
            logger.debug("--> Redirected to: %s", location)

    def _send(
        self,
        method: str,
        target: str,
        body: Union[bytes, IO[bytes], None],
        headers: Dict[str, str],
    ) -> HTTPResponse:
        headers = dict(headers)
        if self.cookies:
            headers["Cookie"] = "; ".join("%s=%s" % item for item in self.cookies.items())

        if logger.is_debugging():
            logger.debug("Request: %s %s", method, target)
            for key, value in headers.items():
                logger.debug("--> %s: %s", key, "**********" if key.lower() in _REDACTED_HEADERS else value)

        try:
            conn = open_connection(self._url, self._insecure, self._ca_data)
            try:
                conn.request(method, target, body, headers)
                raw = conn.getresponse()
                data = raw.read()
            finally:
                conn.close()
        except _TRANSPORT_ERRORS as exception:
            logger.debug("An exception occurred processing the HTTP request.", exc_info=True)
            return HTTPResponse(target, exception=exception)

        header_items = raw.getheaders()
        self._store_cookies(header_items)
        if logger.is_debugging():
            logger.debug("Response: %s %s", raw.status, raw.reason)
            logger.debug("--> %s", data.decode("utf-8", "replace"))
        return HTTPResponse(target, raw.status, raw.reason, dict(header_items), data)

    def _store_cookies(self, header_items: List[Tuple[str, str]]):
        for name, value in header_items:
            if name.lower() != "set-cookie":
                continue
            for morsel in SimpleCookie(value).values():
                self.cookies[morsel.key] = morsel.value
                logger.debug("--> Set cookie %s", morsel.key)
