from __future__ import annotations

import ipaddress
import socket
from dataclasses import dataclass
from urllib.parse import urljoin, urlparse

import httpx

from ...settings import settings
from . import s3_assets

MAX_REDIRECTS = 5


class FileFetchError(RuntimeError):
    pass


@dataclass
class FetchedFile:
    data: bytes
    content_type: str | None
    file_name: str


def _name_from(path: str) -> str:
    return (path or "").rstrip("/").rsplit("/", 1)[-1] or "file"


def _resolve_addresses(host: str, port: int) -> list[str]:
    try:
        infos = socket.getaddrinfo(host, port, type=socket.SOCK_STREAM)
    except socket.gaierror as e:
        raise FileFetchError(f"Cannot resolve host {host}") from e
    return [str(info[4][0]) for info in infos]


def _is_public(address: str) -> bool:
    ip = ipaddress.ip_address(address.split("%", 1)[0])
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped:
        ip = ip.ipv4_mapped
    return ip.is_global and not (ip.is_multicast or ip.is_reserved)


def check_public_url(url: str) -> None:
    """
    Reject anything but http(s) URLs whose host resolves only to public
    addresses. Blocks loopback, private, link-local (cloud metadata) and
    reserved ranges.
    """
    parsed = urlparse(str(url or ""))
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise FileFetchError("file_url must be an http(s) URL")
    port = parsed.port or (443 if parsed.scheme == "https" else 80)
    host = parsed.hostname
    try:
        addresses = [str(ipaddress.ip_address(host))]
    except ValueError:
        addresses = _resolve_addresses(host, port)
    if not addresses or not all(_is_public(a) for a in addresses):
        raise FileFetchError("file_url must point to a public host")


def fetch_url(url: str, *, max_bytes: int | None = None, transport: httpx.BaseTransport | None = None) -> FetchedFile:
    """Streamed GET with a byte cap. Redirects are followed by hand so every hop is checked."""
    limit = int(max_bytes or settings.file_fetch_max_bytes)
    current = str(url or "")
    chunks: list[bytes] = []
    try:
        with httpx.Client(timeout=30.0, follow_redirects=False, transport=transport) as client:
            for _ in range(MAX_REDIRECTS + 1):
                check_public_url(current)
                with client.stream("GET", current) as resp:
                    if resp.is_redirect:
                        location = resp.headers.get("location")
                        if not location:
                            raise FileFetchError("Redirect without a Location header")
                        current = urljoin(current, location)
                        continue
                    if resp.status_code >= 400:
                        raise FileFetchError(f"Failed to fetch file (HTTP {resp.status_code})")
                    total = 0
                    for chunk in resp.iter_bytes():
                        total += len(chunk)
                        if total > limit:
                            raise FileFetchError(f"File exceeds {limit} bytes")
                        chunks.append(chunk)
                    content_type = resp.headers.get("content-type")
                    break
            else:
                raise FileFetchError("Too many redirects")
    except httpx.HTTPError as e:
        raise FileFetchError(f"Failed to fetch file: {e}") from e

    return FetchedFile(data=b"".join(chunks), content_type=content_type, file_name=_name_from(urlparse(current).path))


def fetch_file(*, file_url: str | None = None, s3_key: str | None = None) -> FetchedFile:
    """Fetch from `file_url` when given, else from the assets bucket."""
    if file_url:
        return fetch_url(file_url)
    if s3_key:
        try:
            data, content_type = s3_assets.get_object(key=s3_key, max_bytes=settings.file_fetch_max_bytes)
        except Exception as e:  # noqa: BLE001
            raise FileFetchError(f"Failed to read s3 object: {e}") from e
        return FetchedFile(data=data, content_type=content_type, file_name=_name_from(s3_key))
    raise FileFetchError("Document has no file_url or s3_key")
