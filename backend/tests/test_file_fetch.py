from __future__ import annotations

import httpx
import pytest

from proposaliq.infrastructure.storage import file_fetch
from proposaliq.infrastructure.storage.file_fetch import FileFetchError, check_public_url, fetch_url


@pytest.fixture
def public_dns(monkeypatch):
    table = {"files.example.com": ["93.184.216.34"], "intranet.example.com": ["10.0.4.7"]}

    def _resolve(host, port):
        if host not in table:
            raise FileFetchError(f"Cannot resolve host {host}")
        return table[host]

    monkeypatch.setattr(file_fetch, "_resolve_addresses", _resolve)
    return table


def _transport(routes: dict[str, httpx.Response], seen: list[str]) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(str(request.url))
        return routes[str(request.url)]

    return httpx.MockTransport(handler)


@pytest.mark.parametrize(
    "url",
    [
        "http://169.254.169.254/latest/meta-data/iam/security-credentials/",
        "http://127.0.0.1:8080/admin",
        "http://[::1]/",
        "http://[::ffff:10.0.0.1]/",
        "http://0.0.0.0/",
        "ftp://files.example.com/a.pdf",
    ],
)
def test_internal_and_non_http_urls_are_rejected(url):
    with pytest.raises(FileFetchError):
        check_public_url(url)


def test_hostnames_resolving_to_private_addresses_are_rejected(public_dns):
    with pytest.raises(FileFetchError):
        check_public_url("https://intranet.example.com/rfp.pdf")
    check_public_url("https://files.example.com/rfp.pdf")


def test_fetch_follows_public_redirects(public_dns):
    seen: list[str] = []
    transport = _transport(
        {
            "https://files.example.com/old.txt": httpx.Response(302, headers={"location": "/new/rfp.txt"}),
            "https://files.example.com/new/rfp.txt": httpx.Response(
                200, content=b"scope of work", headers={"content-type": "text/plain"}
            ),
        },
        seen,
    )

    fetched = fetch_url("https://files.example.com/old.txt", transport=transport)

    assert fetched.data == b"scope of work"
    assert fetched.file_name == "rfp.txt"
    assert fetched.content_type == "text/plain"
    assert seen == ["https://files.example.com/old.txt", "https://files.example.com/new/rfp.txt"]


def test_redirect_to_metadata_address_is_not_followed(public_dns):
    seen: list[str] = []
    transport = _transport(
        {
            "https://files.example.com/a.txt": httpx.Response(
                302, headers={"location": "http://169.254.169.254/latest/meta-data/"}
            ),
        },
        seen,
    )

    with pytest.raises(FileFetchError):
        fetch_url("https://files.example.com/a.txt", transport=transport)
    assert seen == ["https://files.example.com/a.txt"]


def test_fetch_enforces_size_limit(public_dns):
    transport = _transport({"https://files.example.com/big.bin": httpx.Response(200, content=b"x" * 64)}, [])

    with pytest.raises(FileFetchError):
        fetch_url("https://files.example.com/big.bin", max_bytes=16, transport=transport)


def test_extract_data_rejects_link_local_file_url(client):
    r = client.post(
        "/api/files/extract-data",
        json={
            "file_url": "http://169.254.169.254/latest/meta-data/iam/info",
            "json_schema": {"title": {"type": "string"}},
        },
    )

    assert r.status_code == 400
    assert "public host" in r.json()["error"]
