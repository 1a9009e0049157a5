from __future__ import annotations

LOCAL_DEV_ORIGINS = ("http://localhost:3000", "http://localhost:5173")

# Preview deployments are subdomains of proposaliq.ai; "evilproposaliq.ai" must not match.
PREVIEW_ORIGIN_REGEX = r"^https://([a-z0-9-]+\.)*proposaliq\.ai(:\d+)?$"


def _split_origins(raw: str | None) -> list[str]:
    return [part.strip().rstrip("/") for part in str(raw or "").split(",") if part.strip()]


def build_allowed_origins(*, frontend_base_url: str, frontend_urls: str | None) -> list[str]:
    """Explicit allow-list: local dev servers, the app URL and any FRONTEND_URLS extras."""
    origins = {*LOCAL_DEV_ORIGINS, *_split_origins(frontend_base_url), *_split_origins(frontend_urls)}
    return sorted(origins)


def build_allowed_origin_regex() -> str:
    return PREVIEW_ORIGIN_REGEX
