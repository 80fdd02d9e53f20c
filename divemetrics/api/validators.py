"""Validation helpers for API request payloads."""

from __future__ import annotations

import ipaddress
from urllib.parse import urlparse

from fastapi import HTTPException

from divemetrics.config.settings import ImageURLPolicyConfig

_ALLOWED_SCHEMES = {"http", "https"}


def validate_image_url(image_url: str, policy: ImageURLPolicyConfig) -> None:
    """Validate a remote image URL against scheme/domain/network policy."""
    parsed = urlparse(image_url)

    if parsed.scheme.lower() not in _ALLOWED_SCHEMES:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid URL scheme '{parsed.scheme}'. Allowed schemes: http, https.",
        )

    if not parsed.hostname:
        raise HTTPException(status_code=400, detail="imageUrl must include a hostname.")

    hostname = parsed.hostname.lower().rstrip(".")

    if policy.denied_domains and _domain_matches(hostname, policy.denied_domains):
        raise HTTPException(status_code=400, detail="imageUrl domain is denied by policy.")

    if policy.allowed_domains and not _domain_matches(hostname, policy.allowed_domains):
        raise HTTPException(status_code=400, detail="imageUrl domain is not in allowlist.")

    if not policy.block_private_network_targets:
        return

    if hostname == "localhost" or hostname.endswith(".localhost"):
        raise HTTPException(status_code=400, detail="imageUrl points to a blocked internal host.")

    host_ip = _parse_ip(hostname)
    if host_ip and not host_ip.is_global:
        raise HTTPException(status_code=400, detail="imageUrl points to a blocked internal IP.")


def _parse_ip(hostname: str) -> ipaddress.IPv4Address | ipaddress.IPv6Address | None:
    try:
        return ipaddress.ip_address(hostname)
    except ValueError:
        return None


def _domain_matches(hostname: str, domains: list[str]) -> bool:
    return any(hostname == domain or hostname.endswith(f".{domain}") for domain in domains)
