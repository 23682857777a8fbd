"""Resolve the Graph endpoint that serves a mailbox."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import requests

from .config import DEFAULT_GRAPH_HOST, RunConfig
from .errors import DiscoveryError
from .utils import mailbox_domain

logger = logging.getLogger(__name__)

OPENID_CONFIGURATION_PATH = "v2.0/.well-known/openid-configuration"


@dataclass(frozen=True)
class ServiceEndpoint:
    """Graph host, protocol version and tenant for one mailbox."""

    host: str
    api_version: str = "v1.0"
    tenant_id: str | None = None

    @property
    def base_url(self) -> str:
        return f"https://{self.host}/{self.api_version}"

    @property
    def resource(self) -> str:
        return f"https://{self.host}"

    @property
    def app_scopes(self) -> list[str]:
        return [f"{self.resource}/.default"]

    def delegated_scopes(self, scopes) -> list[str]:
        """Qualify bare scope names when talking to a non-default Graph host."""
        if self.host == DEFAULT_GRAPH_HOST:
            return list(scopes)
        return [scope if "://" in scope else f"{self.resource}/{scope}" for scope in scopes]


def resolve_endpoint(
    config: RunConfig, mailbox: str, session: requests.Session | None = None
) -> ServiceEndpoint:
    """Use the configured server when present, otherwise discover it from the mailbox."""
    if config.server:
        logger.debug("Using configured server %s for %s", config.server, mailbox)
        return ServiceEndpoint(host=config.server, api_version=config.api_version, tenant_id=config.tenant)
    return discover_endpoint(config, mailbox, session=session)


def discover_endpoint(
    config: RunConfig, mailbox: str, session: requests.Session | None = None
) -> ServiceEndpoint:
    """Look up the tenant's OpenID configuration for the mailbox domain."""
    domain = mailbox_domain(mailbox)
    if not domain:
        raise DiscoveryError(mailbox, "address has no domain part")

    if session is None:
        with requests.Session() as owned:
            return _fetch_endpoint(config, mailbox, domain, owned)
    return _fetch_endpoint(config, mailbox, domain, session)


def _fetch_endpoint(
    config: RunConfig, mailbox: str, domain: str, session: requests.Session
) -> ServiceEndpoint:
    session.verify = not config.skip_tls_verify
    url = f"{config.discovery_authority}/{domain}/{OPENID_CONFIGURATION_PATH}"
    logger.debug("Discovering endpoint for %s via %s", mailbox, url)
    try:
        response = session.get(url, timeout=config.request_timeout)
    except requests.RequestException as exc:
        raise DiscoveryError(mailbox, str(exc)) from exc

    if response.status_code >= 400:
        raise DiscoveryError(mailbox, f"HTTP {response.status_code}: {response.text}")
    try:
        payload = response.json()
    except ValueError as exc:
        raise DiscoveryError(mailbox, "discovery document is not JSON") from exc
    if not isinstance(payload, dict):
        raise DiscoveryError(mailbox, "discovery document is not a JSON object")

    host = payload.get("msgraph_host") or DEFAULT_GRAPH_HOST
    tenant_id = _tenant_from_issuer(str(payload.get("issuer") or ""))
    if not tenant_id:
        raise DiscoveryError(mailbox, "discovery document names no tenant")
    logger.info("Discovered %s (tenant %s) for %s", host, tenant_id, mailbox)
    return ServiceEndpoint(host=host, api_version=config.api_version, tenant_id=tenant_id)


def _tenant_from_issuer(issuer: str) -> str | None:
    # https://login.microsoftonline.com/{tenant}/v2.0
    parts = [part for part in issuer.split("/") if part]
    if len(parts) < 3:
        return None
    return parts[2]
