"""Configuration management for the archive size estimator."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal, Sequence

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env early so BaseSettings can pick values up seamlessly.
load_dotenv()

DEFAULT_GRAPH_HOST = "graph.microsoft.com"
DEFAULT_PAGE_SIZE = 1000


def _split_list(value: str | Sequence[str] | None) -> list[str]:
    """Turn delimiter-separated env strings into cleaned lists."""
    if value is None:
        return []
    if isinstance(value, str):
        items = re.split(r"[;, ]", value)
    else:
        items = list(value)
    return [item.strip() for item in items if item.strip()]


def normalize_server(value: str) -> str:
    """Reduce a server argument (host or URL) to a bare host name."""
    host = value.strip()
    host = re.sub(r"^[a-zA-Z][a-zA-Z0-9+.-]*://", "", host)
    return host.split("/", 1)[0].lower()


class Settings(BaseSettings):
    """App configuration derived from environment variables."""

    graph_client_id: str | None = Field(None, alias="GRAPH_CLIENT_ID")
    graph_client_secret: str | None = Field(None, alias="GRAPH_CLIENT_SECRET")
    graph_tenant_id: str | None = Field(None, alias="GRAPH_TENANT_ID")
    graph_authority: str | None = Field(None, alias="GRAPH_AUTHORITY")
    graph_auth_mode: Literal["client_credentials", "device_code"] = Field(
        "device_code", alias="GRAPH_AUTH_MODE"
    )
    graph_scopes_raw: str = Field("Mail.Read.Shared", alias="GRAPH_SCOPES")
    graph_token_cache: Path = Field(Path("data/msal_token_cache.bin"), alias="GRAPH_TOKEN_CACHE")
    graph_api_version: str = Field("v1.0", alias="GRAPH_API_VERSION")
    graph_server: str | None = Field(None, alias="GRAPH_SERVER")
    discovery_authority: str = Field(
        "https://login.microsoftonline.com", alias="DISCOVERY_AUTHORITY"
    )

    folder_page_size: int = Field(DEFAULT_PAGE_SIZE, alias="FOLDER_PAGE_SIZE", gt=0, le=1000)
    item_page_size: int = Field(DEFAULT_PAGE_SIZE, alias="ITEM_PAGE_SIZE", gt=0, le=1000)
    age_limit_days: int = Field(0, alias="AGE_LIMIT_DAYS", ge=0)
    report_path: Path | None = Field(None, alias="REPORT_PATH")
    request_timeout: float = Field(30.0, alias="REQUEST_TIMEOUT", gt=0)
    skip_tls_verify: bool = Field(False, alias="SKIP_TLS_VERIFY")

    log_dir: Path = Field(Path("logs"), alias="LOG_DIR")
    log_prefix: str = Field("archive-estimate", alias="LOG_PREFIX")
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator(
        "graph_client_id",
        "graph_client_secret",
        "graph_tenant_id",
        "graph_authority",
        "graph_server",
        "report_path",
        mode="before",
    )
    @classmethod
    def _empty_str_to_none(cls, value):
        if isinstance(value, str) and value.strip() == "":
            return None
        return value

    @property
    def graph_scopes(self) -> list[str]:
        """Scopes requested for delegated Graph auth."""
        return _split_list(self.graph_scopes_raw) or ["Mail.Read.Shared"]


@dataclass(frozen=True)
class Credentials:
    """Explicit application credential used instead of the operator's identity."""

    client_id: str
    client_secret: str = field(repr=False)

    @classmethod
    def parse(cls, value: str, default_client_id: str | None) -> "Credentials":
        """Accept ``CLIENT_ID:SECRET`` or a bare secret for the configured client id."""
        client_id, sep, secret = value.partition(":")
        if not sep:
            client_id, secret = default_client_id, value
        if not client_id or not secret:
            raise ValueError("credentials must be CLIENT_ID:SECRET or a client secret")
        return cls(client_id=client_id, client_secret=secret)


@dataclass(frozen=True)
class RunConfig:
    """Everything one run needs, resolved once at start-up."""

    mailboxes: tuple[str, ...]
    client_id: str
    auth_mode: Literal["client_credentials", "device_code"]
    credentials: Credentials | None = None
    tenant: str | None = None
    authority: str | None = None
    scopes: tuple[str, ...] = ("Mail.Read.Shared",)
    token_cache: Path = Path("data/msal_token_cache.bin")
    api_version: str = "v1.0"
    server: str | None = None
    discovery_authority: str = "https://login.microsoftonline.com"
    age_limit_days: int = 0
    folder_page_size: int = DEFAULT_PAGE_SIZE
    item_page_size: int = DEFAULT_PAGE_SIZE
    paginate_items: bool = True
    fail_fast: bool = False
    report_path: Path | None = None
    request_timeout: float = 30.0
    skip_tls_verify: bool = False
    log_dir: Path = Path("logs")
    log_prefix: str = "archive-estimate"
    log_level: str = "INFO"

    @classmethod
    def from_settings(cls, settings: Settings, mailboxes: Sequence[str], **overrides) -> "RunConfig":
        """Combine environment settings with command-line overrides (None means 'not given')."""
        credentials = overrides.pop("credentials", None)
        if credentials is None and settings.graph_auth_mode == "client_credentials":
            if not (settings.graph_client_id and settings.graph_client_secret):
                raise ValueError(
                    "GRAPH_CLIENT_ID and GRAPH_CLIENT_SECRET are required for client_credentials mode"
                    " unless --credentials is given"
                )
            credentials = Credentials(settings.graph_client_id, settings.graph_client_secret)
        if credentials is None and not settings.graph_client_id:
            raise ValueError("GRAPH_CLIENT_ID is required unless --credentials CLIENT_ID:SECRET is given")
        values = {
            "client_id": credentials.client_id if credentials else settings.graph_client_id,
            "auth_mode": "client_credentials" if credentials else "device_code",
            "credentials": credentials,
            "tenant": settings.graph_tenant_id,
            "authority": settings.graph_authority,
            "scopes": tuple(settings.graph_scopes),
            "token_cache": settings.graph_token_cache,
            "api_version": settings.graph_api_version,
            "server": settings.graph_server,
            "discovery_authority": settings.discovery_authority.rstrip("/"),
            "age_limit_days": settings.age_limit_days,
            "folder_page_size": settings.folder_page_size,
            "item_page_size": settings.item_page_size,
            "report_path": settings.report_path,
            "request_timeout": settings.request_timeout,
            "skip_tls_verify": settings.skip_tls_verify,
            "log_dir": settings.log_dir,
            "log_prefix": settings.log_prefix,
            "log_level": settings.log_level,
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        if values["server"]:
            values["server"] = normalize_server(values["server"])
        if values["age_limit_days"] < 0:
            raise ValueError("age limit must be zero or a positive number of days")
        return cls(mailboxes=tuple(m.strip() for m in mailboxes if m.strip()), **values)

    def authority_url(self, mailbox_domain: str, tenant_id: str | None = None) -> str:
        """Resolve the login authority; falls back to the mailbox domain as tenant hint."""
        if self.authority:
            return self.authority.rstrip("/")
        tenant = self.tenant or tenant_id or mailbox_domain or "organizations"
        return f"https://login.microsoftonline.com/{tenant}"
