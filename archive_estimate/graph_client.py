"""Microsoft Graph connection scoped to a single mailbox."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Iterator
from urllib.parse import quote

import msal
import requests
from requests import Response

from .config import RunConfig
from .discovery import ServiceEndpoint
from .errors import AuthenticationError, GraphRequestError, MailboxBindError
from .models import FolderDescriptor, ItemSizeRecord
from .utils import isoformat_utc, mailbox_domain, parse_graph_datetime

logger = logging.getLogger(__name__)

MAIL_FOLDER_TYPE = "#microsoft.graph.mailFolder"
MESSAGE_SIZE_TAG = 0x0E08
MESSAGE_SIZE_PROPERTY = "Integer 0x0E08"


class GraphClient:
    """Authenticated session that acts on behalf of one mailbox."""

    def __init__(
        self,
        config: RunConfig,
        mailbox: str,
        endpoint: ServiceEndpoint,
        session: requests.Session | None = None,
    ) -> None:
        self.config = config
        self.mailbox = mailbox
        self.endpoint = endpoint
        self.session = session or requests.Session()
        self.session.verify = not config.skip_tls_verify
        self.authority = config.authority_url(mailbox_domain(mailbox), endpoint.tenant_id)
        self._token_cache = None

        if config.skip_tls_verify:
            logger.warning("TLS certificate validation disabled for %s", mailbox)

        if config.auth_mode == "client_credentials":
            self.scopes = endpoint.app_scopes
            self.app = msal.ConfidentialClientApplication(
                client_id=config.credentials.client_id,
                client_credential=config.credentials.client_secret,
                authority=self.authority,
                http_client=self.session,
            )
        else:
            self.scopes = endpoint.delegated_scopes(config.scopes)
            token_cache = msal.SerializableTokenCache()
            cache_path = config.token_cache
            if cache_path.exists():
                token_cache.deserialize(cache_path.read_text())
            self._token_cache = token_cache
            self.app = msal.PublicClientApplication(
                client_id=config.client_id,
                authority=self.authority,
                token_cache=token_cache,
                http_client=self.session,
            )

    def bind_root(self) -> FolderDescriptor:
        """Open the mailbox root folder; raises MailboxBindError when inaccessible."""
        url = f"{self._mailbox_url()}/mailFolders/msgfolderroot"
        try:
            root = self._to_folder(
                self._get_json(url, params={"$select": "id,displayName,childFolderCount"})
            )
        except GraphRequestError as exc:
            raise MailboxBindError(self.mailbox, exc.status_code) from exc
        logger.debug("Bound root folder %s of %s", root.folder_id, self.mailbox)
        return root

    def iter_folders(self, root: FolderDescriptor) -> Iterator[FolderDescriptor]:
        """Yield every non-search folder below the root, walking the tree breadth first."""
        pending = [root.folder_id]
        while pending:
            parent_id = pending.pop(0)
            for folder in self._list_child_folders(parent_id):
                if folder.is_search_folder:
                    logger.debug("Skipping search folder '%s'", folder.display_name)
                    continue
                yield folder
                if folder.child_folder_count:
                    pending.append(folder.folder_id)

    def iter_item_sizes(
        self, folder: FolderDescriptor, created_before: datetime | None = None
    ) -> Iterator[ItemSizeRecord]:
        """Yield size records for the folder's items, optionally limited by creation time."""
        url = f"{self._mailbox_url()}/mailFolders/{folder.folder_id}/messages"
        params = {
            "$select": "id,createdDateTime",
            "$expand": f"singleValueExtendedProperties($filter=id eq '{MESSAGE_SIZE_PROPERTY}')",
            "$top": self.config.item_page_size,
        }
        if created_before is not None:
            params["$filter"] = f"createdDateTime le {isoformat_utc(created_before)}"

        while url:
            logger.debug("Fetching items page %s", url)
            payload = self._get_json(url, params=params)
            for raw in payload.get("value", []):
                yield self._to_item(raw)

            url = payload.get("@odata.nextLink")
            params = None  # only pass params to the first call
            if url and not self.config.paginate_items:
                logger.warning(
                    "Folder '%s' holds more than %s matching items; only the first page was counted",
                    folder.display_name,
                    self.config.item_page_size,
                )
                return

    def _list_child_folders(self, parent_id: str) -> Iterator[FolderDescriptor]:
        url = f"{self._mailbox_url()}/mailFolders/{parent_id}/childFolders"
        offset = 0
        while True:
            params = {
                "$select": "id,displayName,parentFolderId,childFolderCount",
                "$top": self.config.folder_page_size,
                "$skip": offset,
            }
            logger.debug("Fetching folders under %s at offset %s", parent_id, offset)
            payload = self._get_json(url, params=params)
            page = payload.get("value", [])
            for raw in page:
                yield self._to_folder(raw)
            if not page or "@odata.nextLink" not in payload:
                return
            offset += len(page)

    def close(self) -> None:
        """Release the HTTP session shared by Graph requests and token acquisition."""
        self.session.close()

    def _get_json(self, url: str, params: dict | None = None) -> dict:
        response = self._get(url, params=params)
        try:
            payload = response.json()
        except ValueError as exc:
            raise GraphRequestError(f"Graph response from {url} is not JSON") from exc
        if not isinstance(payload, dict):
            raise GraphRequestError(f"Graph response from {url} is not a JSON object")
        return payload

    def _get(self, url: str, params: dict | None = None) -> Response:
        headers = {"Authorization": f"Bearer {self._acquire_token()}"}
        try:
            resp = self.session.get(
                url, headers=headers, params=params, timeout=self.config.request_timeout
            )
        except requests.RequestException as exc:
            raise GraphRequestError(f"Graph request to {url} failed: {exc}") from exc
        if resp.status_code >= 400:
            logger.error("Graph request failed (%s): %s", resp.status_code, resp.text)
            raise GraphRequestError(
                f"Graph request to {url} returned HTTP {resp.status_code}", resp.status_code
            )
        return resp

    def _acquire_token(self) -> str:
        if self.config.auth_mode == "client_credentials":
            return self._acquire_token_client_credentials()
        return self._acquire_token_device_flow()

    def _acquire_token_client_credentials(self) -> str:
        result = self.app.acquire_token_silent(self.scopes, account=None)
        if not result:
            result = self.app.acquire_token_for_client(scopes=self.scopes)
        if "access_token" not in result:
            raise AuthenticationError(f"Unable to obtain Graph token: {result.get('error_description')}")
        return result["access_token"]

    def _acquire_token_device_flow(self) -> str:
        accounts = self.app.get_accounts()
        result = None
        if accounts:
            result = self.app.acquire_token_silent(self.scopes, account=accounts[0])
        if not result:
            flow = self.app.initiate_device_flow(scopes=self.scopes)
            if "user_code" not in flow:
                raise AuthenticationError(f"Unable to start device code flow: {flow}")
            logger.warning(flow.get("message"))
            result = self.app.acquire_token_by_device_flow(flow)
        if "access_token" not in result:
            raise AuthenticationError(f"Unable to obtain Graph token: {result.get('error_description')}")
        self._persist_token_cache()
        return result["access_token"]

    def _persist_token_cache(self) -> None:
        if not self._token_cache or not self._token_cache.has_state_changed:
            return
        cache_path: Path = self.config.token_cache
        cache_path.parent.mkdir(parents=True, exist_ok=True)
        cache_path.write_text(self._token_cache.serialize())

    def _mailbox_url(self) -> str:
        return f"{self.endpoint.base_url}/users/{quote(self.mailbox)}"

    @staticmethod
    def _to_folder(raw: dict) -> FolderDescriptor:
        try:
            return FolderDescriptor(
                folder_id=raw["id"],
                display_name=raw.get("displayName", ""),
                folder_type=raw.get("@odata.type", MAIL_FOLDER_TYPE),
                parent_id=raw.get("parentFolderId"),
                child_folder_count=int(raw.get("childFolderCount") or 0),
            )
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise GraphRequestError(f"Malformed folder in Graph response: {raw!r}") from exc

    @staticmethod
    def _to_item(raw: dict) -> ItemSizeRecord:
        try:
            created = raw.get("createdDateTime")
            return ItemSizeRecord(
                item_id=raw["id"],
                size=_message_size(raw.get("singleValueExtendedProperties") or []),
                created=parse_graph_datetime(created) if created else None,
            )
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise GraphRequestError(f"Malformed item in Graph response: {raw!r}") from exc


def _message_size(properties: list[dict]) -> int | None:
    """Read PR_MESSAGE_SIZE from expanded extended properties (Graph lower-cases the tag)."""
    for prop in properties:
        kind, _, tag = (prop.get("id") or "").partition(" ")
        if kind.lower() != "integer":
            continue
        try:
            if int(tag, 16) != MESSAGE_SIZE_TAG:
                continue
            size = int(prop.get("value"))
        except (TypeError, ValueError):
            return None
        return size if size >= 0 else None
    return None
