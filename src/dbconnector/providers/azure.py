"""Azure Cosmos DB provider over the SQL REST API.

Cosmos DB has no push primitive usable from here, so snapshots are produced
by polling. Partial updates are emulated with read-merge-replace, which
leaves a race window between the read and the replace: a concurrent writer's
changes to the same document can be overwritten.
"""

import base64
import hashlib
import hmac
import json
import urllib.parse
from email.utils import formatdate
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import aiohttp

from .base import BaseProvider, Record, utc_now_iso
from ..config.schema import AzureConfig
from ..core.query import build_cosmos_query
from ..core.subscriptions import PollingTask, Subscription
from ..utils.logging import log_async_execution_time


# Server-managed properties that must not be sent back on replace
SYSTEM_PROPERTIES = frozenset({"_rid", "_self", "_etag", "_attachments", "_ts"})

AZURE_USER = {"id": "azure-user"}


class CosmosRequestError(Exception):
    """Raised when the Cosmos REST API answers with a non-success status."""

    def __init__(self, message: str, status: int, body: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.body = body


def master_key_authorization(
    verb: str,
    resource_type: str,
    resource_link: str,
    date: str,
    master_key: str
) -> str:
    """Build the ``Authorization`` header for a master-key signed request."""
    payload = f"{verb.lower()}\n{resource_type.lower()}\n{resource_link}\n{date.lower()}\n\n"
    key = base64.b64decode(master_key)
    signature = base64.b64encode(hmac.new(key, payload.encode("utf-8"), hashlib.sha256).digest()).decode()
    return urllib.parse.quote(f"type=master&ver=1.0&sig={signature}", safe="")


class AzureProvider(BaseProvider):
    """Cosmos DB containers through signed REST calls.

    The master key is the session: ``sign_in`` stores it as the token and
    there is no per-user identity.
    """

    name = "azure"
    config_model = AzureConfig

    def __init__(
        self,
        config: AzureConfig,
        session_store=None,
        http_session: Optional[aiohttp.ClientSession] = None,
        sleep=None,
        **kwargs
    ):
        """Initialize the Azure provider.

        Args:
            config: Cosmos DB configuration
            session_store: Token store owned by the connector
            http_session: Session for REST calls (created on connect otherwise)
            sleep: Awaitable delay used between polling ticks
        """
        super().__init__(config, session_store, **kwargs)
        self._http = http_session
        self._owns_http = http_session is None
        self._sleep = sleep
        self._authenticated = False

    # Request plumbing

    def _container_link(self, container: str) -> str:
        return f"dbs/{self.config.database_id}/colls/{container}"

    def _headers(self, verb: str, resource_type: str, resource_link: str) -> Dict[str, str]:
        date = formatdate(usegmt=True)
        return {
            "Authorization": master_key_authorization(
                verb, resource_type, resource_link, date, self.config.key
            ),
            "x-ms-date": date,
            "x-ms-version": self.config.api_version,
            "Accept": "application/json",
        }

    async def _request(
        self,
        verb: str,
        resource_type: str,
        resource_link: str,
        url_path: str,
        body: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None
    ) -> Tuple[int, Any, Any]:
        """Send a signed request and return ``(status, json_body, response_headers)``."""
        request_headers = self._headers(verb, resource_type, resource_link)
        request_headers.update(headers or {})
        request_headers.setdefault("Content-Type", "application/json")

        url = f"{self.config.endpoint}/{url_path}"
        data = json.dumps(body) if body is not None else None

        async with self._http.request(verb, url, headers=request_headers, data=data) as response:
            if response.status >= 400:
                text = await response.text()
                raise CosmosRequestError(
                    f"{verb} {url_path} failed: {response.status} {response.reason or ''}".strip(),
                    status=response.status,
                    body=text,
                )

            payload = await response.json() if response.status != 204 else None
            return response.status, payload, response.headers

    def _partition_header(self, value: Any) -> Dict[str, str]:
        return {"x-ms-documentdb-partitionkey": json.dumps([value])}

    # Lifecycle

    @log_async_execution_time
    async def connect(self) -> None:
        try:
            if self._http is None:
                self._http = aiohttp.ClientSession(
                    timeout=aiohttp.ClientTimeout(total=self.config.request_timeout_seconds)
                )
            await self._request(
                "GET",
                "colls",
                f"dbs/{self.config.database_id}",
                f"dbs/{self.config.database_id}/colls",
            )
        except Exception as e:
            raise self._error(
                "connect", "Failed to connect to Azure Cosmos DB", e, endpoint=self.config.endpoint
            )

        self._connected = True
        self._authenticated = True
        self.logger.info(
            "Azure Cosmos DB connected",
            endpoint=self.config.endpoint,
            database_id=self.config.database_id
        )

    async def close(self) -> None:
        await super().close()
        self._authenticated = False
        if self._owns_http and self._http is not None:
            await self._http.close()
            self._http = None

    # Auth

    async def sign_in(self) -> Dict[str, Any]:
        try:
            self._require_connected()
        except Exception as e:
            raise self._error("auth", "Azure authentication failed", e)

        self._authenticated = True
        self.session_store.set_token(self.name, self.config.key)
        return {"user": dict(AZURE_USER), "token": self.config.key}

    async def sign_out(self) -> None:
        self.session_store.clear_token(self.name)
        self._authenticated = False

    def current_user(self) -> Optional[Dict[str, Any]]:
        return dict(AZURE_USER) if self._authenticated else None

    # Data

    async def _query(self, container: str, where: Optional[Sequence[Any]] = None) -> List[Record]:
        query = build_cosmos_query(where)
        link = self._container_link(container)
        documents: List[Record] = []
        continuation = None

        # Cosmos pages query results; follow continuations until exhausted
        while True:
            headers = {
                "Content-Type": "application/query+json",
                "x-ms-documentdb-isquery": "True",
                "x-ms-documentdb-query-enablecrosspartition": "True",
            }
            if continuation:
                headers["x-ms-continuation"] = continuation

            _, payload, response_headers = await self._request(
                "POST", "docs", link, f"{link}/docs", body={"query": query, "parameters": []}, headers=headers
            )
            documents.extend((payload or {}).get("Documents", []))

            continuation = response_headers.get("x-ms-continuation")
            if not continuation:
                return documents

    async def _find(self, container: str, doc_id: str) -> Optional[Record]:
        matches = await self._query(container, ("id", "==", doc_id))
        return matches[0] if matches else None

    async def read(self, path: str, where: Optional[Sequence[Any]] = None) -> List[Record]:
        try:
            self._require_connected()
            return await self._query(path, where)
        except Exception as e:
            raise self._error("read", f"Failed to read from {path}", e, path=path, where=where)

    async def write(self, path: str, doc_id: str, data: Dict[str, Any]) -> Record:
        document = {**data, "id": doc_id, "_updatedAt": utc_now_iso()}
        link = self._container_link(path)
        try:
            self._require_connected()
            headers = {"x-ms-documentdb-is-upsert": "True"}
            headers.update(self._partition_header(document.get(self.config.partition_key)))
            _, payload, _ = await self._request("POST", "docs", link, f"{link}/docs", body=document, headers=headers)
        except Exception as e:
            raise self._error("write", f"Failed to write to {path}/{doc_id}", e, path=path, doc_id=doc_id)

        return payload or document

    async def update(self, path: str, doc_id: str, data: Dict[str, Any]) -> Record:
        doc_link = f"{self._container_link(path)}/docs/{doc_id}"
        try:
            self._require_connected()
            existing = await self._find(path, doc_id)
            if existing is None:
                raise LookupError(f"Document {doc_id} not found in {path}")

            merged = {key: value for key, value in existing.items() if key not in SYSTEM_PROPERTIES}
            merged.update(data)
            merged["id"] = doc_id
            merged["_updatedAt"] = utc_now_iso()

            _, payload, _ = await self._request(
                "PUT", "docs", doc_link, doc_link, body=merged,
                headers=self._partition_header(merged.get(self.config.partition_key)),
            )
        except Exception as e:
            raise self._error("update", f"Failed to update {path}/{doc_id}", e, path=path, doc_id=doc_id)

        return payload or merged

    async def delete(self, path: str, doc_id: str) -> Dict[str, Any]:
        doc_link = f"{self._container_link(path)}/docs/{doc_id}"
        try:
            self._require_connected()

            partition_value = doc_id
            if self.config.partition_key != "id":
                existing = await self._find(path, doc_id)
                if existing is None:
                    return {"id": doc_id, "deleted": True}
                partition_value = existing.get(self.config.partition_key)

            await self._request(
                "DELETE", "docs", doc_link, doc_link, headers=self._partition_header(partition_value)
            )
        except CosmosRequestError as e:
            if e.status != 404:
                raise self._error("delete", f"Failed to delete {path}/{doc_id}", e, path=path, doc_id=doc_id)
            self.logger.debug("Document already absent", path=path, doc_id=doc_id)
        except Exception as e:
            raise self._error("delete", f"Failed to delete {path}/{doc_id}", e, path=path, doc_id=doc_id)

        return {"id": doc_id, "deleted": True}

    def _subscribe(self, subscription: Subscription, where: Optional[Sequence[Any]]) -> Callable[[], None]:
        if where is not None:
            build_cosmos_query(where)

        def on_result(data, error) -> None:
            if error is not None:
                subscription.deliver(None, self._snapshot_error(subscription, error))
            else:
                subscription.deliver(data, None)

        options = {"sleep": self._sleep} if self._sleep is not None else {}
        task = PollingTask(
            lambda: self.read(subscription.path, where),
            on_result,
            self.config.poll_interval_seconds,
            name=f"azure-poll-{subscription.path}",
            **options
        ).start()

        return task.cancel
