"""Supabase provider: PostgREST tables with channel-based realtime."""

import asyncio
from typing import Any, Callable, Dict, List, Optional, Sequence, Set

import aiohttp
from postgrest.exceptions import APIError
from supabase import AsyncClient, acreate_client

from .base import BaseProvider, Record, utc_now_iso
from ..config.schema import SupabaseConfig
from ..core.query import apply_postgrest_filter, to_postgrest_filter
from ..core.subscriptions import Subscription
from ..utils.logging import log_async_execution_time


def _api_details(error: Exception) -> Dict[str, Any]:
    """PostgREST error fields worth keeping in the error context."""
    if isinstance(error, APIError):
        return {"postgrest_code": error.code, "hint": error.hint}
    return {}


def _to_dict(obj) -> Optional[Dict[str, Any]]:
    if obj is None:
        return None
    if isinstance(obj, dict):
        return dict(obj)
    if hasattr(obj, "model_dump"):
        return obj.model_dump(mode="json")
    return dict(vars(obj))


class SupabaseProvider(BaseProvider):
    """Supabase tables through the async client.

    Realtime channels only announce changes, so every notification triggers
    a full re-read of the table before the callback runs.
    """

    name = "supabase"
    config_model = SupabaseConfig

    def __init__(
        self,
        config: SupabaseConfig,
        session_store=None,
        client: Optional[AsyncClient] = None,
        http_session: Optional[aiohttp.ClientSession] = None,
        **kwargs
    ):
        """Initialize the Supabase provider.

        Args:
            config: Supabase configuration
            session_store: Token store owned by the connector
            client: Pre-built async client (created on connect otherwise)
            http_session: Session used for the connect probe
        """
        super().__init__(config, session_store, **kwargs)
        self.client: Optional[AsyncClient] = client
        self._http = http_session
        self._owns_http = http_session is None
        self._background: Set[asyncio.Task] = set()

    # Lifecycle

    @log_async_execution_time
    async def connect(self) -> None:
        try:
            await self._probe()
            if self.client is None:
                self.client = await acreate_client(self.config.url, self.config.anon_key)
        except Exception as e:
            raise self._error("connect", "Failed to connect to Supabase", e, url=self.config.url)

        self._connected = True
        self.logger.info("Supabase connected", url=self.config.url)

    async def _probe(self) -> None:
        """Check the auth service health endpoint answers for this key."""
        if self._http is None:
            self._http = aiohttp.ClientSession()

        headers = {"apikey": self.config.anon_key}
        async with self._http.get(f"{self.config.url}/auth/v1/health", headers=headers) as response:
            if response.status != 200:
                body = await response.text()
                raise ConnectionError(f"Supabase health probe failed: {response.status} {body}")

    async def close(self) -> None:
        await super().close()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        if self._owns_http and self._http is not None:
            await self._http.close()
            self._http = None

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    # Auth

    async def sign_in(self) -> Dict[str, Any]:
        try:
            self._require_connected()
            response = await self.client.auth.sign_in_anonymously()
            token = response.session.access_token
            user = _to_dict(response.user)
        except Exception as e:
            raise self._error("auth", "Supabase authentication failed", e)

        self.session_store.set_token(self.name, token)
        self.logger.info("Supabase sign-in succeeded", user_id=user.get("id"))
        return {"user": user, "token": token}

    async def sign_out(self) -> None:
        try:
            self._require_connected()
            await self.client.auth.sign_out()
        except Exception as e:
            raise self._error("signout", "Supabase sign out failed", e)
        finally:
            self.session_store.clear_token(self.name)

        self.logger.info("Supabase sign-out completed")

    async def current_user(self) -> Optional[Dict[str, Any]]:
        try:
            self._require_connected()
            response = await self.client.auth.get_user()
        except Exception as e:
            raise self._error("auth", "Failed to resolve the current Supabase user", e)

        if response is None:
            return None
        return _to_dict(response.user)

    # Data

    async def read(self, path: str, where: Optional[Sequence[Any]] = None) -> List[Record]:
        try:
            self._require_connected()
            query = self.client.table(path).select("*")
            if where is not None:
                query = apply_postgrest_filter(query, where)
            response = await query.execute()
            return list(response.data or [])
        except Exception as e:
            raise self._error(
                "read", f"Failed to read from {path}", e, path=path, where=where, **_api_details(e)
            )

    async def write(self, path: str, doc_id: str, data: Dict[str, Any]) -> Record:
        record = {**data, "id": doc_id, "updated_at": utc_now_iso()}
        try:
            self._require_connected()
            response = await self.client.table(path).upsert(record).execute()
        except Exception as e:
            raise self._error(
                "write", f"Failed to write to {path}/{doc_id}", e, path=path, doc_id=doc_id, **_api_details(e)
            )

        return response.data[0] if response.data else record

    async def update(self, path: str, doc_id: str, data: Dict[str, Any]) -> Record:
        changes = {**data, "id": doc_id, "updated_at": utc_now_iso()}
        try:
            self._require_connected()
            response = await self.client.table(path).update(changes).eq("id", doc_id).execute()
            if not response.data:
                raise LookupError(f"Row {doc_id} not found in {path}")
        except Exception as e:
            raise self._error(
                "update", f"Failed to update {path}/{doc_id}", e, path=path, doc_id=doc_id, **_api_details(e)
            )

        return response.data[0]

    async def delete(self, path: str, doc_id: str) -> Dict[str, Any]:
        # PostgREST reports zero affected rows, not an error, for a missing id
        try:
            self._require_connected()
            await self.client.table(path).delete().eq("id", doc_id).execute()
        except Exception as e:
            raise self._error(
                "delete", f"Failed to delete {path}/{doc_id}", e, path=path, doc_id=doc_id, **_api_details(e)
            )

        return {"id": doc_id, "deleted": True}

    def _subscribe(self, subscription: Subscription, where: Optional[Sequence[Any]]) -> Callable[[], None]:
        path = subscription.path
        if where is not None:
            to_postgrest_filter(where)
        lock = asyncio.Lock()
        pending: Set[asyncio.Task] = set()

        async def refresh() -> None:
            # Serialized so snapshots arrive in notification order
            async with lock:
                if subscription.closed:
                    return
                try:
                    data = await self.read(path, where)
                except Exception as e:
                    subscription.deliver(None, self._snapshot_error(subscription, e))
                    return
                subscription.deliver(data, None)

        def schedule_refresh() -> None:
            if subscription.closed:
                return
            task = self._spawn(refresh())
            pending.add(task)
            task.add_done_callback(pending.discard)

        def on_change(payload) -> None:
            self.logger.debug("Realtime change received", table=path)
            schedule_refresh()

        # Join results and later channel drops only arrive through this callback
        def on_status(status, error=None) -> None:
            if subscription.closed:
                return
            state = getattr(status, "value", status)
            if state == "SUBSCRIBED":
                # Initial snapshot, and a catch-up read after every rejoin
                schedule_refresh()
                return

            self.logger.warning("Realtime channel not subscribed", table=path, status=state)
            failure = error if isinstance(error, Exception) else ConnectionError(
                f"Realtime channel for {path} reported {state}"
            )
            snapshot_error = self._snapshot_error(subscription, failure)
            snapshot_error.context["channel_status"] = state
            subscription.deliver(None, snapshot_error)

        async def join() -> None:
            try:
                await channel.subscribe(callback=on_status)
            except Exception as e:
                subscription.deliver(None, self._snapshot_error(subscription, e))

        channel = self.client.channel(f"{path}_changes")
        channel.on_postgres_changes(
            "*",
            schema=self.config.schema_name,
            table=path,
            callback=on_change,
        )
        joining = self._spawn(join())

        def teardown() -> None:
            joining.cancel()
            for task in list(pending):
                task.cancel()
            self._spawn(self._remove_channel(channel, path))

        return teardown

    async def _remove_channel(self, channel, path: str) -> None:
        try:
            await self.client.remove_channel(channel)
        except Exception as e:
            self.logger.warning("Failed to remove realtime channel", table=path, error=str(e))
