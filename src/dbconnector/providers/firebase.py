"""Cloud Firestore provider with Firebase Authentication."""

import asyncio
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

import aiohttp
from google.api_core.exceptions import GoogleAPICallError, NotFound, from_grpc_error
from google.auth.credentials import AnonymousCredentials
from google.cloud import firestore
from google.oauth2 import credentials as oauth2_credentials
from google.oauth2 import service_account

from .base import BaseProvider, Record, utc_now_iso
from ..auth.firebase_auth import AuthState, FirebaseAuthClient, FirebaseAuthError, user_from_account
from ..config.schema import FirebaseConfig
from ..core.errors import create_error, error_code
from ..core.query import to_firestore_filter
from ..core.subscriptions import Subscription
from ..utils.logging import log_async_execution_time

# Refresh ID tokens this many seconds before they expire
TOKEN_REFRESH_MARGIN = 60


def _stream_failure(reason) -> BaseException:
    """Exception for a terminated listen stream; gRPC hands over the failed call itself."""
    if isinstance(reason, GoogleAPICallError):
        return reason
    if isinstance(reason, Exception):
        return from_grpc_error(reason)
    return GoogleAPICallError(f"Firestore listen stream ended: {reason!r}")


class FirebaseProvider(BaseProvider):
    """Firestore documents with push-based Firebase auth state.

    ``connect()`` waits for the first auth-state event so ``current_user()``
    is meaningful as soon as it returns. The wait is unbounded unless
    ``auth_timeout_seconds`` is configured.
    """

    name = "firebase"
    config_model = FirebaseConfig

    def __init__(
        self,
        config: FirebaseConfig,
        session_store=None,
        client_factory: Optional[Callable[[Any], Any]] = None,
        http_session: Optional[aiohttp.ClientSession] = None,
        clock: Callable[[], float] = time.time,
        **kwargs
    ):
        """Initialize the Firebase provider.

        Args:
            config: Firebase configuration
            session_store: Token store owned by the connector
            client_factory: Builds a Firestore client from credentials
            http_session: Session used for Identity Toolkit calls
            clock: Epoch-seconds source used for token expiry
        """
        super().__init__(config, session_store, **kwargs)
        self._clock = clock
        self._refresh_lock = asyncio.Lock()
        self._client_factory = client_factory or self._build_client
        self._http = http_session
        self._owns_http = http_session is None
        self._client = None
        self._auth_client: Optional[FirebaseAuthClient] = None
        self.auth_state = AuthState()

    @property
    def client(self):
        return self._client

    def _build_client(self, credentials) -> firestore.Client:
        return firestore.Client(
            project=self.config.project_id,
            credentials=credentials,
            database=self.config.database,
        )

    def _credentials(self, id_token: Optional[str] = None):
        if self.config.credentials_path:
            return service_account.Credentials.from_service_account_file(self.config.credentials_path)
        if id_token:
            return oauth2_credentials.Credentials(token=id_token)
        return AnonymousCredentials()

    def _rebuild_client(self, id_token: Optional[str] = None) -> None:
        # Service-account clients act for the project, not the signed-in user
        if not self.config.credentials_path:
            self._client = self._client_factory(self._credentials(id_token))

    def on_auth_state_changed(self, listener) -> Callable[[], None]:
        """Register ``listener(user)`` for auth-state changes; returns an unsubscribe function."""
        return self.auth_state.on_auth_state_changed(listener)

    # Lifecycle

    @log_async_execution_time
    async def connect(self) -> None:
        loop = asyncio.get_running_loop()
        first_state: asyncio.Future = loop.create_future()

        def on_first_state(user):
            if not first_state.done():
                first_state.set_result(user)

        resolve_task = None
        unsubscribe = None
        try:
            if self._http is None:
                self._http = aiohttp.ClientSession()
            self._auth_client = FirebaseAuthClient(self.config.api_key, self._http)
            self._client = self._client_factory(self._credentials(self.session_store.get_token(self.name)))

            unsubscribe = self.auth_state.on_auth_state_changed(on_first_state)
            resolve_task = loop.create_task(self._resolve_initial_session(first_state))

            user = await asyncio.wait_for(first_state, timeout=self.config.auth_timeout_seconds)
        except asyncio.TimeoutError as e:
            raise self._error(
                "connect",
                f"Firebase auth state did not resolve within {self.config.auth_timeout_seconds}s",
                e,
            )
        except Exception as e:
            raise self._error("connect", "Failed to connect to Firebase", e)
        finally:
            if unsubscribe is not None:
                unsubscribe()
            if resolve_task is not None and not resolve_task.done():
                resolve_task.cancel()

        self._connected = True
        self.logger.info(
            "Firebase connected",
            project_id=self.config.project_id,
            signed_in=user is not None
        )

    async def _resolve_initial_session(self, first_state: asyncio.Future) -> None:
        """Restore the stored session, if any, and publish the first auth state."""
        try:
            token = await self._fresh_token()
            user = None

            if token:
                account = await self._auth_client.lookup(token)
                if account is None:
                    self.session_store.clear_token(self.name)
                    self._rebuild_client()
                else:
                    user = user_from_account(account)

            self.auth_state.set_user(user)
        except Exception as e:
            if not first_state.done():
                first_state.set_exception(e)

    async def close(self) -> None:
        await super().close()
        if self._owns_http and self._http is not None:
            await self._http.close()
            self._http = None
        if self._client is not None and hasattr(self._client, "close"):
            self._client.close()
        self._client = None

    # Auth

    async def sign_in(self) -> Dict[str, Any]:
        try:
            self._require_connected()
            result = await self._auth_client.sign_up_anonymously()
            token = result["idToken"]
            user = user_from_account(result)
        except Exception as e:
            raise self._error("auth", "Firebase authentication failed", e)

        self._store_session(token, result.get("refreshToken"), result.get("expiresIn"))
        self._rebuild_client(token)
        self.auth_state.set_user(user)

        self.logger.info("Firebase sign-in succeeded", user_id=user["id"])
        return {"user": user, "token": token}

    def _store_session(self, id_token: str, refresh_token: Optional[str], expires_in) -> None:
        self.session_store.set_token(self.name, id_token)
        if refresh_token and expires_in:
            self.session_store.set_refresh(self.name, refresh_token, self._clock() + float(expires_in))

    async def _fresh_token(self) -> Optional[str]:
        """Stored ID token, exchanged for a new one when it is about to expire."""
        async with self._refresh_lock:
            token = self.session_store.get_token(self.name)
            refresh_token = self.session_store.get_refresh(self.name)
            expires_at = self.session_store.get_expiry(self.name)
            if not token or not refresh_token or expires_at is None:
                return token
            if self._clock() < expires_at - TOKEN_REFRESH_MARGIN:
                return token

            try:
                result = await self._auth_client.refresh(refresh_token)
            except FirebaseAuthError as e:
                if e.status == 400:
                    # Refresh token revoked or expired: the session is over
                    self.logger.info("Firebase session expired", reason=e.reason)
                    self.session_store.clear_token(self.name)
                    self._rebuild_client()
                    self.auth_state.set_user(None)
                raise

            token = result["id_token"]
            self._store_session(token, result.get("refresh_token", refresh_token), result.get("expires_in", 3600))
            self._rebuild_client(token)
            self.logger.info("Firebase ID token refreshed", user_id=result.get("user_id"))
            return token

    async def sign_out(self) -> None:
        # Firebase sessions are client-side; dropping the token ends them
        self.session_store.clear_token(self.name)
        try:
            self._require_connected()
            self._rebuild_client()
        except Exception as e:
            raise self._error("signout", "Firebase sign out failed", e)
        finally:
            self.auth_state.set_user(None)

        self.logger.info("Firebase sign-out completed")

    def current_user(self) -> Optional[Dict[str, Any]]:
        return self.auth_state.current_user

    # Data

    def _query(self, path: str, where: Optional[Sequence[Any]] = None):
        query = self._client.collection(path)
        if where is not None:
            query = query.where(filter=to_firestore_filter(where))
        return query

    @staticmethod
    def _to_record(snapshot) -> Record:
        return {**(snapshot.to_dict() or {}), "id": snapshot.id}

    async def read(self, path: str, where: Optional[Sequence[Any]] = None) -> List[Record]:
        try:
            self._require_connected()
            await self._fresh_token()
            query = self._query(path, where)
            snapshots = await asyncio.to_thread(lambda: list(query.stream()))
            return [self._to_record(snapshot) for snapshot in snapshots]
        except Exception as e:
            raise self._error("read", f"Failed to read from {path}", e, path=path, where=where)

    async def write(self, path: str, doc_id: str, data: Dict[str, Any]) -> Record:
        record = {**data, "updated_at": utc_now_iso()}
        try:
            self._require_connected()
            await self._fresh_token()
            document = self._client.collection(path).document(doc_id)
            await asyncio.to_thread(document.set, record, merge=True)
        except Exception as e:
            raise self._error("write", f"Failed to write to {path}/{doc_id}", e, path=path, doc_id=doc_id)

        return {**record, "id": doc_id}

    async def update(self, path: str, doc_id: str, data: Dict[str, Any]) -> Record:
        record = {**data, "updated_at": utc_now_iso()}
        try:
            self._require_connected()
            await self._fresh_token()
            document = self._client.collection(path).document(doc_id)
            await asyncio.to_thread(document.update, record)
        except Exception as e:
            raise self._error("update", f"Failed to update {path}/{doc_id}", e, path=path, doc_id=doc_id)

        return {**record, "id": doc_id}

    async def delete(self, path: str, doc_id: str) -> Dict[str, Any]:
        try:
            self._require_connected()
            await self._fresh_token()
            document = self._client.collection(path).document(doc_id)
            await asyncio.to_thread(document.delete)
        except NotFound:
            self.logger.debug("Document already absent", path=path, doc_id=doc_id)
        except Exception as e:
            raise self._error("delete", f"Failed to delete {path}/{doc_id}", e, path=path, doc_id=doc_id)

        return {"id": doc_id, "deleted": True}

    def _subscribe(self, subscription: Subscription, where: Optional[Sequence[Any]]) -> Callable[[], None]:
        loop = asyncio.get_running_loop()
        query = self._query(subscription.path, where)

        # Firestore invokes this on its watch thread
        def on_event(docs, changes, read_time):
            if subscription.closed:
                return

            try:
                data, error = [self._to_record(doc) for doc in docs], None
            except Exception as e:
                data, error = None, self._snapshot_error(subscription, e)

            post(data, error)

        # Called on the gRPC thread once the listen stream fails for good
        def on_stream_done(reason) -> None:
            if subscription.closed:
                return
            self.logger.warning("Firestore listen stream terminated", path=subscription.path, reason=str(reason))
            post(None, self._snapshot_error(subscription, _stream_failure(reason)))

        def post(data, error) -> None:
            try:
                loop.call_soon_threadsafe(subscription.deliver, data, error)
            except RuntimeError:
                self.logger.debug("Event loop closed; dropping snapshot", path=subscription.path)

        watch = query.on_snapshot(on_event)
        if watch is None:
            raise create_error(
                error_code(self.name, "snapshot_setup"),
                f"Firestore returned no watch for {subscription.path}",
                self.name,
                {"path": subscription.path},
            )

        # Watch has no error callback; a terminal failure only shows on its bidi RPC
        rpc = getattr(watch, "_rpc", None)
        if rpc is not None:
            rpc.add_done_callback(on_stream_done)

        return watch.unsubscribe
