"""HTTP Remote Data Channel for a PostgREST-style backend with object storage.

Reads and writes go to ``/rest/v1/<table>``; objects to
``/storage/v1/object/<bucket>/<path>``. Live feeds are implemented by polling
for rows after the last delivered ``(created_at, id)`` position, which only
observes inserts.
"""

import asyncio
from typing import Any, Awaitable, Callable

import httpx

from ..errors import ChannelError, RejectedWriteError, TransientChannelError
from ..logging_config import get_logger
from ..models import ChangeEvent, ChangeType
from .base import ChangeHandler, ErrorHandler, Subscription
from .filters import Filters, Order, normalize_filters, normalize_value

logger = get_logger(__name__)


def _literal(value: Any) -> str:
    if value is True:
        return "true"
    if value is False:
        return "false"
    return str(value)


def encode_filters(filters: Filters | None) -> list[tuple[str, str]]:
    """Translate filters into PostgREST query parameters."""
    params = []
    for condition in normalize_filters(filters):
        if condition.op == "in":
            values = ",".join(_literal(v) for v in condition.value)
            params.append((condition.column, f"in.({values})"))
        elif condition.value is None and condition.op == "eq":
            params.append((condition.column, "is.null"))
        elif condition.value is None and condition.op == "neq":
            params.append((condition.column, "not.is.null"))
        else:
            params.append((condition.column, f"{condition.op}.{_literal(condition.value)}"))
    return params


class RestChannel:
    """Remote Data Channel over HTTP (httpx) with polling subscriptions."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        access_token: str | None = None,
        timeout: float = 10.0,
        poll_interval: float = 3.0,
        poll_limit: int = 50,
        max_poll_failures: int = 5,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._access_token = access_token or api_key
        self._timeout = timeout
        self._poll_interval = poll_interval
        self._poll_limit = poll_limit
        self._max_poll_failures = max_poll_failures
        self._client = client
        self._owns_client = client is None
        self._sleep = sleep
        self._pollers: dict[str, asyncio.Task] = {}

    @property
    def active_subscriptions(self) -> int:
        return len(self._pollers)

    async def init(self) -> None:
        """Create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                headers={
                    "apikey": self._api_key,
                    "Authorization": f"Bearer {self._access_token}",
                },
                timeout=self._timeout,
            )
            self._owns_client = True

    async def close(self) -> None:
        """Stop pollers and close the HTTP client."""
        for task in self._pollers.values():
            task.cancel()
        for task in list(self._pollers.values()):
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._pollers.clear()

        if self._client and self._owns_client:
            await self._client.aclose()
        self._client = None

    # Tables
    async def query(
        self,
        table: str,
        filters: Filters | None = None,
        order: Order | None = None,
        limit: int | None = None,
    ) -> list[dict]:
        """GET rows matching filters."""
        params = [("select", "*")] + encode_filters(filters)
        if order is not None:
            params.append(("order", f"{order.column}.{'asc' if order.ascending else 'desc'}"))
        if limit is not None:
            params.append(("limit", str(limit)))

        response = await self._request("GET", f"/rest/v1/{table}", params=params)
        return response.json()

    async def insert(self, table: str, record: dict) -> dict:
        """POST a row and return the server representation."""
        response = await self._request(
            "POST",
            f"/rest/v1/{table}",
            json=self._payload(record),
            headers={"Prefer": "return=representation"},
        )
        rows = response.json()
        if not rows:
            raise RejectedWriteError(f"Insert into {table} returned no row")
        return rows[0] if isinstance(rows, list) else rows

    async def upsert(
        self, table: str, record: dict, conflict_keys: tuple[str, ...]
    ) -> None:
        """POST with merge-duplicates resolution on conflict_keys."""
        await self._request(
            "POST",
            f"/rest/v1/{table}",
            params=[("on_conflict", ",".join(conflict_keys))],
            json=self._payload(record),
            headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
        )

    async def update(self, table: str, filters: Filters, changes: dict) -> list[dict]:
        """PATCH matching rows."""
        response = await self._request(
            "PATCH",
            f"/rest/v1/{table}",
            params=encode_filters(filters),
            json=self._payload(changes),
            headers={"Prefer": "return=representation"},
        )
        return response.json()

    async def delete(self, table: str, filters: Filters) -> list[dict]:
        """DELETE matching rows."""
        response = await self._request(
            "DELETE",
            f"/rest/v1/{table}",
            params=encode_filters(filters),
            headers={"Prefer": "return=representation"},
        )
        return response.json()

    # Subscriptions
    async def subscribe(
        self,
        table: str,
        filters: Filters | None,
        handler: ChangeHandler,
        on_error: ErrorHandler | None = None,
    ) -> Subscription:
        """Start polling for new rows. Fails fast if the backend is unreachable."""
        params = [("select", "*")] + encode_filters(filters)
        params += [("order", "created_at.desc,id.desc"), ("limit", "1")]
        response = await self._request("GET", f"/rest/v1/{table}", params=params)
        latest = response.json()
        cursor = (latest[0]["created_at"], str(latest[0]["id"])) if latest else None

        subscription = Subscription(
            table=table, filters=tuple(sorted(dict(filters or {}).items()))
        )
        self._pollers[subscription.id] = asyncio.create_task(
            self._poll(subscription, filters, handler, on_error, cursor)
        )
        logger.debug("Polling %s every %.1fs", table, self._poll_interval)
        return subscription

    async def unsubscribe(self, subscription: Subscription) -> None:
        """Stop the poller behind a handle."""
        task = self._pollers.pop(subscription.id, None)
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _rows_after(
        self, table: str, filters: Filters | None, cursor: tuple[str, str] | None
    ) -> list[dict]:
        """Rows strictly after (created_at, id), in that order."""
        params = [("select", "*")] + encode_filters(filters)
        if cursor is not None:
            created_at, row_id = cursor
            params.append(
                (
                    "or",
                    f'(created_at.gt."{created_at}",'
                    f'and(created_at.eq."{created_at}",id.gt."{row_id}"))',
                )
            )
        params += [("order", "created_at.asc,id.asc"), ("limit", str(self._poll_limit))]
        response = await self._request("GET", f"/rest/v1/{table}", params=params)
        return response.json()

    async def _poll(
        self,
        subscription: Subscription,
        filters: Filters | None,
        handler: ChangeHandler,
        on_error: ErrorHandler | None,
        cursor: tuple[str, str] | None,
    ) -> None:
        failures = 0
        backlog = False
        while True:
            # A full page means more rows are waiting
            if not backlog:
                await self._sleep(self._poll_interval)

            try:
                rows = await self._rows_after(subscription.table, filters, cursor)
            except ChannelError as e:
                failures += 1
                backlog = False
                logger.warning(
                    "Poll of %s failed (%s/%s): %s",
                    subscription.table,
                    failures,
                    self._max_poll_failures,
                    e,
                )
                if isinstance(e, RejectedWriteError) or failures >= self._max_poll_failures:
                    self._pollers.pop(subscription.id, None)
                    if on_error is not None:
                        await on_error(e)
                    return
                continue

            failures = 0
            backlog = len(rows) >= self._poll_limit
            for row in rows:
                position = (row["created_at"], str(row["id"]))
                if cursor is not None and position <= cursor:
                    continue
                cursor = position

                try:
                    await handler(
                        ChangeEvent(table=subscription.table, type=ChangeType.INSERT, new=row)
                    )
                except Exception as e:
                    logger.error("Error in change handler for %s: %s", subscription.id, e)

    # Storage
    async def upload_blob(
        self, bucket: str, path: str, data: bytes, content_type: str | None = None
    ) -> str:
        """Upload an object and return its public URL."""
        await self._request(
            "POST",
            f"/storage/v1/object/{bucket}/{path}",
            content=data,
            headers={
                "Content-Type": content_type or "application/octet-stream",
                "x-upsert": "false",
            },
        )
        return f"{self._base_url}/storage/v1/object/public/{bucket}/{path}"

    async def remove_blob(self, bucket: str, path: str) -> None:
        """Delete an object."""
        await self._request(
            "DELETE", f"/storage/v1/object/{bucket}", json={"prefixes": [path]}
        )

    # Helpers
    @staticmethod
    def _payload(record: dict) -> dict:
        return {key: normalize_value(value) for key, value in record.items()}

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        if self._client is None:
            raise RuntimeError("RestChannel not initialized")

        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise TransientChannelError(f"{method} {url} timed out") from e
        except httpx.TransportError as e:
            raise TransientChannelError(f"{method} {url} failed: {e}") from e

        if response.status_code == 429 or response.status_code >= 500:
            raise TransientChannelError(
                f"{method} {url} returned {response.status_code}"
            )
        if response.status_code >= 400:
            raise RejectedWriteError(
                f"{method} {url} rejected ({response.status_code}): {self._error_text(response)}"
            )
        return response

    @staticmethod
    def _error_text(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text
        if isinstance(body, dict):
            return str(body.get("message") or body.get("error") or body)
        return str(body)
