"""Subscription multiplexer - live event streams over the shared connection.

Every ``collection_update`` notification read by the transport flows through
``SubscriptionRegistry._on_notification`` and is fanned out to each
subscription registered for that collection. One dispatch core serves all
payload types: a subscription may carry a ``decode`` callable that turns the
raw ``fields`` value into a typed item.

Usage:
    sub = await registry.subscribe("app.stats", decode=decode_model_list(AppStats))
    async for stats in sub:
        ...
    sub.close()
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections import deque
from collections.abc import AsyncIterator, Callable
from enum import Enum
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from pydantic import BaseModel, ValidationError

from ..errors import ConnectionLostError, TrueNASError
from ..protocol.messages import COLLECTION_UPDATE, CollectionUpdate, Method, Notification

if TYPE_CHECKING:
    from .transport import ClientTransport

logger = logging.getLogger(__name__)

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)

Decoder = Callable[[Any], T]
UpdateListener = Callable[[CollectionUpdate], None]


class OverflowPolicy(str, Enum):
    """What happens when a subscriber's buffer is full.

    BLOCK waits on the shared read loop: while it waits, no other response
    or event is dispatched. A stalled consumer of a busy stream therefore
    delays every other call by up to ``overflow_timeout`` per event.
    """

    DROP_OLDEST = "drop_oldest"  # Evict the oldest buffered event
    BLOCK = "block"  # Wait up to overflow_timeout for space, then drop the new event


class Subscription(Generic[T]):
    """A live event stream owned by one caller.

    Iterate with ``async for``; iteration ends once the subscription is
    closed (by the caller, the client, or a lost connection). ``close()`` is
    idempotent and safe to call from any task, any number of times.
    """

    def __init__(
        self,
        collection: str,
        params: Any = None,
        *,
        decode: Decoder[T] | None = None,
        maxsize: int = 100,
        policy: OverflowPolicy = OverflowPolicy.DROP_OLDEST,
        overflow_timeout: float = 1.0,
    ):
        if maxsize < 1:
            raise ValueError("Subscription buffer size must be at least 1")

        self.collection = collection
        self.params = params
        self.event_name = collection if params is None else f"{collection}:{json.dumps(params)}"
        self.server_id: Any = None

        self.dropped = 0
        self.skipped = 0
        self.error: BaseException | None = None

        self._decode = decode
        self._maxsize = maxsize
        self._policy = policy
        self._overflow_timeout = overflow_timeout
        self._buffer: deque[T] = deque()
        self._readable = asyncio.Event()
        self._writable = asyncio.Event()
        self._writable.set()
        self._closed = False
        self._on_close: Callable[[Subscription[Any]], asyncio.Task[None] | None] | None = None
        self._unsubscribe_task: asyncio.Task[None] | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        """Number of buffered, unread events."""
        return len(self._buffer)

    def close(self) -> None:
        """Stop the stream and release server-side interest.

        Buffered events are discarded. The server-side unsubscribe runs in
        the background; use ``aclose()`` to wait for it.
        """
        if self._closed:
            return
        self._finish(discard=True)
        if self._on_close is not None:
            self._unsubscribe_task = self._on_close(self)

    async def aclose(self) -> None:
        """Close and wait for the server-side unsubscribe to finish."""
        self.close()
        if self._unsubscribe_task is not None:
            await asyncio.shield(self._unsubscribe_task)

    def __aiter__(self) -> AsyncIterator[T]:
        return self

    async def __anext__(self) -> T:
        while not self._buffer:
            if self._closed:
                raise StopAsyncIteration
            self._readable.clear()
            await self._readable.wait()

        item = self._buffer.popleft()
        self._writable.set()
        return item

    async def __aenter__(self) -> Subscription[T]:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    async def _deliver(self, raw: Any) -> None:
        """Decode and buffer one event (called only from the dispatch path)."""
        if self._closed:
            return

        if self._decode is not None:
            try:
                item = self._decode(raw)
            except Exception as e:
                self.skipped += 1
                logger.warning(f"Skipping malformed {self.collection} event: {e}")
                return
        else:
            item = raw

        if len(self._buffer) >= self._maxsize:
            if self._policy == OverflowPolicy.DROP_OLDEST:
                self._buffer.popleft()
                self._record_drop("oldest")
            elif not await self._wait_for_space():
                self._record_drop("newest")
                return
            if self._closed:
                return

        self._buffer.append(item)
        if len(self._buffer) >= self._maxsize:
            self._writable.clear()
        self._readable.set()

    async def _wait_for_space(self) -> bool:
        try:
            async with asyncio.timeout(self._overflow_timeout):
                while len(self._buffer) >= self._maxsize and not self._closed:
                    self._writable.clear()
                    await self._writable.wait()
        except TimeoutError:
            return False
        return True

    def _record_drop(self, which: str) -> None:
        self.dropped += 1
        logger.warning(
            f"Subscription {self.collection} buffer full ({self._maxsize}); "
            f"dropped {which} event (total dropped: {self.dropped})"
        )

    def _finish(self, discard: bool, error: BaseException | None = None) -> None:
        """End the stream exactly once."""
        if self._closed:
            return
        self._closed = True
        self.error = error
        if discard:
            self._buffer.clear()
        self._readable.set()
        self._writable.set()


class SubscriptionRegistry:
    """Routes collection updates from one transport to its subscribers.

    Holds two kinds of registrations per collection:
    - Subscriptions: caller-owned buffered streams
    - Listeners: synchronous callbacks run on the dispatch path (used
      internally for job tracking, where no event may be dropped)
    """

    def __init__(self, transport: ClientTransport):
        self._transport = transport
        # Keyed by event name (collection plus params)
        self._subscriptions: dict[str, list[Subscription[Any]]] = {}
        self._listeners: dict[str, list[UpdateListener]] = {}
        transport.add_notification_handler(self._on_notification)
        transport.add_disconnect_handler(self._on_disconnect)

    @property
    def active(self) -> list[Subscription[Any]]:
        return [sub for subs in self._subscriptions.values() for sub in subs]

    async def subscribe(
        self,
        collection: str,
        params: Any = None,
        *,
        decode: Decoder[T] | None = None,
        maxsize: int | None = None,
    ) -> Subscription[T]:
        """Subscribe to a collection.

        Returns as soon as the server acknowledges; events are then buffered
        until read.

        Raises:
            ValueError: If collection is empty
            ConnectionLostError / RemoteError / CallTimeoutError: From the subscribe call
        """
        if not collection:
            raise ValueError("Collection name must be a non-empty string")

        config = self._transport.config
        sub: Subscription[T] = Subscription(
            collection,
            params,
            decode=decode,
            maxsize=maxsize or config.subscription_buffer,
            policy=config.overflow_policy,
            overflow_timeout=config.overflow_timeout,
        )

        # Register before the request so events pushed right after the ack land
        self._subscriptions.setdefault(sub.event_name, []).append(sub)
        try:
            result = await self._transport.request(Method.CORE_SUBSCRIBE, [sub.event_name])
        except BaseException:
            self._remove(sub)
            sub._finish(discard=True)
            raise

        sub.server_id = result if isinstance(result, str) else sub.event_name
        sub._on_close = self._close_subscription
        logger.debug(f"Subscribed to {sub.event_name} (id={sub.server_id})")
        return sub

    async def attach(self, collection: str, listener: UpdateListener) -> Callable[[], None]:
        """Subscribe server-side and route updates to a synchronous listener.

        Returns:
            Detach function (local only; server interest ends with the connection)
        """
        self._listeners.setdefault(collection, []).append(listener)
        try:
            await self._transport.request(Method.CORE_SUBSCRIBE, [collection])
        except BaseException:
            self._detach(collection, listener)
            raise

        def detach() -> None:
            self._detach(collection, listener)

        return detach

    async def close_all(self) -> None:
        """End every subscription (used when the client closes).

        Events already buffered stay readable. While the connection is up,
        server-side interest is released with ``core.unsubscribe``. Internal
        listeners stay attached; they end with the connection.
        """
        subs = self.active
        self._subscriptions.clear()

        tasks: list[asyncio.Task[None]] = []
        for sub in subs:
            sub._finish(discard=False)
            if self._transport.is_connected:
                sub._unsubscribe_task = asyncio.create_task(self._unsubscribe(sub))
                tasks.append(sub._unsubscribe_task)
        if tasks:
            await asyncio.gather(*tasks)

    async def _on_notification(self, notification: Notification) -> None:
        if notification.method != COLLECTION_UPDATE:
            logger.debug(f"Ignoring notification {notification.method}")
            return

        try:
            update = CollectionUpdate.model_validate(notification.params)
        except ValidationError as e:
            logger.warning(f"Malformed collection update: {e}")
            return

        for listener in list(self._listeners.get(update.collection, ())):
            try:
                listener(update)
            except Exception:
                logger.exception(f"Error in listener for {update.collection}")

        subscribers = self._subscribers_for(update.collection)
        if not subscribers:
            return
        if not update.has_fields():
            logger.debug(f"{update.msg} update for {update.collection} carries no fields")
            return

        for sub in subscribers:
            await sub._deliver(update.fields)

    def _subscribers_for(self, collection: str) -> list[Subscription[Any]]:
        """Subscriptions an update for ``collection`` belongs to.

        ``name:<params>`` updates go only to the registration with that exact
        event name; plain ``name`` updates go to every registration of ``name``.
        """
        if ":" in collection:
            return list(self._subscriptions.get(collection, ()))
        return [sub for sub in self.active if sub.collection == collection]

    def _on_disconnect(self, error: BaseException | None) -> None:
        lost = ConnectionLostError(f"Connection lost: {error}") if error else None
        for sub in self.active:
            sub._finish(discard=False, error=lost)
        self._subscriptions.clear()
        self._listeners.clear()

    def _close_subscription(self, sub: Subscription[Any]) -> asyncio.Task[None] | None:
        self._remove(sub)
        if not self._transport.is_connected:
            return None
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"No running loop; skipping server unsubscribe for {sub.event_name}")
            return None
        return loop.create_task(self._unsubscribe(sub))

    async def _unsubscribe(self, sub: Subscription[Any]) -> None:
        try:
            await self._transport.request(Method.CORE_UNSUBSCRIBE, [sub.server_id])
            logger.debug(f"Unsubscribed from {sub.event_name}")
        except ConnectionLostError:
            # Server-side interest died with the connection
            logger.debug(f"Connection gone before unsubscribing {sub.event_name}")
        except TrueNASError as e:
            logger.warning(f"Failed to unsubscribe from {sub.event_name}: {e}")

    def _remove(self, sub: Subscription[Any]) -> None:
        subs = self._subscriptions.get(sub.event_name)
        if subs and sub in subs:
            subs.remove(sub)
            if not subs:
                del self._subscriptions[sub.event_name]

    def _detach(self, collection: str, listener: UpdateListener) -> None:
        listeners = self._listeners.get(collection)
        if listeners and listener in listeners:
            listeners.remove(listener)


def decode_model(model: type[M]) -> Decoder[M]:
    """Build a decoder validating each event into ``model``."""

    def decode(raw: Any) -> M:
        if isinstance(raw, (str, bytes)):
            return model.model_validate_json(raw)
        return model.model_validate(raw)

    return decode


def decode_model_list(model: type[M]) -> Decoder[list[M]]:
    """Build a decoder for events whose fields are a list of ``model``."""
    item = decode_model(model)

    def decode(raw: Any) -> list[M]:
        if isinstance(raw, (str, bytes)):
            raw = json.loads(raw)
        if not isinstance(raw, list):
            raise TypeError(f"Expected a list, got {type(raw).__name__}")
        return [item(entry) for entry in raw]

    return decode
