"""Cancellation tokens for client requests.

A request runs under two cancellation sources: the caller's
``CancelToken`` and an internal timeout.  ``run_cancellable`` merges them
and records which one fired, so a timeout surfaces as a timeout error
while a caller cancellation surfaces as an aborted response.

``AbortRegistry`` tracks one token per key (for example per in-flight
request) so a client can abort a single request, or everything at
dispose time.  Aborting a key that is not registered yet is remembered
and applied when the key registers.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

logger = logging.getLogger("fme_export.api.cancellation")

T = TypeVar("T")

CancelCallback = Callable[[str | None], None]


class RequestCancelled(Exception):
    """Raised when a request is aborted before it completes.

    Attributes:
        reason: Reason given by whoever cancelled.
        timed_out: ``True`` when the internal timeout fired.
    """

    def __init__(self, reason: str | None = None, *, timed_out: bool = False) -> None:
        self.reason = reason
        self.timed_out = timed_out
        super().__init__(reason or ("timeout" if timed_out else "cancelled"))


class CancelToken:
    """One-shot cancellation signal."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._callbacks: list[CancelCallback] = []
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str | None = None) -> bool:
        """Fire the token; returns ``False`` if it had already fired."""
        if self._event.is_set():
            return False
        self.reason = reason
        self._event.set()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback(reason)
            except Exception:
                logger.exception("Cancel callback failed")
        return True

    async def wait(self) -> str | None:
        await self._event.wait()
        return self.reason

    def add_callback(self, callback: CancelCallback) -> Callable[[], None]:
        """Call *callback* on cancel (immediately if already cancelled).

        Returns a function that unregisters the callback.
        """
        if self.cancelled:
            callback(self.reason)
            return _noop
        self._callbacks.append(callback)

        def remove() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return remove

    def link(self, parent: CancelToken) -> Callable[[], None]:
        """Cancel this token whenever *parent* is cancelled."""
        return parent.add_callback(self.cancel)

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise RequestCancelled(self.reason)


class AbortRegistry:
    """Keyed cancel tokens with deferred aborts."""

    def __init__(self) -> None:
        self._tokens: dict[str, CancelToken] = {}
        self._pending: dict[str, str | None] = {}

    def __len__(self) -> int:
        return len(self._tokens)

    def __contains__(self, key: object) -> bool:
        return key in self._tokens

    def register(self, key: str, token: CancelToken | None = None) -> CancelToken:
        """Register *token* (or a new one) under *key*.

        A previous token under the same key is cancelled as superseded.
        """
        token = token or CancelToken()
        previous = self._tokens.get(key)
        if previous is not None and previous is not token:
            previous.cancel("superseded")
        self._tokens[key] = token
        if key in self._pending:
            token.cancel(self._pending.pop(key))
        return token

    def release(self, key: str, token: CancelToken | None = None) -> None:
        """Forget *key*, only if it still maps to *token* when one is given."""
        current = self._tokens.get(key)
        if current is not None and (token is None or current is token):
            del self._tokens[key]
        self._pending.pop(key, None)

    def abort(self, key: str, reason: str | None = None) -> bool:
        """Cancel the token under *key*; remember the abort if none exists yet."""
        token = self._tokens.pop(key, None)
        if token is None:
            self._pending[key] = reason
            return False
        token.cancel(reason)
        return True

    def link_external(self, key: str, signal: CancelToken) -> Callable[[], None]:
        """Abort *key* when the external *signal* fires."""
        token = self._tokens.get(key) or self.register(key)
        return token.link(signal)

    def abort_all(self, reason: str | None = None) -> int:
        tokens = list(self._tokens.values())
        self._tokens.clear()
        self._pending.clear()
        for token in tokens:
            token.cancel(reason)
        return len(tokens)


async def run_cancellable(
    operation: Callable[[CancelToken], Awaitable[T]],
    *,
    signal: CancelToken | None = None,
    timeout: float | None = None,
    token: CancelToken | None = None,
) -> T:
    """Run *operation* until it finishes, *signal* fires, or *timeout* elapses.

    The operation receives the merged token.  Whichever source fires
    first wins; the operation task is cancelled and awaited.

    Raises:
        RequestCancelled: With ``timed_out`` set when the timeout fired.
    """
    if signal is not None and signal.cancelled:
        raise RequestCancelled(signal.reason)

    controller = token or CancelToken()
    unlink = controller.link(signal) if signal is not None else _noop
    timed_out = False

    def on_timeout() -> None:
        nonlocal timed_out
        if controller.cancel("timeout"):
            timed_out = True

    loop = asyncio.get_running_loop()
    timer = loop.call_later(timeout, on_timeout) if timeout and timeout > 0 else None
    task = asyncio.ensure_future(operation(controller))
    waiter = asyncio.ensure_future(controller.wait())
    try:
        done, _pending = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        if task in done:
            return task.result()
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        raise RequestCancelled(controller.reason, timed_out=timed_out)
    finally:
        if timer is not None:
            timer.cancel()
        waiter.cancel()
        unlink()
        if not task.done():
            task.cancel()


def _noop() -> None:
    return None
