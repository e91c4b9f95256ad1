# -*- coding: utf-8 -*-
"""
Fetch Controller.

Owns the single in-flight deviation request of one view and the RefreshState
that describes it.

- A new refresh cancels the previous request's token and task first.
- Every continuation re-checks its token before touching state, so only the
  most recently issued request is ever applied.
- Each request is bounded by a timeout that goes through the same abort path.

AutoRefresher is the background timer for silent refreshes. It awaits each
tick, so a slow backend never stacks refreshes.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from analytics.models import RefreshState, RefreshStatus
from backend.client import RequestTimeoutError

log = logging.getLogger(__name__)

TIMEOUT_MESSAGE = "Request timed out"
FAILURE_PREFIX = "Failed to load deviation data"


class RefreshPolicy(Enum):
    MANUAL = "manual"          # user action, view shows loading
    SILENT = "silent"          # background, view untouched
    HARD_RESET = "hard-reset"  # reset filters/sort/page/pair/range, then manual


@dataclass
class RequestToken:
    """Identity of one issued request."""
    generation: int
    cancelled: bool = False
    reason: Optional[str] = None

    def cancel(self, reason: str = "superseded") -> None:
        if not self.cancelled:
            self.cancelled = True
            self.reason = reason


class FetchController:
    def __init__(
        self,
        fetch: Callable[[Dict[str, Any]], Awaitable[Any]],
        apply: Callable[[Any], None],
        timeout_s: float = 30.0,
        on_hard_reset: Optional[Callable[[], None]] = None,
        name: str = "view",
    ):
        """
        Args:
            fetch: coroutine function taking the request params, returning the raw payload
            apply: replaces the view's data with a raw payload (must not raise)
            timeout_s: per-request time budget
            on_hard_reset: resets view filters/sort/pagination to defaults
            name: label for logging
        """
        self._fetch = fetch
        self._apply = apply
        self.timeout_s = float(timeout_s)
        self._on_hard_reset = on_hard_reset
        self.name = name

        self.state = RefreshState()
        self._generation = 0
        self._token: Optional[RequestToken] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def generation(self) -> int:
        return self._generation

    def is_current(self, token: RequestToken) -> bool:
        return token is self._token and not token.cancelled

    async def refresh(
        self,
        policy: Union[RefreshPolicy, str] = RefreshPolicy.MANUAL,
        time_range_params: Optional[Dict[str, Any]] = None,
        pair_filter: Optional[str] = None,
    ) -> RefreshState:
        """
        Issue a request, superseding any in-flight one.

        Returns the state once this request settles (or is superseded).
        """
        policy = RefreshPolicy(policy)
        self._cancel_inflight("superseded")

        if policy is RefreshPolicy.HARD_RESET and self._on_hard_reset is not None:
            self._on_hard_reset()

        silent = policy is RefreshPolicy.SILENT
        self.state = self.state.begin(silent=silent)
        self._generation += 1
        token = RequestToken(self._generation)
        self._token = token

        params = dict(time_range_params or {})
        if pair_filter:
            params["pair"] = pair_filter

        log.debug(f"[REFRESH] {self.name} #{token.generation} {policy.value} start")
        task = asyncio.ensure_future(self._run(token, silent, params))
        self._task = task
        try:
            await task
        except asyncio.CancelledError:
            if token.cancelled:
                # superseded or aborted; the newer request owns the state
                return self.state
            # the caller itself was cancelled (e.g. auto-refresh stopped)
            token.cancel("caller cancelled")
            if self._token is token:
                self.state = self.state.settle()
            raise
        finally:
            if self._task is task:
                self._task = None
        return self.state

    async def _run(self, token: RequestToken, silent: bool, params: Dict[str, Any]) -> None:
        try:
            raw = await asyncio.wait_for(self._fetch(params), self.timeout_s)
        except (asyncio.TimeoutError, RequestTimeoutError):
            if self.is_current(token):
                self._fail(TIMEOUT_MESSAGE, silent, token)
                token.cancel("timeout")
            return
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if self.is_current(token):
                self._fail(f"{FAILURE_PREFIX}: {e}", silent, token)
            return

        if not self.is_current(token):
            log.debug(f"[REFRESH] {self.name} #{token.generation} stale result dropped")
            return
        self._apply(raw)
        self.state = self.state.succeed(datetime.now(timezone.utc))
        log.debug(f"[REFRESH] {self.name} #{token.generation} applied")

    def _fail(self, message: str, silent: bool, token: RequestToken) -> None:
        self.state = self.state.fail(message, silent=silent)
        if silent:
            log.info(f"[REFRESH] {self.name} #{token.generation} background refresh failed: {message}")
        else:
            log.warning(f"[REFRESH] {self.name} #{token.generation} {message}")

    def _cancel_inflight(self, reason: str) -> bool:
        token, task = self._token, self._task
        if token is None or token.cancelled or task is None or task.done():
            return False
        token.cancel(reason)
        task.cancel()
        log.debug(f"[REFRESH] {self.name} #{token.generation} cancelled ({reason})")
        return True

    def abort(self) -> None:
        """Cancel the in-flight request, if any, and fall back to the settled status."""
        if not self.state.in_flight:
            return
        self._cancel_inflight("aborted")
        self.state = self.state.settle()

    async def close(self) -> None:
        task = self._task
        self.abort()
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)


class AutoRefresher:
    """
    Repeating timer: every interval_s, await tick() if should_fire() says so.

    Usage:
        async with AutoRefresher(lambda: ctrl.refresh("silent"),
                                 lambda: is_idle(ctrl.state), 60):
            ...
    """

    def __init__(
        self,
        tick: Callable[[], Awaitable[Any]],
        should_fire: Callable[[], bool],
        interval_s: float = 60.0,
        name: str = "auto",
    ):
        if interval_s <= 0:
            raise ValueError(f"interval_s must be > 0, got {interval_s}")
        self._tick = tick
        self._should_fire = should_fire
        self.interval_s = float(interval_s)
        self.name = name
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.ensure_future(self._loop())
        log.info(f"[REFRESH] {self.name} auto-refresh every {self.interval_s:.0f}s")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        log.info(f"[REFRESH] {self.name} auto-refresh stopped")

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_s)
            if not self._should_fire():
                log.debug(f"[REFRESH] {self.name} tick skipped")
                continue
            try:
                await self._tick()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log.error(f"[REFRESH] {self.name} tick error: {e}")

    async def __aenter__(self) -> "AutoRefresher":
        self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.stop()


def is_idle(state: RefreshState) -> bool:
    return state.status is RefreshStatus.IDLE
