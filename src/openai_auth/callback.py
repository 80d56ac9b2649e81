"""Single-use local listener for the OAuth redirect.

:class:`CallbackListener` runs a small :mod:`aiohttp.web` application on
``127.0.0.1:<port>``. The first ``GET`` it receives, on any path, is the
authorization server's redirect: its ``state`` is checked against the flow,
the browser gets an HTML page and the socket is released. Its lifecycle::

    IDLE -> LISTENING -> (MATCHED | MISMATCHED | ERRORED | CANCELLED | TIMED_OUT) -> CLOSED

Decision table for the claiming request:

* ``error`` present            -> :class:`~openai_auth.models.CallbackError`,
  raises :class:`~openai_auth.exceptions.AuthorizationDeniedError`
* ``state`` missing or wrong   -> :class:`~openai_auth.models.CallbackStateMismatch`,
  raises :class:`~openai_auth.exceptions.StateMismatchError`
* ``code`` missing             -> :class:`~openai_auth.models.CallbackMissingCode`,
  raises :class:`~openai_auth.exceptions.MissingCodeError`
* otherwise                    -> :class:`~openai_auth.models.CallbackSuccess`,
  returns the code

The claiming request always receives ``200 OK`` with the HTML produced by
the render function. Only a well-formed ``GET`` claims the listener: other
methods get ``405``, malformed requests get aiohttp's ``400`` and idle
connections (browser pre-connects) are ignored. Requests that arrive after
the claim get ``410 Gone``.

:func:`run_callback_server` is the one-call coroutine; :func:`wait_for_callback`
is the blocking equivalent for callers without an event loop.
"""

from __future__ import annotations

import asyncio
import enum
import html
import logging
import secrets
import socket
from typing import Callable, Optional
from urllib.parse import parse_qs

from aiohttp import web

from openai_auth.exceptions import (
    AuthorizationDeniedError,
    CallbackCancelledError,
    CallbackServerError,
    CallbackTimeoutError,
    MissingCodeError,
    OpenAIAuthError,
    StateMismatchError,
)
from openai_auth.models import (
    CallbackError,
    CallbackEvent,
    CallbackMissingCode,
    CallbackStateMismatch,
    CallbackSuccess,
)

logger = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_TIMEOUT = 300.0
"""Default seconds the blocking helper waits for the browser redirect."""

RenderFunc = Callable[[CallbackEvent], str]


class ListenerState(str, enum.Enum):
    """Lifecycle states of a :class:`CallbackListener`."""

    IDLE = "idle"
    LISTENING = "listening"
    MATCHED = "matched"
    MISMATCHED = "mismatched"
    ERRORED = "errored"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed_out"
    CLOSED = "closed"


def find_free_port(host: str = DEFAULT_HOST) -> int:
    """Find a free TCP port on *host*."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind((host, 0))
        return s.getsockname()[1]


def _page(title: str, *paragraphs: str) -> str:
    body = "\n".join(f"    <p>{p}</p>" for p in paragraphs)
    return (
        "<!DOCTYPE html>\n"
        "<html>\n"
        f"  <head><meta charset=\"utf-8\"><title>{title}</title></head>\n"
        "  <body>\n"
        f"    <h1>{title}</h1>\n"
        f"{body}\n"
        "  </body>\n"
        "</html>\n"
    )


def default_render(event: CallbackEvent) -> str:
    """Render the built-in HTML page shown to the browser for *event*."""
    if isinstance(event, CallbackSuccess):
        return _page(
            "Authorization Successful",
            "You have successfully authorized the application.",
            "You can close this window and return to the terminal.",
        )
    if isinstance(event, CallbackError):
        paragraphs = [f"Error: {html.escape(event.reason)}"]
        if event.description:
            paragraphs.append(html.escape(event.description))
        paragraphs.append("You can close this window.")
        return _page("Authorization Failed", *paragraphs)
    if isinstance(event, CallbackStateMismatch):
        return _page(
            "Authorization Failed",
            "Security validation failed. Please try again.",
            "You can close this window.",
        )
    return _page(
        "Authorization Failed",
        "No authorization code received.",
        "You can close this window.",
    )


def classify_callback(query: str, expected_state: str) -> CallbackEvent:
    """Turn a redirect query string into a :data:`~openai_auth.models.CallbackEvent`.

    An ``error`` parameter wins over everything else, even when its value
    is blank; then ``state`` must match *expected_state* exactly; then
    ``code`` must be non-empty.
    """
    params = parse_qs(query, keep_blank_values=True)

    def first(name: str) -> Optional[str]:
        values = params.get(name)
        return values[0] if values else None

    if "error" in params:
        return CallbackError(
            reason=first("error") or "unknown_error",
            description=first("error_description") or None,
        )

    state = first("state")
    if state is None or not secrets.compare_digest(
        state.encode("utf-8"), expected_state.encode("utf-8")
    ):
        return CallbackStateMismatch()

    code = first("code")
    if not code:
        return CallbackMissingCode()
    return CallbackSuccess(code=code, state=state)


def resolve_event(event: CallbackEvent) -> str:
    """Return the code carried by *event*, or raise the matching failure.

    Raises:
        AuthorizationDeniedError: For :class:`~openai_auth.models.CallbackError`.
        StateMismatchError: For :class:`~openai_auth.models.CallbackStateMismatch`.
        MissingCodeError: For :class:`~openai_auth.models.CallbackMissingCode`.
    """
    if isinstance(event, CallbackSuccess):
        logger.debug("OAuth callback carried a matching authorization code")
        return event.code
    if isinstance(event, CallbackError):
        logger.debug("OAuth callback reported error '%s'", event.reason)
        raise AuthorizationDeniedError(event.reason, event.description)
    if isinstance(event, CallbackStateMismatch):
        logger.warning("OAuth callback state did not match the flow; rejecting it")
        raise StateMismatchError()
    raise MissingCodeError()


class CallbackListener:
    """Capture one OAuth redirect on a local port.

    Use as an async context manager so the socket is released on every exit
    path, and start it *before* sending the user to the authorization URL::

        async with CallbackListener(1455, flow.state) as listener:
            open_browser(flow.authorization_url)
            code = await listener.wait(timeout=300)

    Args:
        port: Local port to bind; ``0`` picks a free one (see :attr:`port`).
        expected_state: The ``state`` of the originating flow.
        render: Builds the HTML page for the browser from the event.
            Defaults to :func:`default_render`.
        host: Interface to bind. Loopback by default.
    """

    def __init__(
        self,
        port: int,
        expected_state: str,
        render: Optional[RenderFunc] = None,
        host: str = DEFAULT_HOST,
    ) -> None:
        self._requested_port = port
        self._expected_state = expected_state
        self._render = render or default_render
        self._host = host
        self._runner: Optional[web.AppRunner] = None
        self._result: Optional[asyncio.Future[str]] = None
        self._claimed = False
        self.state = ListenerState.IDLE
        self.outcome: Optional[ListenerState] = None
        self.event: Optional[CallbackEvent] = None

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def __aenter__(self) -> CallbackListener:
        await self.start()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    @property
    def port(self) -> int:
        """The bound port (useful when constructed with ``port=0``)."""
        if self._runner is not None and self._runner.addresses:
            return self._runner.addresses[0][1]
        return self._requested_port

    async def start(self) -> None:
        """Bind the listening socket.

        Raises:
            CallbackServerError: If the port cannot be bound.
            RuntimeError: If the listener was already started.
        """
        if self.state is not ListenerState.IDLE:
            raise RuntimeError("A CallbackListener can only be started once")

        self._result = asyncio.get_running_loop().create_future()

        app = web.Application()
        # HEAD would otherwise be routed to the GET handler and claim the listener
        app.router.add_get("/{tail:.*}", self._handle_callback, allow_head=False)
        runner = web.AppRunner(app, access_log=None)
        await runner.setup()
        site = web.TCPSite(runner, self._host, self._requested_port)
        try:
            await site.start()
        except OSError as exc:
            await runner.cleanup()
            self.state = ListenerState.CLOSED
            raise CallbackServerError(
                f"Failed to bind to {self._host}:{self._requested_port}: {exc}"
            ) from exc

        self._runner = runner
        self.state = ListenerState.LISTENING
        logger.debug("OAuth callback listener bound to %s:%d", self._host, self.port)

    async def wait(
        self,
        timeout: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> str:
        """Wait for the redirect and return the authorization code.

        The listener is closed when this returns or raises. Cancelling the
        awaiting task also closes it and propagates
        :class:`asyncio.CancelledError`.

        Args:
            timeout: Seconds to wait; ``None`` waits indefinitely.
            cancel_event: When set, the wait ends with
                :class:`~openai_auth.exceptions.CallbackCancelledError`.

        Raises:
            AuthorizationDeniedError: The server redirected with ``error``.
            StateMismatchError: ``state`` was missing or did not match.
            MissingCodeError: Neither ``code`` nor ``error`` was present.
            CallbackTimeoutError: *timeout* elapsed first.
            CallbackCancelledError: :meth:`cancel` was called or
                *cancel_event* was set.
        """
        if self._result is None:
            raise RuntimeError("CallbackListener.wait() called before start()")

        watcher: Optional[asyncio.Task[None]] = None
        if cancel_event is not None:
            watcher = asyncio.ensure_future(self._cancel_when_set(cancel_event))
        try:
            return await asyncio.wait_for(self._result, timeout)
        except asyncio.TimeoutError:
            self.outcome = ListenerState.TIMED_OUT
            logger.debug("No OAuth callback within %s seconds", timeout)
            raise CallbackTimeoutError(
                f"No OAuth callback received within {timeout} seconds"
            ) from None
        finally:
            if watcher is not None:
                watcher.cancel()
            await self.close()

    def cancel(self) -> None:
        """Abort a pending :meth:`wait`.

        Requests arriving before the socket is released get ``410 Gone``.
        Must be called from the event loop thread; from another thread use
        ``loop.call_soon_threadsafe(listener.cancel)``.
        """
        self._claimed = True
        if self._result is not None and not self._result.done():
            self.outcome = ListenerState.CANCELLED
            self._result.set_exception(CallbackCancelledError())

    async def close(self) -> None:
        """Shut the web application down and release the socket. Idempotent."""
        self._claimed = True
        if self._runner is not None:
            runner, self._runner = self._runner, None
            await runner.cleanup()
        if self._result is not None and not self._result.done():
            self._result.cancel()
        if self.state is not ListenerState.CLOSED:
            logger.debug("OAuth callback listener closed")
        self.state = ListenerState.CLOSED

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    async def _cancel_when_set(self, cancel_event: asyncio.Event) -> None:
        await cancel_event.wait()
        self.cancel()

    async def _handle_callback(self, request: web.Request) -> web.StreamResponse:
        if self._claimed:
            logger.debug("Ignoring %s %s: callback already received", request.method, request.path)
            response = web.Response(status=410, text="This sign-in attempt has already finished.")
            response.force_close()
            return response
        self._claimed = True

        event = classify_callback(request.rel_url.raw_query_string, self._expected_state)
        self.event = event
        render_error: Optional[Exception] = None
        try:
            body = self._render(event)
        except Exception as exc:
            logger.error("Callback render function failed: %s", exc)
            render_error = exc
            body = default_render(event)

        response = web.Response(
            text=body,
            content_type="text/html",
            headers={"Cache-Control": "no-store"},
        )
        response.force_close()
        # the page goes out before the waiter is woken and starts shutting down
        try:
            await response.prepare(request)
            await response.write_eof()
        except ConnectionError as exc:
            logger.debug("Browser disconnected before the callback page was sent: %s", exc)
        finally:
            self._settle(event, render_error)
        return response

    def _settle(self, event: CallbackEvent, render_error: Optional[Exception]) -> None:
        assert self._result is not None
        if self._result.done():
            return

        if isinstance(event, CallbackSuccess):
            self.outcome = ListenerState.MATCHED
        elif isinstance(event, CallbackStateMismatch):
            self.outcome = ListenerState.MISMATCHED
        else:
            self.outcome = ListenerState.ERRORED

        if render_error is not None:
            self._result.set_exception(render_error)
            return
        try:
            code = resolve_event(event)
        except OpenAIAuthError as exc:
            self._result.set_exception(exc)
        else:
            self._result.set_result(code)


async def run_callback_server(
    port: int,
    expected_state: str,
    *,
    timeout: Optional[float] = None,
    render: Optional[RenderFunc] = None,
    host: str = DEFAULT_HOST,
    cancel_event: Optional[asyncio.Event] = None,
) -> str:
    """Bind, serve one redirect, release, and return the authorization code.

    Bind the listener before the user can reach the redirect URI: schedule
    this coroutine as a task, then open the authorization URL.

    Raises:
        CallbackServerError: If the port cannot be bound.
        AuthorizationDeniedError, StateMismatchError, MissingCodeError,
        CallbackTimeoutError, CallbackCancelledError: As for
        :meth:`CallbackListener.wait`.
    """
    async with CallbackListener(port, expected_state, render=render, host=host) as listener:
        return await listener.wait(timeout, cancel_event=cancel_event)


def wait_for_callback(
    port: int,
    expected_state: str,
    timeout: float = DEFAULT_TIMEOUT,
    render: Optional[RenderFunc] = None,
    host: str = DEFAULT_HOST,
) -> str:
    """Blocking form of :func:`run_callback_server`.

    Runs the listener in a private event loop for the duration of the call.
    Must not be called from inside a running event loop.
    """
    return asyncio.run(
        run_callback_server(
            port, expected_state, timeout=timeout, render=render, host=host
        )
    )
