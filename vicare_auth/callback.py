"""Single-use HTTP listener for the OAuth redirect.

The identity provider redirects the browser to ``http://{host}:4200/?code=...``.
This module runs a tiny asyncio HTTP server on that address that:
- Answers requests without a code with 400 and keeps listening
- Accepts the first request carrying a code, closes the listening socket
  and hands the code to the waiting flow
- Aborts on a request line it cannot parse
"""

import asyncio
import logging
from dataclasses import dataclass
from http import HTTPStatus
from typing import Any
from urllib.parse import parse_qs, urlsplit

logger = logging.getLogger(__name__)

# Fixed redirect port registered for the client at the identity provider
DEFAULT_PORT = 4200

# Default timeout for waiting for callback
DEFAULT_TIMEOUT = 120  # seconds

SUCCESS_TEXT = "Authorization successful. You can close this window."
MISSING_CODE_TEXT = "Authorization code not found."


class CallbackError(Exception):
    """Error during OAuth callback handling."""

    pass


class AuthorizationTimeoutError(CallbackError):
    """Timeout waiting for the browser to complete authorization."""

    pass


class MalformedRequestError(CallbackError):
    """The listener received a request line it could not parse."""

    pass


@dataclass
class CallbackResult:
    """Query parameters of a redirect request.

    Attributes:
        code: The authorization code from the callback
        state: The state parameter from the callback
        error: Error code if authorization failed
        error_description: Human-readable error description
    """

    code: str | None = None
    state: str | None = None
    error: str | None = None
    error_description: str | None = None

    def has_code(self) -> bool:
        return bool(self.code)


def parse_callback_target(target: str) -> CallbackResult:
    """Parse the request target of a redirect request.

    Both the origin form ("/?code=abc") and the absolute form
    ("http://host:4200/?code=abc") are accepted.

    Args:
        target: Request target from the HTTP request line

    Returns:
        CallbackResult with parsed parameters

    Raises:
        MalformedRequestError: If the target is neither an origin-form path
            nor an absolute http(s) URL
    """
    try:
        parts = urlsplit(target)
    except ValueError as e:
        raise MalformedRequestError(f"Invalid request target: {target!r}") from e

    is_absolute = parts.scheme in ("http", "https") and bool(parts.netloc)
    if not (target.startswith("/") or is_absolute):
        raise MalformedRequestError(f"Invalid request target: {target!r}")

    params = parse_qs(parts.query)

    def get_param(name: str) -> str | None:
        values = params.get(name, [])
        return values[0] if values else None

    return CallbackResult(
        code=get_param("code"),
        state=get_param("state"),
        error=get_param("error"),
        error_description=get_param("error_description"),
    )


class CallbackListener:
    """Ephemeral HTTP server that captures one authorization code.

    The listening socket is closed as soon as a code arrives, when the
    request line is malformed, and when the context manager exits.

    Usage:
        async with CallbackListener("192.168.1.20") as listener:
            redirect_uri = listener.redirect_uri
            # Show the authorization URL built with redirect_uri
            result = await listener.wait_for_code()
    """

    def __init__(
        self,
        host: str,
        port: int = DEFAULT_PORT,
        timeout: float | None = DEFAULT_TIMEOUT,
    ):
        """Initialize the listener.

        Args:
            host: Address to bind to
            port: Port to bind to (0 lets the OS choose, for tests)
            timeout: Seconds to wait for the code, None waits forever
        """
        self.host = host
        self.port = port
        self.timeout = timeout

        self._server: asyncio.Server | None = None
        self._result: asyncio.Future[CallbackResult] | None = None
        self._connections: set[asyncio.StreamWriter] = set()

    @property
    def redirect_uri(self) -> str:
        return f"http://{self.host}:{self.port}"

    @property
    def is_listening(self) -> bool:
        return self._server is not None and self._server.is_serving()

    async def start(self) -> str:
        """Bind the listening socket.

        Returns:
            The redirect URI to use in the authorization request
        """
        self._result = asyncio.get_running_loop().create_future()

        try:
            self._server = await asyncio.start_server(
                self._handle_connection, self.host, self.port
            )
        except OSError as e:
            raise CallbackError(f"Could not listen on {self.host}:{self.port}: {e}") from e

        if not self._server.sockets:
            raise CallbackError("Failed to start callback listener: no sockets created")

        self.port = self._server.sockets[0].getsockname()[1]
        logger.debug(f"Server is listening on {self.host}:{self.port}")
        return self.redirect_uri

    async def stop(self) -> None:
        """Release the port, drop idle connections and cancel any pending wait."""
        if self._result is not None and not self._result.done():
            self._result.cancel()

        self._close_listener()

        # Browsers keep speculative connections open; wait_closed() waits for them
        for writer in list(self._connections):
            writer.close()

        if self._server is not None:
            await self._server.wait_closed()
            self._server = None

    def _close_listener(self) -> None:
        if self._server is not None and self._server.is_serving():
            self._server.close()
            logger.debug("Callback listener closed")

    async def wait_for_code(self) -> CallbackResult:
        """Wait for the redirect carrying the authorization code.

        Returns:
            CallbackResult with the code (and state, if any)

        Raises:
            AuthorizationTimeoutError: If the timeout is reached
            MalformedRequestError: If the listener aborted on a bad request
        """
        if self._result is None:
            raise CallbackError("Listener not started")

        try:
            return await asyncio.wait_for(asyncio.shield(self._result), timeout=self.timeout)
        except TimeoutError:
            self._close_listener()
            raise AuthorizationTimeoutError(
                f"Timeout waiting for authorization after {self.timeout} seconds"
            ) from None

    async def _handle_connection(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        """Handle one incoming HTTP connection."""
        self._connections.add(writer)
        try:
            try:
                request_line = await reader.readline()
                if not request_line:
                    # Preconnect closed without sending anything
                    return

                # Consume the headers
                while True:
                    header_line = await reader.readline()
                    if header_line in (b"\r\n", b"\n", b""):
                        break
            except ValueError as e:
                # A line exceeded the StreamReader limit
                await self._abort(writer, f"Request too large: {e}")
                return

            request_text = request_line.decode("utf-8", errors="replace")

            # e.g. "GET /?code=xxx HTTP/1.1"
            parts = request_text.strip().split(" ")
            if len(parts) < 2:
                await self._abort(writer, f"Invalid request line: {request_text.strip()!r}")
                return

            method, target = parts[0], parts[1]

            try:
                result = parse_callback_target(target)
            except MalformedRequestError as e:
                await self._abort(writer, str(e))
                return

            if urlsplit(target).path == "/favicon.ico":
                await self._send_response(writer, HTTPStatus.NOT_FOUND, "")
                return

            if method != "GET":
                await self._send_response(
                    writer, HTTPStatus.METHOD_NOT_ALLOWED, "Method not allowed"
                )
                return

            if not result.has_code():
                body = MISSING_CODE_TEXT
                if result.error:
                    body += f"\n{result.error}: {result.error_description or 'No description provided'}"
                logger.debug("Redirect request without authorization code, still listening")
                await self._send_response(writer, HTTPStatus.BAD_REQUEST, body)
                return

            if self._result is None or self._result.done():
                await self._send_response(
                    writer, HTTPStatus.CONFLICT, "Authorization already received."
                )
                return

            logger.debug("Received authorization code")
            await self._send_response(writer, HTTPStatus.OK, SUCCESS_TEXT)
            self._close_listener()
            self._result.set_result(result)

        except ConnectionError as e:
            logger.debug(f"Callback connection dropped: {e}")

        except Exception as e:
            logger.warning(f"Error handling callback request: {e}")
            try:
                await self._send_response(
                    writer, HTTPStatus.INTERNAL_SERVER_ERROR, "Internal error"
                )
            except ConnectionError:
                pass

        finally:
            self._connections.discard(writer)
            writer.close()
            try:
                await writer.wait_closed()
            except ConnectionError:
                pass

    async def _abort(self, writer: asyncio.StreamWriter, message: str) -> None:
        """Reject a malformed request and shut the listener down."""
        logger.error(f"Malformed callback request: {message}")
        self._close_listener()
        if self._result is not None and not self._result.done():
            self._result.set_exception(MalformedRequestError(message))
        await self._send_response(writer, HTTPStatus.BAD_REQUEST, "Malformed request")

    async def _send_response(
        self,
        writer: asyncio.StreamWriter,
        status: HTTPStatus,
        body: str,
    ) -> None:
        """Send a plain text HTTP response."""
        payload = body.encode("utf-8")
        headers = (
            f"HTTP/1.1 {status.value} {status.phrase}\r\n"
            f"Content-Type: text/plain; charset=utf-8\r\n"
            f"Content-Length: {len(payload)}\r\n"
            f"Connection: close\r\n"
            f"\r\n"
        )
        writer.write(headers.encode("utf-8") + payload)
        await writer.drain()

    async def __aenter__(self) -> "CallbackListener":
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.stop()
