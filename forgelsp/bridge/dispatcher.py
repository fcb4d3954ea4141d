"""JSON-RPC request dispatch."""

from typing import Any, Awaitable, Callable, Optional

import structlog

from forgelsp.bridge.protocol import BridgeRequest, BridgeResponse
from forgelsp.core.errors import RpcErrorCode, classify_error, log_classified

log = structlog.get_logger()

Handler = Callable[[dict[str, Any]], Awaitable[Any]]
NotificationHandler = Callable[[dict[str, Any]], Awaitable[None]]


class Dispatcher:
    """Routes JSON-RPC messages to registered handlers.

    Handler failures are converted to error responses here and never
    propagate to the connection loop.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, Handler] = {}
        self._notification_handlers: dict[str, NotificationHandler] = {}

    def register(self, method: str, handler: Handler) -> None:
        """Register a request handler for a method."""
        self._handlers[method] = handler

    def register_notification(self, method: str, handler: NotificationHandler) -> None:
        """Register a notification handler for a method."""
        self._notification_handlers[method] = handler

    async def dispatch(self, message: Any) -> Optional[dict[str, Any]]:
        """Handle one decoded message.

        Returns:
            Response dict, or None when no response is due (notifications)
        """
        if not isinstance(message, dict):
            # Batches and bare values carry no id to answer
            log.debug("message_ignored", type=type(message).__name__)
            return None

        method = message.get("method")
        if not isinstance(method, str):
            if "id" in message:
                return BridgeResponse.error(
                    message.get("id"),
                    RpcErrorCode.INVALID_REQUEST,
                    "Request is missing a method",
                ).to_dict()
            log.debug("message_ignored", keys=sorted(message))
            return None

        if "id" not in message:
            await self._handle_notification(method, message.get("params"))
            return None

        request = BridgeRequest.from_dict(message)
        response = await self.handle_request(request)
        return response.to_dict()

    async def handle_request(self, request: BridgeRequest) -> BridgeResponse:
        """Handle a request and return a response."""
        log.debug("request_received", method=request.method, id=request.id)

        handler = self._handlers.get(request.method)
        if not handler:
            return BridgeResponse.error(
                request.id,
                RpcErrorCode.METHOD_NOT_FOUND,
                f"Method not found: {request.method}",
            )

        params = request.params if isinstance(request.params, dict) else {}
        try:
            result = await handler(params)
            return BridgeResponse.success(request.id, result)
        except Exception as e:
            classified = classify_error(e)
            log_classified(
                "request_failed", classified, method=request.method, id=request.id
            )
            return BridgeResponse(id=request.id, error_data=classified.to_rpc_error())

    async def _handle_notification(self, method: str, params: Any) -> None:
        """Handle a notification (no response needed)."""
        handler = self._notification_handlers.get(method)
        if not handler:
            log.debug("notification_ignored", method=method)
            return

        try:
            await handler(params if isinstance(params, dict) else {})
        except Exception as e:
            log_classified("notification_failed", classify_error(e), method=method)
