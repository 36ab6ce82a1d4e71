# tokendrop/api/emitter.py
"""
Single-use response writer for paid requests.

A paid request gets exactly one response. The emitter is created by the
route, consumed by it, and never handed to the delivery task.
"""
from typing import Any, Dict, Optional

from starlette.background import BackgroundTask
from starlette.responses import JSONResponse, Response

from tokendrop.core.errors import GatewayError


class ResponseAlreadySentError(RuntimeError):
    """A second response was attempted for the same request."""


class ResponseEmitter:

    def __init__(self):
        self._sent = False

    @property
    def sent(self) -> bool:
        return self._sent

    def _claim(self) -> None:
        if self._sent:
            raise ResponseAlreadySentError("a response was already sent for this request")
        self._sent = True

    def send(
        self,
        content: Dict[str, Any],
        status_code: int = 200,
        background: Optional[BackgroundTask] = None
    ) -> JSONResponse:
        """
        Build the response of this request.

        Args:
            content: JSON body
            status_code: HTTP status
            background: Task Starlette runs after the response has been sent

        Raises:
            ResponseAlreadySentError: If called more than once
        """
        self._claim()
        return JSONResponse(status_code=status_code, content=content, background=background)

    def send_error(self, error: GatewayError) -> Response:
        self._claim()
        return error.to_response()
