import logging
from typing import Any, Dict

import aiohttp
from pydantic import BaseModel, Field

from task_runner.handlers.protocol import TaskHandler

logger = logging.getLogger(__name__)


class HttpCallPayload(BaseModel):
    url: str = Field(..., description="The URL to make the HTTP request to")
    method: str = Field("POST", description="The HTTP method to use (e.g. GET, POST, PUT, DELETE)")
    headers: Dict[str, str] = Field(default={}, description="Optional headers to include in the request")
    body: Dict[str, Any] = Field(default={}, description="Optional body payload for the request")
    params: Dict[str, str] = Field(default={}, description="Optional query parameters for the request")
    timeout: float = Field(30.0, gt=0, description="Total request timeout in seconds")


class HttpCallHandler(TaskHandler):
    """
    Handler for `http_call` tasks: performs one HTTP request described by the
    task data. Non-2xx/3xx responses fail the task so it is retried.
    """

    @staticmethod
    def task_name() -> str:
        return "http_call"

    async def async_execute(self, data: Any) -> None:
        """
        Asynchronously perform the request described by `data`.

        Args:
            data (Any): A mapping matching HttpCallPayload.

        Raises:
            pydantic.ValidationError: If the data is not a valid payload.
            aiohttp.ClientError: If the request fails or returns an error status.
        """
        payload = HttpCallPayload.model_validate(data)

        timeout = aiohttp.ClientTimeout(total=payload.timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.request(
                method=payload.method,
                url=payload.url,
                headers=payload.headers,
                params=payload.params,
                json=payload.body or None
            ) as response:
                logger.debug("%s %s -> %s", payload.method, payload.url, response.status)
                response.raise_for_status()
