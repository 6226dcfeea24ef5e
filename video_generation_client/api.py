from typing import Any, Dict, Optional

import aiohttp
from loguru import logger
from video_generation_client.errors import MalformedResponseError, ProviderHTTPError
from video_generation_client.models import (
    GenerationRequest,
    ProviderCredentials,
    RetrieveResponse,
    StatusResponse,
    SubmitResponse,
)


class VideoGenerationApi:
    """Thin wrapper over the provider's submission, status and retrieval endpoints"""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        base_url: str,
        credentials: ProviderCredentials,
    ):
        self.session = session
        self.base_url = base_url.rstrip("/")
        self.credentials = credentials
        self.logger = logger

    @property
    def _headers(self) -> Dict[str, str]:
        return {"Authorization": self.credentials.authorization}

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, str]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            async with self.session.request(
                method, url, params=params, json=json, headers=self._headers
            ) as response:
                if not 200 <= response.status < 300:
                    body = await response.text()
                    self.logger.error(f"HTTP error {response.status} at {url}: {body}")
                    raise ProviderHTTPError(response.status, body)
                try:
                    return await response.json()
                except ValueError as e:
                    self.logger.error(f"Malformed JSON body at {url}: {e}")
                    raise MalformedResponseError(str(e)) from e
        except aiohttp.ClientError as e:
            self.logger.error(f"Network error at {url}: {e}")
            raise

    async def submit(self, request: GenerationRequest) -> SubmitResponse:
        data = await self._request(
            "POST",
            "/v1/video_generation",
            json={"model": request.model, "prompt": request.prompt},
        )
        return SubmitResponse.model_validate(data)

    async def query_status(self, task_id: str) -> StatusResponse:
        data = await self._request(
            "GET", "/v1/query/video_generation", params={"task_id": task_id}
        )
        return StatusResponse.model_validate(data)

    async def retrieve_file(self, file_id: str) -> RetrieveResponse:
        data = await self._request(
            "GET",
            "/v1/files/retrieve",
            params={"GroupId": self.credentials.group_id, "file_id": file_id},
        )
        return RetrieveResponse.model_validate(data)
