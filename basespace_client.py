"""
Async client for the three BaseSpace calls the poller needs.

    GET {server}{version}/projects/{project}/appresults
    GET {server}{version}/appresults/{appresult}/files
    GET {server}{version}/files/{file}/content

No retries happen here; every failure is raised to the caller as one of
the errors in exceptions.py.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from config import Settings
from exceptions import DecodeError, DownloadError, ServerError, TransportError
from schema import AppResult, AppResultFile, ItemsResponse
from utils import RESULT_EXTENSIONS

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

# Page size requested for file listings
FILES_PAGE_LIMIT = 50

PARTIAL_SUFFIX = ".part"


class BaseSpaceClient:
    """
    Thin wrapper over httpx.AsyncClient for the BaseSpace REST API.

    Use as an async context manager. When ``http_client`` is given the
    caller keeps ownership of it and it is not closed on exit.
    """

    def __init__(
        self,
        api_server: str,
        api_version: str,
        access_token: str,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 300.0,
    ):
        self.base_url = f"{api_server}{api_version}"
        self._access_token = access_token
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=10.0)
        )

    @classmethod
    def from_settings(
        cls, settings: Settings, http_client: Optional[httpx.AsyncClient] = None
    ) -> "BaseSpaceClient":
        return cls(
            settings.api_server,
            settings.api_version,
            settings.access_token,
            http_client=http_client,
        )

    async def __aenter__(self) -> "BaseSpaceClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _params(self, params: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        query = dict(params or {})
        query["access_token"] = self._access_token
        return query

    async def _get_json(self, path: str, params: Dict[str, str]) -> Any:
        url = f"{self.base_url}{path}"
        logger.debug(f"GET {path} {params}")
        try:
            response = await self._client.get(url, params=self._params(params))
        except httpx.RequestError as e:
            raise TransportError(f"Request to {path} failed: {e}") from e

        if response.status_code != 200:
            raise ServerError(response.status_code, response.text)

        try:
            return response.json()
        except ValueError as e:
            raise DecodeError(f"Response from {path} is not valid JSON: {e}") from e

    async def _list_items(self, path: str, params: Dict[str, str]) -> List[Dict[str, Any]]:
        """Collect ``Response.Items`` across pages while ``TotalCount`` says more remain."""
        params = dict(params)
        offset = int(params.get("Offset", 0))
        items: List[Dict[str, Any]] = []

        while True:
            payload = await self._get_json(path, params)
            try:
                page = ItemsResponse.model_validate(payload).response
            except ValidationError as e:
                raise DecodeError(f"Unexpected response shape from {path}: {e}") from e

            items.extend(page.items)
            if (
                page.total_count is None
                or not page.items
                or offset + len(page.items) >= page.total_count
            ):
                return items

            offset += len(page.items)
            params["Offset"] = str(offset)
            logger.debug(f"Fetching next page of {path} at offset {offset}")

    @staticmethod
    def _decode_items(items: Sequence[Dict[str, Any]], model: Type[M], path: str) -> List[M]:
        decoded = []
        for index, item in enumerate(items):
            try:
                decoded.append(model.model_validate(item))
            except ValidationError as e:
                raise DecodeError(
                    f"Item {index} from {path} is not a valid {model.__name__}: {e}"
                ) from e
        return decoded

    async def list_app_results(self, project_id: str) -> List[AppResult]:
        """
        List the app results of a project, in the order BaseSpace returns them.

        Raises:
            TransportError: The service could not be reached
            ServerError: The service returned a non-200 status
            DecodeError: The response did not have the expected shape
        """
        path = f"/projects/{project_id}/appresults"
        items = await self._list_items(path, {})
        app_results = self._decode_items(items, AppResult, path)
        logger.info("App results successfully retrieved")
        return app_results

    async def list_files(
        self, app_result_id: str, extensions: Sequence[str] = RESULT_EXTENSIONS
    ) -> List[AppResultFile]:
        """
        List the files of an app result, sorted by id.

        The extension filter is applied by the server and should be treated
        as advisory; callers still decide per file what to download.
        """
        logger.info(f"Getting file Ids for {app_result_id}")
        path = f"/appresults/{app_result_id}/files"
        params = {
            "SortBy": "Id",
            "Extensions": ",".join(extensions),
            "Offset": "0",
            "Limit": str(FILES_PAGE_LIMIT),
            "SortDir": "Asc",
        }
        items = await self._list_items(path, params)
        return self._decode_items(items, AppResultFile, path)

    async def download_file(self, file_id: str, destination: Path) -> Path:
        """
        Stream a file's content to ``destination``.

        Bytes go to ``<destination>.part`` first and are renamed into place
        once the stream has finished, so a failed download never leaves a
        file under the final name.

        Args:
            file_id: BaseSpace file id
            destination: Local path to write

        Returns:
            The destination path

        Raises:
            DownloadError: The request, the stream or the write failed
        """
        destination = Path(destination)
        partial = destination.with_name(destination.name + PARTIAL_SUFFIX)
        path = f"/files/{file_id}/content"
        url = f"{self.base_url}{path}"

        completed = False
        try:
            async with self._client.stream("GET", url, params=self._params()) as response:
                if response.status_code != 200:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise DownloadError(
                        file_id,
                        destination,
                        f"Response status is {response.status_code} {body}",
                    )
                # Plain blocking writes; only one download is ever in flight
                with open(partial, "wb") as f:
                    async for chunk in response.aiter_bytes():
                        f.write(chunk)
            os.replace(partial, destination)
            completed = True
        except (httpx.HTTPError, OSError) as e:
            raise DownloadError(file_id, destination, str(e)) from e
        finally:
            if not completed:
                partial.unlink(missing_ok=True)

        logger.debug(f"Wrote file {file_id} to {destination}")
        return destination
