"""Base for adapters backed by a retailer's JSON API."""

import logging
from typing import Any, Optional

from dropwatch.ingest.adapter import BaseRetailerAdapter

logger = logging.getLogger(__name__)


class ApiRetailerAdapter(BaseRetailerAdapter):
    """
    Adapter talking to a structured retailer API.

    Subclasses map vendor JSON directly into AvailabilityRecords. Requests
    never escalate to rotation or rendering; failures surface as classified
    RetailerErrors.
    """

    api_key_param: Optional[str] = "apiKey"

    def _url(self, path: str) -> str:
        return f"{self.config.base_url.rstrip('/')}/{path.lstrip('/')}"

    def _auth_params(self) -> dict[str, Any]:
        if self.api_key_param and self.config.api_key:
            return {self.api_key_param: self.config.api_key}
        return {}

    def _auth_headers(self) -> dict[str, str]:
        return {}

    async def get_json(self, path: str, params: Optional[dict[str, Any]] = None) -> Any:
        """GET ``path`` under the API base URL and decode the JSON body."""
        query = {**self._auth_params(), **(params or {})}
        headers = {"Accept": "application/json", **self._auth_headers()}
        result = await self.make_request(self._url(path), params=query, headers=headers)
        try:
            return result.json()
        except ValueError as e:
            raise self.parsing_error(f"Invalid JSON from {path}: {e}") from e
