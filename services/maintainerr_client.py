from __future__ import annotations

from typing import List, Optional

import httpx

from core.errors import CollectionSourceError
from core.models import MaintainerrCollection
from utils.http import HttpError, http_get
from utils.logger import get_logger

logger = get_logger(__name__)


class MaintainerrClient:
    """
    Reads collections (and the media queued for deletion in them) from Maintainerr.
    """

    def __init__(self, base_url: str, client: Optional[httpx.Client] = None):
        if not base_url:
            raise ValueError("Maintainerr URL cannot be empty.")
        self.base_url = base_url.rstrip("/")
        self._client = client

    @classmethod
    def from_config(cls, config: dict) -> "MaintainerrClient":
        return cls(base_url=config["maintainerr"]["url"])

    def get_collections(self) -> List[MaintainerrCollection]:
        url = f"{self.base_url}/api/collections"
        try:
            payload = http_get(url, client=self._client)
        except HttpError as e:
            raise CollectionSourceError(f"Could not fetch collections from Maintainerr: {e}") from e

        if payload is None:
            return []
        if not isinstance(payload, list):
            raise CollectionSourceError(f"Unexpected collections payload from {url}: {type(payload).__name__}")

        collections: List[MaintainerrCollection] = []
        for entry in payload:
            try:
                collections.append(MaintainerrCollection.from_api(entry))
            except (KeyError, TypeError, ValueError) as e:
                raise CollectionSourceError(f"Malformed collection in Maintainerr response: {e}") from e

        logger.debug(f"Fetched {len(collections)} collections from Maintainerr")
        return collections
