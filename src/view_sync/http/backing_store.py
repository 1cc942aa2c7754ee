"""Resource operations against the site's backing store API."""

from __future__ import annotations

import logging
from urllib.parse import quote

from view_sync.errors import ParseError
from view_sync.http.client import ResilientClient

logger = logging.getLogger(__name__)

THUMBNAILS_PATH = "/thumbnails"
VIDEOS_PATH = "/videos"
STATS_PATH = "/stats"
LEADS_PATH = "/leads"
VIEWS_REFRESH_PATH = "/views/refresh"

VIDEO_WRITE_INVALIDATES = (VIDEOS_PATH, STATS_PATH)
THUMBNAIL_WRITE_INVALIDATES = (THUMBNAILS_PATH, STATS_PATH)
LEAD_WRITE_INVALIDATES = (LEADS_PATH, STATS_PATH)
VIEWS_REFRESH_INVALIDATES = (VIDEOS_PATH, THUMBNAILS_PATH, STATS_PATH)


class BackingStoreApi:
    """Typed facade over the backing store endpoints.

    Reads go through the client's conditional GET; every write names the
    cached collections it makes stale so the next read is re-fetched.
    """

    def __init__(self, client: ResilientClient) -> None:
        self.client = client

    async def list_thumbnails(self) -> list[dict[str, object]]:
        return _collection(await self.client.get(THUMBNAILS_PATH), "thumbnails")

    async def list_videos(self) -> list[dict[str, object]]:
        return _collection(await self.client.get(VIDEOS_PATH), "videos")

    async def list_leads(self) -> list[dict[str, object]]:
        return _collection(await self.client.get(LEADS_PATH), "leads")

    async def get_stats(self) -> dict[str, object]:
        payload = await self.client.get(STATS_PATH)
        if payload is None:
            return {}
        if not isinstance(payload, dict):
            raise ParseError(message=f"Expected JSON object from {STATS_PATH}", code="invalid_stats")
        return payload

    async def add_video(self, payload: dict[str, object]) -> object:
        return await self.client.request(
            "POST",
            VIDEOS_PATH,
            body=payload,
            invalidates=VIDEO_WRITE_INVALIDATES,
        )

    async def update_video(self, video_id: str, payload: dict[str, object]) -> object:
        return await self.client.request(
            "PUT",
            _item_path(VIDEOS_PATH, video_id),
            body=payload,
            invalidates=VIDEO_WRITE_INVALIDATES,
        )

    async def delete_video(self, video_id: str) -> object:
        return await self.client.request(
            "DELETE",
            _item_path(VIDEOS_PATH, video_id),
            invalidates=VIDEO_WRITE_INVALIDATES,
        )

    async def bulk_delete_videos(self, video_ids: list[str]) -> object:
        logger.info("Bulk deleting %d video record(s)", len(video_ids))
        return await self.client.request(
            "DELETE",
            f"{VIDEOS_PATH}/bulk",
            body={"ids": list(video_ids)},
            invalidates=VIDEO_WRITE_INVALIDATES,
        )

    async def add_thumbnail(self, payload: dict[str, object]) -> object:
        return await self.client.request(
            "POST",
            THUMBNAILS_PATH,
            body=payload,
            invalidates=THUMBNAIL_WRITE_INVALIDATES,
        )

    async def update_thumbnail(self, thumbnail_id: str, payload: dict[str, object]) -> object:
        return await self.client.request(
            "PUT",
            _item_path(THUMBNAILS_PATH, thumbnail_id),
            body=payload,
            invalidates=THUMBNAIL_WRITE_INVALIDATES,
        )

    async def delete_thumbnail(self, thumbnail_id: str) -> object:
        return await self.client.request(
            "DELETE",
            _item_path(THUMBNAILS_PATH, thumbnail_id),
            invalidates=THUMBNAIL_WRITE_INVALIDATES,
        )

    async def update_lead(self, lead_id: str, payload: dict[str, object]) -> object:
        return await self.client.request(
            "PUT",
            _item_path(LEADS_PATH, lead_id),
            body=payload,
            invalidates=LEAD_WRITE_INVALIDATES,
        )

    async def delete_lead(self, lead_id: str) -> object:
        return await self.client.request(
            "DELETE",
            _item_path(LEADS_PATH, lead_id),
            invalidates=LEAD_WRITE_INVALIDATES,
        )

    async def bulk_delete_leads(self, lead_ids: list[str]) -> object:
        logger.info("Bulk deleting %d lead(s)", len(lead_ids))
        return await self.client.request(
            "DELETE",
            f"{LEADS_PATH}/bulk",
            body={"ids": list(lead_ids)},
            invalidates=LEAD_WRITE_INVALIDATES,
        )

    async def refresh_all_views(self) -> object:
        """Ask the server to recompute view counts for every tracked item."""

        return await self.client.request(
            "POST",
            VIEWS_REFRESH_PATH,
            invalidates=VIEWS_REFRESH_INVALIDATES,
        )

    async def refresh_video_views(self, video_id: str) -> object:
        return await self.client.request(
            "POST",
            _item_path(VIEWS_REFRESH_PATH, video_id),
            invalidates=VIEWS_REFRESH_INVALIDATES,
        )


def _item_path(collection: str, item_id: str) -> str:
    if not item_id:
        raise ValueError(f"Empty id for {collection}")
    return f"{collection}/{quote(item_id, safe='')}"


def _collection(payload: object, key: str) -> list[dict[str, object]]:
    if payload is None:
        return []
    if isinstance(payload, list):
        items = payload
    elif isinstance(payload, dict):
        items = payload.get(key) or []
    else:
        raise ParseError(message=f"Unexpected payload for {key}", code=f"invalid_{key}")
    if not isinstance(items, list):
        raise ParseError(message=f"Expected a list under {key!r}", code=f"invalid_{key}")
    return [item for item in items if isinstance(item, dict)]
