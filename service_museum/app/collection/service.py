"""
Collection queries built on top of the mediation facade.
"""

from __future__ import annotations

import asyncio
import re
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

from shared.errors import ValidationError
from shared.logging import get_logger

from service_museum.app.mediation.facade import MediationFacade


API_PREFIX = "/public/collection/v1"

_OBJECT_ID_PATTERN = re.compile(r"^[0-9]{1,12}$")


def search_images_request(query: str) -> Tuple[str, str]:
    return f"{API_PREFIX}/search?hasImages=true&q={quote(query, safe='')}", f"search-images-{query}"


def search_artist_request(artist: str) -> Tuple[str, str]:
    return f"{API_PREFIX}/search?artistOrCulture=true&q={quote(artist, safe='')}", f"search-artist-{artist}"


def search_department_request(department_id: str, query: str) -> Tuple[str, str]:
    return (
        f"{API_PREFIX}/search?departmentId={quote(department_id, safe='')}&q={quote(query, safe='')}",
        f"search-department-{department_id}",
    )


def object_detail_request(object_id: str) -> Tuple[str, str]:
    return f"{API_PREFIX}/objects/{object_id}", f"object-detail-{object_id}"


def departments_request() -> Tuple[str, str]:
    return f"{API_PREFIX}/departments", "departments"


def _list_field(payload: Any, field: str) -> List[Any]:
    """Read a list field, treating missing, null or non-list values as empty."""
    if not isinstance(payload, dict):
        return []
    value = payload.get(field)
    return list(value) if isinstance(value, list) else []


class CollectionService:
    """Translates collection queries into mediated upstream calls.

    Composite searches fan out to one object-detail fetch per ID; a failed
    detail is dropped and the successful ones are returned in search order.
    """

    def __init__(
        self,
        facade: MediationFacade,
        *,
        default_image_query: str = "painting",
        department_search_query: str = "portrait",
    ) -> None:
        self.facade = facade
        self.default_image_query = default_image_query
        self.department_search_query = department_search_query
        self.logger = get_logger("museum.collection")

    async def search_with_images(self, query: Optional[str] = None) -> List[int]:
        """Object IDs of works with images matching ``query``."""
        path, key = search_images_request(query or self.default_image_query)
        return _list_field(await self.facade.fetch_with_mediation(path, key), "objectIDs")

    async def get_object(self, object_id: str) -> Dict[str, Any]:
        """Full record for one object."""
        object_id = str(object_id).strip()
        if not _OBJECT_ID_PATTERN.match(object_id):
            raise ValidationError("objectID must be a positive integer", {"objectID": object_id})
        path, key = object_detail_request(object_id)
        return await self.facade.fetch_with_mediation(path, key)

    async def list_departments(self) -> List[Dict[str, Any]]:
        path, key = departments_request()
        return _list_field(await self.facade.fetch_with_mediation(path, key), "departments")

    async def search_by_artist(self, artist: Optional[str]) -> List[Dict[str, Any]]:
        """Object records for an artist or culture."""
        if not artist:
            raise ValidationError("Artist name (q) is required.")
        path, key = search_artist_request(artist)
        object_ids = _list_field(await self.facade.fetch_with_mediation(path, key), "objectIDs")
        return await self._fetch_objects(object_ids)

    async def search_by_department(self, department_id: Optional[str]) -> List[Dict[str, Any]]:
        """Object records for a department."""
        if not department_id:
            raise ValidationError("departmentId is required.")
        path, key = search_department_request(str(department_id), self.department_search_query)
        object_ids = _list_field(await self.facade.fetch_with_mediation(path, key), "objectIDs")
        return await self._fetch_objects(object_ids)

    async def _fetch_objects(self, object_ids: List[Any]) -> List[Dict[str, Any]]:
        requests = [object_detail_request(str(object_id)) for object_id in object_ids]
        results = await asyncio.gather(
            *(self.facade.fetch_with_mediation(path, key) for path, key in requests),
            return_exceptions=True,
        )

        artworks: List[Dict[str, Any]] = []
        for object_id, outcome in zip(object_ids, results):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, Exception):
                self.logger.warning("Could not fetch object detail", object_id=object_id, error=str(outcome))
                continue
            if outcome is None:
                continue
            artworks.append(outcome)

        if len(artworks) < len(object_ids):
            self.logger.info("Partial fan-out result", requested=len(object_ids), returned=len(artworks))
        return artworks
