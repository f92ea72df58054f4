"""Behavior catalog: the device's invocable behaviors and their names.

Loading takes two phases. One request enumerates the behavior ids, then
one detail request per id is issued concurrently and awaited jointly.
A detail request that fails only drops that id from the catalog.
"""

from __future__ import annotations

import asyncio
import logging

from .errors import CatalogError, ProtocolError, RsrError
from .models.binding import BehaviorDetail, behavior_label
from .protocol.commands import build_get_behavior_details, build_list_all_behaviors
from .protocol.parser import parse_behavior_details, parse_behavior_list
from .transport.connection import StudioConnection

logger = logging.getLogger(__name__)


async def _fetch_detail(connection: StudioConnection, behavior_id: int) -> BehaviorDetail:
    response = await connection.call_rpc(build_get_behavior_details(behavior_id))
    detail = parse_behavior_details(response)
    if detail.id != behavior_id:
        raise ProtocolError(f"Details for behavior {detail.id} returned for {behavior_id}")
    return detail


async def load_catalog(connection: StudioConnection) -> dict[int, BehaviorDetail]:
    """Enumerate the device's behaviors and fetch each one's details.

    Returns:
        Behavior details keyed by id. Ids whose details could not be
        fetched are absent.

    Raises:
        CatalogError: If the enumeration itself fails.
    """
    try:
        response = await connection.call_rpc(build_list_all_behaviors())
        behavior_ids = parse_behavior_list(response)
    except (RsrError, ConnectionError) as e:
        raise CatalogError(f"Failed to list behaviors: {e}") from e

    results = await asyncio.gather(
        *(_fetch_detail(connection, bid) for bid in behavior_ids),
        return_exceptions=True,
    )

    catalog: dict[int, BehaviorDetail] = {}
    for behavior_id, result in zip(behavior_ids, results):
        if isinstance(result, BaseException):
            if not isinstance(result, Exception):
                raise result
            logger.warning("Skipping behavior %d: %s", behavior_id, result)
            continue
        catalog[behavior_id] = result

    logger.info("Loaded %d of %d behaviors", len(catalog), len(behavior_ids))
    return catalog


class BehaviorCatalog:
    """Caches one catalog load per connection lifetime.

    The cache is keyed on the connection's generation, so a reconnect
    discards it entirely. Concurrent :meth:`get` calls are not
    deduplicated; callers keep to one load at a time.
    """

    def __init__(self) -> None:
        self._behaviors: dict[int, BehaviorDetail] = {}
        self._generation: int | None = None

    @property
    def loaded(self) -> bool:
        return self._generation is not None

    @property
    def behaviors(self) -> dict[int, BehaviorDetail]:
        return dict(self._behaviors)

    async def get(self, connection: StudioConnection) -> dict[int, BehaviorDetail]:
        if self._generation == connection.generation:
            return self.behaviors
        self.invalidate()
        self._behaviors = await load_catalog(connection)
        self._generation = connection.generation
        return self.behaviors

    def invalidate(self) -> None:
        self._behaviors = {}
        self._generation = None

    def label(self, behavior_id: int) -> str:
        return behavior_label(self._behaviors, behavior_id)
