"""Resolve the rotate subsystem's identifier to its connection-scoped index."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .protocol.commands import ProtocolRevision
from .transport.connection import StudioConnection

logger = logging.getLogger(__name__)

# Identifiers registered by the firmware, in lookup order
SUBSYSTEM_REVISIONS: dict[str, ProtocolRevision] = {
    "cormoran_rsr": ProtocolRevision.PER_DIRECTION,
    "zmk__template": ProtocolRevision.COMBINED,
}

DEFAULT_IDENTIFIER = "cormoran_rsr"


@dataclass(frozen=True)
class SubsystemHandle:
    """A located subsystem, valid only for the connection it was found on."""

    identifier: str
    index: int
    revision: ProtocolRevision
    generation: int

    def is_valid_for(self, connection: StudioConnection) -> bool:
        return connection.connected and connection.generation == self.generation


def locate(
    connection: StudioConnection, identifier: str | None = None
) -> SubsystemHandle | None:
    """Find the rotate subsystem in the connection's advertised list.

    Args:
        connection: An open connection whose subsystem list is current.
        identifier: Identifier to look for. When omitted, every known
            identifier is tried in order.

    Returns:
        A handle, or ``None`` when the firmware lacks the module.
    """
    advertised = {s.identifier: s.index for s in connection.subsystems}
    candidates = [identifier] if identifier else list(SUBSYSTEM_REVISIONS)

    for candidate in candidates:
        if candidate in advertised:
            revision = SUBSYSTEM_REVISIONS.get(candidate, ProtocolRevision.PER_DIRECTION)
            handle = SubsystemHandle(
                identifier=candidate,
                index=advertised[candidate],
                revision=revision,
                generation=connection.generation,
            )
            logger.info(
                "Located subsystem %s at index %d (%s writes)",
                candidate,
                handle.index,
                revision.value,
            )
            return handle

    logger.info("Subsystem %s not present", " / ".join(candidates))
    return None
