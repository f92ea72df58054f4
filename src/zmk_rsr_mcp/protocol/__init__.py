"""Protocol layer: protobuf schema, serial framing, request builders, and response parsing."""

from .framing import build_frame, FrameDecoder
from .commands import ProtocolRevision
