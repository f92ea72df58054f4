"""Transport layer: the studio connection contract and the serial adapter."""

from .connection import StudioConnection
