"""
In-memory stand-in for the game's chunk container.

The container framing itself (chunk headers, padding, the archive the
chunk files live in) is handled elsewhere. Collision and grid code only
needs ``get_chunks_of_type(type)`` returning the payload bytes of every
chunk of a type, with each payload fully loaded before it is decoded.
"""

import logging
from enum import IntEnum

log = logging.getLogger(__name__)


class ChunkType(IntEnum):
    EOF = 0
    MATERIALS = 2
    WORLD_MODEL = 3
    IMAGE = 4
    COLLISION = 5
    MODEL_LIST = 8
    DYNAMIC_MODEL = 12
    MODEL = 13
    SKELETON = 18
    WORLD_GRID = 19
    DYNAMIC_OBJECTS = 29
    HEADER = 31
    ASSET_GROUP = 32
    SHADOW_MODEL = 33
    ZONE_VIS = 35
    LEVEL_DLL = 37
    TABLE = 42


class Chunk(object):
    """One chunk payload with its type and id."""

    def __init__(self, contents, type, id=0):
        self.contents = bytes(contents)
        self.type = int(type)
        self.id = id


class MemoryContainer(object):
    """
    Ordered list of chunk payloads held in memory.

    Args:
        chunks: Optional list of Chunk.
    """

    def __init__(self, chunks=None):
        self.chunks = list(chunks or [])

    def add_chunk(self, contents, type, id=0):
        chunk = Chunk(contents, type, id)
        self.chunks.append(chunk)
        return chunk

    def get_chunks_of_type(self, type):
        """Payload bytes of every chunk of *type*, in container order."""
        return [chunk.contents for chunk in self.chunks
                if chunk.type == int(type)]

    def get_chunk_of_type(self, type, index=0):
        """
        Return the *index*-th Chunk of *type*.

        Raises:
            KeyError: If there is no such chunk.
        """
        remaining = index
        for chunk in self.chunks:
            if chunk.type == int(type):
                if remaining <= 0:
                    return chunk
                remaining -= 1
        raise KeyError("Chunk of type {} not found with index {}".format(
            int(type), index))

    def rebuild_grid(self, do_trim=True):
        """
        Rebuild the world grid chunk from this container's collision.

        Raises:
            KeyError: If the container has no world grid chunk.
        """
        from .grid import GridChunk

        grid_chunk = self.get_chunk_of_type(ChunkType.WORLD_GRID)
        grid = GridChunk.from_bytes(grid_chunk.contents)
        grid.rebuild(self, do_trim=do_trim)
        grid_chunk.contents = grid.to_bytes()
        log.info("Replaced world grid chunk (%d bytes)",
                 len(grid_chunk.contents))
        return grid
