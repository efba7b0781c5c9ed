"""
World Collision - collision and world grid chunks of the game's asset
container.

Reads and writes collision chunks (walkable heightmaps fenced by vertical
wall boundaries) and the world grid chunk that indexes them, builds
drawable meshes of collision objects, and rebuilds the grid's collision
references from a container's collision chunks.

Includes JSON round-tripping (``to_dict`` / ``from_dict``), glTF export of
collision meshes and PNG previews of heightmaps.
"""

from .errors import FormatError, UnsupportedGeometryError
from .offset_allocator import OffsetAllocator, StructReader, StructWriter, align
from .collision import (CollisionChunk, CollisionObject, CollisionBoundary,
                        FloorType, FloorMaterial)
from .collision_mesh import build_collision_mesh
from .grid import GridChunk, GridItem, GridCollisionRef
from .grid_index import add_collision, remove_collision, rebuild
from .container import ChunkType, Chunk, MemoryContainer
from .gltf_export import collision_to_gltf, write_collision_glb
from .heightmap_image import (heightmap_array, heightmap_to_image,
                              write_heightmap_png)


def rebuild_grid_bytes(grid_bytes, collision_payloads, do_trim=True):
    """
    Rebuild a world grid chunk payload from collision chunk payloads.

    Args:
        grid_bytes: Current world grid chunk payload.
        collision_payloads: Iterable of collision chunk payloads.
        do_trim: Drop empty tiles and shrink the grid afterwards.

    Returns:
        bytes: The re-encoded world grid chunk.
    """
    container = MemoryContainer()
    container.add_chunk(grid_bytes, ChunkType.WORLD_GRID)
    for payload in collision_payloads:
        container.add_chunk(payload, ChunkType.COLLISION)
    container.rebuild_grid(do_trim=do_trim)
    return container.get_chunk_of_type(ChunkType.WORLD_GRID).contents
