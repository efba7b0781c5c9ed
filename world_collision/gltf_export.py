"""
Export collision chunks as glTF 2.0 binary (.glb) files.

Each collision object becomes a named node (``Collision_<index>``) with
one mesh primitive built by ``CollisionObject.to_mesh``. Gameplay
attributes ride along in the node extras so the objects can be inspected
or edited in a DCC tool:

  collision, collision_mask, drown_target, floor_type, floor_material,
  water_splash_object (node name or ""), zone_id, heightmap_resolution

The per-vertex wall/floor tags are kept in the primitive extras as
``vertex_types``.
"""

import logging
import os
import struct

import pygltflib

from .errors import UnsupportedGeometryError

log = logging.getLogger(__name__)


def _node_name(index):
    return 'Collision_{}'.format(index)


def _enum_name(value):
    return getattr(value, 'name', str(value))


def _pad4(blob):
    while len(blob) % 4 != 0:
        blob.append(0)


def _write_primitive(gltf, blob, mesh, line_mode):
    """Append one mesh's buffers and accessors; returns the primitive."""
    vertices = mesh['vertices']
    indices = mesh['indices']
    attributes = pygltflib.Attributes()

    # --- Indices ---
    idx_offset = len(blob)
    for i in indices:
        blob.extend(struct.pack('<I', i))
    idx_length = len(blob) - idx_offset
    _pad4(blob)

    idx_bv = len(gltf.bufferViews)
    gltf.bufferViews.append(pygltflib.BufferView(
        buffer=0,
        byteOffset=idx_offset,
        byteLength=idx_length,
        target=pygltflib.ELEMENT_ARRAY_BUFFER,
    ))
    idx_acc = len(gltf.accessors)
    gltf.accessors.append(pygltflib.Accessor(
        bufferView=idx_bv,
        componentType=pygltflib.UNSIGNED_INT,
        count=len(indices),
        type=pygltflib.SCALAR,
        max=[max(indices)],
        min=[min(indices)],
    ))

    # --- Positions ---
    pos_offset = len(blob)
    mins = [float('inf')] * 3
    maxs = [float('-inf')] * 3
    for i, value in enumerate(vertices):
        c = i % 3
        mins[c] = min(mins[c], value)
        maxs[c] = max(maxs[c], value)
        blob.extend(struct.pack('<f', value))
    pos_length = len(blob) - pos_offset

    pos_bv = len(gltf.bufferViews)
    gltf.bufferViews.append(pygltflib.BufferView(
        buffer=0,
        byteOffset=pos_offset,
        byteLength=pos_length,
        target=pygltflib.ARRAY_BUFFER,
    ))
    pos_acc = len(gltf.accessors)
    gltf.accessors.append(pygltflib.Accessor(
        bufferView=pos_bv,
        componentType=pygltflib.FLOAT,
        count=len(vertices) // 3,
        type=pygltflib.VEC3,
        max=maxs,
        min=mins,
    ))
    attributes.POSITION = pos_acc

    return pygltflib.Primitive(
        attributes=attributes,
        indices=idx_acc,
        material=0,
        mode=pygltflib.LINES if line_mode else pygltflib.TRIANGLES,
        extras={'vertex_types': mesh['types']},
    )


def _object_extras(obj):
    splash = obj.water_splash_object
    return {
        'collision': True,
        'collision_mask': obj.mask,
        'drown_target': obj.drown_target,
        'floor_type': _enum_name(obj.floor_type),
        'floor_material': _enum_name(obj.floor_material),
        'water_splash_object': _node_name(splash) if splash >= 0 else '',
        'zone_id': obj.zone,
        'heightmap_resolution': obj.inner_tile_size,
    }


def collision_to_gltf(chunk, line_mode=False):
    """
    Build a pygltflib.GLTF2 document for a collision chunk.

    Objects whose walls cannot be meshed are left out with a warning, and
    objects without any geometry are left out silently.
    """
    gltf = pygltflib.GLTF2(
        asset=pygltflib.Asset(version="2.0", generator="world-collision"),
        scene=0,
        scenes=[pygltflib.Scene(nodes=[])],
        materials=[pygltflib.Material(
            name="Collision", doubleSided=True,
            extras={'collision_chunk': chunk.id})],
    )
    blob = bytearray()

    for index, obj in enumerate(chunk.objects):
        try:
            mesh = obj.to_mesh(index, line_mode=line_mode)
        except UnsupportedGeometryError as e:
            log.warning("Skipping collision object %d: %s", index, e)
            continue
        if not mesh['indices']:
            log.debug("Skipping collision object %d: no geometry", index)
            continue

        node_idx = len(gltf.nodes)
        gltf.scenes[0].nodes.append(node_idx)
        mesh_idx = len(gltf.meshes)
        gltf.nodes.append(pygltflib.Node(
            name=_node_name(index), mesh=mesh_idx,
            extras=_object_extras(obj)))
        gltf.meshes.append(pygltflib.Mesh(
            name=_node_name(index),
            primitives=[_write_primitive(gltf, blob, mesh, line_mode)]))

    # glTF forbids empty buffers
    if blob:
        gltf.buffers = [pygltflib.Buffer(byteLength=len(blob))]
        gltf.set_binary_blob(bytes(blob))
    return gltf


def write_collision_glb(chunk, output_path, line_mode=False):
    """Write a collision chunk to a .glb file; returns the node count."""
    gltf = collision_to_gltf(chunk, line_mode=line_mode)
    parent = os.path.dirname(output_path)
    if parent and not os.path.exists(parent):
        os.makedirs(parent)
    gltf.save_binary(output_path)
    log.info("Wrote glTF binary: %s (%d objects)",
             output_path, len(gltf.nodes))
    return len(gltf.nodes)
