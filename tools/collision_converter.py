#!/usr/bin/env python
"""
Collision / world grid chunk converter.

Converts raw collision (type 5) and world grid (type 19) chunk payloads to
human-readable JSON and back, exports collision meshes to glTF and
heightmaps to PNG, and rebuilds a world grid from collision chunks.

Usage:
  python collision_converter.py col2json <input.col> [-o output.json]
  python collision_converter.py col2json --dir <col_dir> [-o output_dir]
  python collision_converter.py json2col <input.json> [-o output.col]
  python collision_converter.py grid2json <input.grid> [-o output.json]
  python collision_converter.py json2grid <input.json> [-o output.grid]
  python collision_converter.py col2glb <input.col> [-o output.glb] [--lines]
  python collision_converter.py col2png <input.col> [-o output_dir] [--scale N]
  python collision_converter.py rebuild-grid <input.grid> <a.col> ...
                                [-o output.grid] [--no-trim]
"""

import json
import logging
import os
import sys
import argparse

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from world_collision import (CollisionChunk, GridChunk, FormatError,
                             rebuild_grid_bytes, write_collision_glb,
                             write_heightmap_png)

_COLLISION_EXTENSIONS = ('.col', '.bin')


def _read_bytes(path):
    with open(path, 'rb') as f:
        return f.read()


def _write_bytes(path, data):
    with open(path, 'wb') as f:
        f.write(data)


def _write_json(path, data):
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=2, ensure_ascii=False)


def _read_json(path):
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


# ===================================================================
# Public conversion functions
# ===================================================================

def collision_to_json(col_path):
    """Convert a collision chunk file to a JSON-serialisable dict."""
    chunk = CollisionChunk.from_bytes(_read_bytes(col_path))
    data = chunk.to_dict()
    data['_meta'] = {
        'filename': os.path.basename(col_path),
        'object_count': len(chunk.objects),
        'boundary_count': sum(len(obj.bounds) for obj in chunk.objects),
    }
    return data


def json_to_collision(json_data):
    """
    Convert a JSON dict (as produced by collision_to_json) back to a
    collision chunk payload.
    """
    return CollisionChunk.from_dict(json_data).to_bytes()


def grid_to_json(grid_path):
    """Convert a world grid chunk file to a JSON-serialisable dict."""
    grid = GridChunk.from_bytes(_read_bytes(grid_path))
    data = grid.to_dict()
    data['_meta'] = {
        'filename': os.path.basename(grid_path),
        'populated_tiles': sum(1 for item in grid.grid if item is not None),
    }
    return data


def json_to_grid(json_data):
    """Convert a JSON dict (as produced by grid_to_json) to grid bytes."""
    return GridChunk.from_dict(json_data).to_bytes()


def convert_directory(col_dir, output_dir):
    """Batch-convert every collision chunk file in col_dir to JSON."""
    os.makedirs(output_dir, exist_ok=True)

    results = {'converted': [], 'failed': []}

    for filename in sorted(os.listdir(col_dir)):
        if not filename.lower().endswith(_COLLISION_EXTENSIONS):
            continue

        col_path = os.path.join(col_dir, filename)
        json_name = os.path.splitext(filename)[0] + '.json'
        json_path = os.path.join(output_dir, json_name)

        try:
            data = collision_to_json(col_path)
            _write_json(json_path, data)
            results['converted'].append({
                'file': filename,
                'objects': data['_meta']['object_count'],
            })
            print("  OK  {:40s} {:>4} objects".format(
                filename, data['_meta']['object_count']))
        except (FormatError, OSError) as e:
            results['failed'].append({'file': filename, 'error': str(e)})
            print("  FAIL  {:40s} -- {}".format(filename, e))

    return results


def export_heightmaps(col_path, output_dir, scale=1):
    """Write one PNG per collision object that has a heightmap."""
    chunk = CollisionChunk.from_bytes(_read_bytes(col_path))
    base = os.path.splitext(os.path.basename(col_path))[0]
    written = []
    for index, obj in enumerate(chunk.objects):
        path = os.path.join(output_dir, '{}_{}.png'.format(base, index))
        if write_heightmap_png(obj, path, scale) is not None:
            written.append(path)
    return written


# ===================================================================
# CLI
# ===================================================================

def main():
    parser = argparse.ArgumentParser(
        description='Collision / world grid chunk converter')
    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Enable debug logging')
    subparsers = parser.add_subparsers(dest='command')

    # -- col2json -------------------------------------------------------
    p_c2j = subparsers.add_parser('col2json',
                                  help='Convert a collision chunk to JSON')
    p_c2j.add_argument('input', nargs='?', help='Input collision chunk file')
    p_c2j.add_argument('-o', '--output',
                       help='Output .json file (or directory with --dir)')
    p_c2j.add_argument('--dir',
                       help='Batch-convert all collision files in a directory')

    # -- json2col -------------------------------------------------------
    p_j2c = subparsers.add_parser('json2col',
                                  help='Convert JSON back to a collision chunk')
    p_j2c.add_argument('input', help='Input .json file')
    p_j2c.add_argument('-o', '--output', help='Output .col file')

    # -- grid2json ------------------------------------------------------
    p_g2j = subparsers.add_parser('grid2json',
                                  help='Convert a world grid chunk to JSON')
    p_g2j.add_argument('input', help='Input world grid chunk file')
    p_g2j.add_argument('-o', '--output', help='Output .json file')

    # -- json2grid ------------------------------------------------------
    p_j2g = subparsers.add_parser('json2grid',
                                  help='Convert JSON back to a world grid')
    p_j2g.add_argument('input', help='Input .json file')
    p_j2g.add_argument('-o', '--output', help='Output .grid file')

    # -- col2glb --------------------------------------------------------
    p_c2g = subparsers.add_parser('col2glb',
                                  help='Export collision meshes to glTF')
    p_c2g.add_argument('input', help='Input collision chunk file')
    p_c2g.add_argument('-o', '--output', help='Output .glb file')
    p_c2g.add_argument('--lines', action='store_true',
                       help='Export wireframe line segments')

    # -- col2png --------------------------------------------------------
    p_c2p = subparsers.add_parser('col2png',
                                  help='Export heightmap previews to PNG')
    p_c2p.add_argument('input', help='Input collision chunk file')
    p_c2p.add_argument('-o', '--output', help='Output directory')
    p_c2p.add_argument('--scale', type=int, default=1,
                       help='Pixels per height sample')

    # -- rebuild-grid ---------------------------------------------------
    p_rg = subparsers.add_parser(
        'rebuild-grid', help='Rebuild a world grid from collision chunks')
    p_rg.add_argument('grid', help='Input world grid chunk file')
    p_rg.add_argument('collision', nargs='+',
                      help='Collision chunk files to index')
    p_rg.add_argument('-o', '--output',
                      help='Output grid file (defaults to overwriting GRID)')
    p_rg.add_argument('--no-trim', action='store_true',
                      help='Keep empty tiles around the populated area')

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(levelname)s %(name)s: %(message)s')

    if args.command == 'col2json':
        if args.dir:
            output_dir = args.output or os.path.join(args.dir, 'json')
            print("Converting all collision files in: {}".format(args.dir))
            print("Output directory: {}\n".format(output_dir))
            results = convert_directory(args.dir, output_dir)
            print("\n{} converted, {} failed".format(
                len(results['converted']), len(results['failed'])))
        elif args.input:
            output = args.output or os.path.splitext(args.input)[0] + '.json'
            data = collision_to_json(args.input)
            _write_json(output, data)
            print("{} -> {} ({} objects)".format(
                args.input, output, data['_meta']['object_count']))
        else:
            p_c2j.print_help()

    elif args.command == 'json2col':
        json_data = _read_json(args.input)
        output = args.output or os.path.splitext(args.input)[0] + '.col'
        _write_bytes(output, json_to_collision(json_data))
        print("{} -> {} ({} objects)".format(
            args.input, output, len(json_data.get('objects', []))))

    elif args.command == 'grid2json':
        output = args.output or os.path.splitext(args.input)[0] + '.json'
        data = grid_to_json(args.input)
        _write_json(output, data)
        print("{} -> {} ({}x{} tiles, {} populated)".format(
            args.input, output, data['width'], data['height'],
            data['_meta']['populated_tiles']))

    elif args.command == 'json2grid':
        json_data = _read_json(args.input)
        output = args.output or os.path.splitext(args.input)[0] + '.grid'
        _write_bytes(output, json_to_grid(json_data))
        print("{} -> {}".format(args.input, output))

    elif args.command == 'col2glb':
        output = args.output or os.path.splitext(args.input)[0] + '.glb'
        chunk = CollisionChunk.from_bytes(_read_bytes(args.input))
        count = write_collision_glb(chunk, output, line_mode=args.lines)
        print("{} -> {} ({} of {} objects)".format(
            args.input, output, count, len(chunk.objects)))

    elif args.command == 'col2png':
        output_dir = args.output or os.path.dirname(
            os.path.abspath(args.input))
        written = export_heightmaps(args.input, output_dir, args.scale)
        print("{} -> {} ({} heightmaps)".format(
            args.input, output_dir, len(written)))

    elif args.command == 'rebuild-grid':
        output = args.output or args.grid
        payloads = [_read_bytes(path) for path in args.collision]
        grid_bytes = rebuild_grid_bytes(_read_bytes(args.grid), payloads,
                                        do_trim=not args.no_trim)
        _write_bytes(output, grid_bytes)
        print("{} -> {} ({} collision chunks)".format(
            args.grid, output, len(payloads)))

    else:
        parser.print_help()


if __name__ == '__main__':
    main()
