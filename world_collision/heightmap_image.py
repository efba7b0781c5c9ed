"""
Preview images of collision object heightmaps.

The whole outer grid is drawn as one grayscale image with an alpha
channel: populated cells are opaque with heights normalised to the
object's own range, cells without floor are transparent. Neighbouring
cells share their edge samples, so each cell advances the image by
``inner_grid_size - 1`` pixels.
"""

import logging
import os

import numpy as np
from PIL import Image

log = logging.getLogger(__name__)


def heightmap_array(obj):
    """
    Assemble an object's heightmap into one array.

    Returns:
        tuple: (heights, present) numpy arrays of shape
        ``(rows, cols)`` where rows/cols are ``grid * (n - 1) + 1``;
        ``present`` is a bool mask of samples that belong to a cell.
    """
    size = obj.inner_grid_size
    stride = max(size - 1, 1)
    rows = obj.outer_grid_height * stride + 1
    cols = obj.outer_grid_width * stride + 1
    heights = np.zeros((rows, cols), dtype=np.float64)
    present = np.zeros((rows, cols), dtype=bool)

    for oz in range(obj.outer_grid_height):
        for ox in range(obj.outer_grid_width):
            samples = obj.heightmap_grid[oz * obj.outer_grid_width + ox]
            if samples is None:
                continue
            block = np.array(samples, dtype=np.float64).reshape(size, size)
            r0 = oz * stride
            c0 = ox * stride
            heights[r0:r0 + size, c0:c0 + size] = block
            present[r0:r0 + size, c0:c0 + size] = True
    return heights, present


def heightmap_to_image(obj, pixels_per_sample=1):
    """
    Render an object's heightmap as an 8-bit grayscale + alpha image.

    Args:
        obj: CollisionObject.
        pixels_per_sample: Integer upscale factor (nearest neighbour).

    Returns:
        tuple: (PIL.Image in 'LA' mode, height_min, height_max). The
        image is None when the object has no heightmap cells.
    """
    if not obj.outer_grid_width or not obj.outer_grid_height or \
            all(cell is None for cell in obj.heightmap_grid):
        return None, 0.0, 0.0

    heights, present = heightmap_array(obj)
    height_min = float(heights[present].min())
    height_max = float(heights[present].max())
    height_scale = height_max - height_min
    if height_scale < 1e-6:
        height_scale = 1.0

    luminance = np.where(
        present, (heights - height_min) / height_scale * 255 + 0.5, 0)
    alpha = np.where(present, 255, 0)
    pixels = np.dstack([luminance, alpha]).clip(0, 255).astype(np.uint8)
    img = Image.fromarray(pixels)

    if pixels_per_sample > 1:
        img = img.resize((img.width * pixels_per_sample,
                          img.height * pixels_per_sample),
                         Image.Resampling.NEAREST)
    return img, height_min, height_max


def write_heightmap_png(obj, output_path, pixels_per_sample=1):
    """
    Write an object's heightmap preview to a PNG file.

    Returns:
        tuple: (height_min, height_max), or None if the object has no
        heightmap to draw.
    """
    img, height_min, height_max = heightmap_to_image(obj, pixels_per_sample)
    if img is None:
        return None
    parent = os.path.dirname(output_path)
    if parent and not os.path.exists(parent):
        os.makedirs(parent)
    img.save(output_path, 'PNG')
    log.info("Wrote heightmap preview: %s (%dx%d)",
             output_path, img.width, img.height)
    return height_min, height_max
