import os
from pathlib import Path
from typing import Tuple
import logging

from PIL import Image

log = logging.getLogger(__name__)

THUMBNAIL_FORMAT = "JPEG"

def calculate_thumbnail_size(width: int, height: int, max_width: int = 300, max_height: int = 300) -> Tuple[int, int]:
    """
        Fits (width, height) into the bounding box keeping the aspect ratio.
        Smaller images are scaled up to touch the box.
    """
    if width <= 0 or height <= 0:
        raise ValueError(f"Invalid image dimensions {width}x{height}")
    # floor(side * min(max_width / width, max_height / height)) in exact integer arithmetic
    if max_width * height <= max_height * width:
        new_width, new_height = max_width, height * max_width // width
    else:
        new_width, new_height = width * max_height // height, max_height
    # extreme aspect ratios would otherwise floor to 0
    return max(1, new_width), max(1, new_height)

def read_image_size(source: Path) -> Tuple[int, int]:
    with Image.open(source) as img:
        return img.size

def generate_thumbnail(source: Path, target: Path, size: Tuple[int, int], quality: int = 85) -> Path:
    """
        Decodes source, resizes it to size and writes a JPEG to target.
        Written through a temp file so a crash never leaves half a thumbnail behind.
    """
    tmp = target.with_name(target.name + ".tmp")
    with Image.open(source) as img:
        if img.mode not in ("RGB", "L"):
            img = img.convert("RGB")
        resized = img.resize(size, Image.Resampling.LANCZOS)
        resized.save(tmp, format=THUMBNAIL_FORMAT, quality=quality)
    os.replace(tmp, target)
    log.debug("Wrote thumbnail %s (%dx%d)", target, size[0], size[1])
    return target
