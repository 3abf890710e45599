"""
Skylight Utilities
"""

from .exr import (
    HAS_OPENEXR,
    load_textures,
    read_lut_exr,
    save_textures,
    save_textures_exr,
    write_lut_exr,
)
