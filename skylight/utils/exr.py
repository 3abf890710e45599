"""
Skylight LUT Persistence - NumPy archives and tiled EXR images.

3D scattering LUTs are stored in EXR as a 2D image by tiling their depth
slices side by side: a (D, H, W, C) grid becomes a (H, W * D) image, slice d
occupying columns [d * W, (d + 1) * W).
"""

import os
import sys

import numpy as np

# OpenEXR is optional; only the EXR functions need it
try:
    import OpenEXR
    import Imath
    HAS_OPENEXR = True
except ImportError:
    HAS_OPENEXR = False


CHANNEL_NAMES = ('R', 'G', 'B', 'A')

_TEXTURE_NAMES = (
    'transmittance',
    'delta_rayleigh',
    'delta_mie',
    'scattering',
    'single_mie_scattering',
)


def tile_depth_slices(data: np.ndarray) -> np.ndarray:
    """Convert a (D, H, W, C) grid into a (H, W * D, C) image."""
    depth, height, width, channels = data.shape
    return np.ascontiguousarray(data.transpose(1, 0, 2, 3)).reshape(height, depth * width, channels)


def untile_depth_slices(image: np.ndarray, depth: int) -> np.ndarray:
    """Inverse of tile_depth_slices."""
    height, tiled_width, channels = image.shape
    if depth < 1 or tiled_width % depth:
        raise ValueError(f"Image width {tiled_width} is not a multiple of depth {depth}")
    width = tiled_width // depth
    return np.ascontiguousarray(image.reshape(height, depth, width, channels).transpose(1, 0, 2, 3))


def write_lut_exr(filepath: str, data: np.ndarray, half_precision: bool = False) -> None:
    """
    Write a LUT as an EXR image.

    Args:
        filepath: Output file path
        data: (H, W, C) table or (D, H, W, C) grid, with 1 to 4 channels
        half_precision: Use 16-bit float (True) or 32-bit float (False)
    """
    if not HAS_OPENEXR:
        raise RuntimeError("OpenEXR module not available. "
                           "Install with: pip install OpenEXR")

    data = np.asarray(data, dtype=np.float32)
    if data.ndim == 4:
        data = tile_depth_slices(data)
    if data.ndim != 3 or not 1 <= data.shape[2] <= len(CHANNEL_NAMES):
        raise ValueError(f"Expected (H, W, C) or (D, H, W, C) data with 1-4 channels, "
                         f"got shape {data.shape}")

    if half_precision:
        pixel_type = Imath.PixelType(Imath.PixelType.HALF)
        dtype = np.float16
    else:
        pixel_type = Imath.PixelType(Imath.PixelType.FLOAT)
        dtype = np.float32

    height, width, channels = data.shape
    header = OpenEXR.Header(width, height)
    header['channels'] = {name: Imath.Channel(pixel_type) for name in CHANNEL_NAMES[:channels]}
    channel_data = {
        name: np.ascontiguousarray(data[:, :, i]).astype(dtype).tobytes()
        for i, name in enumerate(CHANNEL_NAMES[:channels])
    }

    exr_file = OpenEXR.OutputFile(filepath, header)
    try:
        exr_file.writePixels(channel_data)
    finally:
        exr_file.close()


def read_lut_exr(filepath: str, depth: int = None) -> np.ndarray:
    """
    Read a LUT written by write_lut_exr.

    Args:
        filepath: Path to EXR file
        depth: Number of tiled depth slices; None for a 2D table

    Returns:
        (H, W, C) array, or (D, H, W, C) when depth is given
    """
    if not HAS_OPENEXR:
        raise RuntimeError("OpenEXR module not available")

    if not os.path.exists(filepath):
        raise FileNotFoundError(f"EXR file not found: {filepath}")

    exr_file = OpenEXR.InputFile(filepath)
    try:
        header = exr_file.header()
        dw = header['dataWindow']
        width = dw.max.x - dw.min.x + 1
        height = dw.max.y - dw.min.y + 1

        names = [name for name in CHANNEL_NAMES if name in header['channels']]
        if not names:
            raise ValueError(f"No R/G/B/A channels in {filepath}")

        pt = Imath.PixelType(Imath.PixelType.FLOAT)
        image = np.stack([
            np.frombuffer(exr_file.channel(name, pt), dtype=np.float32).reshape(height, width)
            for name in names
        ], axis=2)
    finally:
        exr_file.close()

    if depth is None:
        return image
    return untile_depth_slices(image, depth)


def save_textures(filepath: str, textures) -> None:
    """Save PrecomputedTextures to a compressed NumPy archive."""
    arrays = {name: getattr(textures, name) for name in _TEXTURE_NAMES
              if getattr(textures, name) is not None}
    np.savez_compressed(filepath, **arrays)
    print(f"[Skylight] Saved textures: {filepath}")
    sys.stdout.flush()


def load_textures(filepath: str):
    """Load PrecomputedTextures from a NumPy archive written by save_textures."""
    from ..core.precompute import PrecomputedTextures

    if not os.path.exists(filepath):
        raise FileNotFoundError(f"Texture archive not found: {filepath}")

    with np.load(filepath) as data:
        missing = [name for name in _TEXTURE_NAMES[1:] if name not in data]
        if missing:
            raise ValueError(f"{filepath} is missing texture(s): {', '.join(missing)}")
        return PrecomputedTextures(**{
            name: data[name] if name in data else None for name in _TEXTURE_NAMES
        })


def save_textures_exr(output_dir: str, textures, half_precision: bool = False) -> None:
    """
    Save PrecomputedTextures as one EXR per texture.

    Creates transmittance.exr (2D) plus delta_rayleigh.exr, delta_mie.exr,
    scattering.exr and single_mie_scattering.exr (3D stored as tiled 2D).
    """
    os.makedirs(output_dir, exist_ok=True)
    for name in _TEXTURE_NAMES:
        data = getattr(textures, name)
        if data is None:
            continue
        filepath = os.path.join(output_dir, f"{name}.exr")
        write_lut_exr(filepath, data, half_precision)
        print(f"[Skylight] Saved EXR: {filepath} {tuple(data.shape)}")
    sys.stdout.flush()
