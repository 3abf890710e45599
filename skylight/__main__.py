"""
Skylight command line.

Usage:
    python -m skylight precompute --config configs/earth.yaml --output luts --jobs -1
"""

import argparse
import os
import sys
from typing import List, Optional

from .core.constants import DEFAULT_BLOCK_SIZE, SAMPLE_COUNT, TRANSMITTANCE_SAMPLE_COUNT
from .core.coordinates import ScatteringGridExtents
from .core.model import AtmosphereModel
from .core.parameters import AtmosphereParameters, ConfigError, load_atmosphere_parameters


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="skylight",
        description="Precompute single scattering atmosphere LUTs.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    precompute = subparsers.add_parser("precompute", help="Compute and save the LUTs")
    precompute.add_argument(
        "--config",
        type=str,
        default=None,
        help="YAML atmosphere configuration (default: Earth)",
    )
    precompute.add_argument(
        "--output",
        type=str,
        default="luts",
        help="Output directory (default: luts)",
    )
    precompute.add_argument(
        "--format",
        choices=("npz", "exr"),
        default="npz",
        help="Output format (default: npz)",
    )
    precompute.add_argument(
        "--jobs",
        type=int,
        default=-1,
        help="Worker threads, -1 for all cores (default: -1)",
    )
    precompute.add_argument(
        "--block-size",
        type=int,
        default=DEFAULT_BLOCK_SIZE,
        help=f"Voxels per task (default: {DEFAULT_BLOCK_SIZE})",
    )
    precompute.add_argument(
        "--sample-count",
        type=int,
        default=SAMPLE_COUNT,
        help=f"Integration intervals per view ray (default: {SAMPLE_COUNT})",
    )
    precompute.add_argument(
        "--transmittance-sample-count",
        type=int,
        default=TRANSMITTANCE_SAMPLE_COUNT,
        help=f"Integration intervals per transmittance texel (default: {TRANSMITTANCE_SAMPLE_COUNT})",
    )
    precompute.add_argument(
        "--resolution",
        type=int,
        nargs=4,
        metavar=("NU", "MU_S", "MU", "R"),
        default=None,
        help="Scattering LUT resolution (default: 8 32 128 32)",
    )
    precompute.add_argument(
        "--half",
        action="store_true",
        help="Write half float EXR files",
    )
    return parser.parse_args(argv)


def run_precompute(args: argparse.Namespace) -> str:
    """Precompute the LUTs and save them, returning the output path."""
    if args.config:
        params = load_atmosphere_parameters(args.config)
    else:
        params = AtmosphereParameters.earth_default()

    extents = ScatteringGridExtents(*args.resolution) if args.resolution else None
    model = AtmosphereModel(params, extents)

    def progress(p, msg):
        print(f"  [{int(p * 100):3d}%] {msg}")
        sys.stdout.flush()

    model.init(
        n_jobs=args.jobs,
        block_size=args.block_size,
        sample_count=args.sample_count,
        transmittance_sample_count=args.transmittance_sample_count,
        progress_callback=progress,
    )

    os.makedirs(args.output, exist_ok=True)
    if args.format == "exr":
        model.save_textures_exr(args.output, half_precision=args.half)
        return args.output
    filepath = os.path.join(args.output, "skylight_luts.npz")
    model.save_textures(filepath)
    return filepath


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    try:
        output = run_precompute(args)
    except (ConfigError, FileNotFoundError, ValueError, RuntimeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    print(f"[Skylight] LUTs written to {output}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
