"""
Skylight Core - Single scattering LUT precompute.
"""

from .constants import *
from .parameters import (
    AtmosphereParameters,
    ConfigError,
    DensityProfileLayer,
    load_atmosphere_parameters,
)
from .coordinates import ScatterCoord, ScatteringGridExtents, map_voxel_to_scatter_coord
from .textures import SampledTable, VoxelGrid
from .transmittance import ConstantTransmittance, TransmittanceTable
from .single_scattering import (
    compute_single_scattering,
    compute_single_scattering_integrand,
    run_single_scattering_kernel,
)
from .precompute import PrecomputedTextures, SingleScatteringPrecompute, precompute_single_scattering
from .model import AtmosphereModel
