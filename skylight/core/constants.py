"""
Skylight Constants - LUT resolutions, Earth defaults and colour conversion.

Values follow the precomputed atmospheric scattering model by Eric Bruneton.
All lengths are in meters and all coefficients in m^-1.
"""

import numpy as np


# =============================================================================
# LUT RESOLUTIONS
# =============================================================================

TRANSMITTANCE_TEXTURE_WIDTH = 256
TRANSMITTANCE_TEXTURE_HEIGHT = 64

SCATTERING_TEXTURE_R_SIZE = 32
SCATTERING_TEXTURE_MU_SIZE = 128
SCATTERING_TEXTURE_MU_S_SIZE = 32
SCATTERING_TEXTURE_NU_SIZE = 8

# The 4D scattering table is stored as a 3D texture with nu and mu_s packed
# side by side along the width.
SCATTERING_TEXTURE_WIDTH = SCATTERING_TEXTURE_NU_SIZE * SCATTERING_TEXTURE_MU_S_SIZE
SCATTERING_TEXTURE_HEIGHT = SCATTERING_TEXTURE_MU_SIZE
SCATTERING_TEXTURE_DEPTH = SCATTERING_TEXTURE_R_SIZE

# Number of spectral channels carried through the precompute
NUM_CHANNELS = 4


# =============================================================================
# INTEGRATION
# =============================================================================

# Trapezoidal samples along the view ray for single scattering (51 evaluations)
SAMPLE_COUNT = 50

# Trapezoidal samples for the optical length to the top of the atmosphere
TRANSMITTANCE_SAMPLE_COUNT = 500

# Flattened voxels evaluated per task by the parallel dispatcher
DEFAULT_BLOCK_SIZE = 8192


# =============================================================================
# EARTH DEFAULTS
# =============================================================================

EARTH_RADIUS = 6360000.0
EARTH_TOP_RADIUS = EARTH_RADIUS + 60000.0

# Sun angular radius as seen from Earth (radians)
SUN_ANGULAR_RADIUS = 0.00935 / 2.0

# Largest sun zenith angle stored in the scattering LUT (102 degrees)
MAX_SUN_ZENITH_ANGLE = 102.0 / 180.0 * np.pi

RAYLEIGH_SCALE_HEIGHT = 8000.0
RAYLEIGH = 1.24062e-6  # times lambda^-4, lambda in micrometers

MIE_SCALE_HEIGHT = 1200.0
MIE_ANGSTROM_ALPHA = 0.0
MIE_ANGSTROM_BETA = 5.328e-3
MIE_SINGLE_SCATTERING_ALBEDO = 0.9
MIE_PHASE_FUNCTION_G = 0.8

OZONE_CENTER_ALTITUDE = 25000.0
OZONE_WIDTH = 15000.0

DEFAULT_GROUND_ALBEDO = 0.1

# Channel wavelengths (nm): the usual R, G, B plus a violet channel
LAMBDA_R = 680.0
LAMBDA_G = 550.0
LAMBDA_B = 440.0
LAMBDA_V = 400.0
DEFAULT_WAVELENGTHS = np.array([LAMBDA_R, LAMBDA_G, LAMBDA_B, LAMBDA_V])

# Spectral bandwidth represented by each channel when projecting to luminance
LAMBDA_MIN = 360.0
LAMBDA_MAX = 720.0
DEFAULT_DELTA_LAMBDA = (LAMBDA_MAX - LAMBDA_MIN) / NUM_CHANNELS

# Extraterrestrial solar irradiance (W/m^2/nm) at the default wavelengths
SOLAR_IRRADIANCE = np.array([1.474, 1.8504, 1.91198, 1.72765])

# Ozone absorption (m^-1) at peak density for the default wavelengths
OZONE_ABSORPTION_COEFFICIENTS = np.array([0.650e-6, 1.881e-6, 0.085e-6, 0.0])

MAX_LUMINOUS_EFFICACY = 683.0


def rayleigh_scattering_coefficients(wavelengths) -> np.ndarray:
    """Rayleigh scattering coefficient (m^-1) at sea level for each wavelength (nm)."""
    lam = np.asarray(wavelengths, dtype=np.float64) * 1e-3
    return RAYLEIGH * lam ** -4


def mie_scattering_coefficients(wavelengths, beta: float = MIE_ANGSTROM_BETA) -> np.ndarray:
    """Mie scattering coefficient (m^-1) from the Angstrom turbidity formula."""
    lam = np.asarray(wavelengths, dtype=np.float64) * 1e-3
    mie_extinction = beta / MIE_SCALE_HEIGHT * lam ** -MIE_ANGSTROM_ALPHA
    return mie_extinction * MIE_SINGLE_SCATTERING_ALBEDO


# =============================================================================
# COLOUR
# =============================================================================

XYZ_TO_SRGB = np.array([
    [3.2406, -1.5372, -0.4986],
    [-0.9689, 1.8758, 0.0415],
    [0.0557, -0.2040, 1.0570],
])


def _piecewise_gaussian(wavelength, center, sigma_low, sigma_high):
    sigma = np.where(wavelength < center, sigma_low, sigma_high)
    t = (wavelength - center) / sigma
    return np.exp(-0.5 * t * t)


def cie_color_matching_functions(wavelengths) -> np.ndarray:
    """
    CIE 1931 2-degree colour matching functions.

    Uses the multi-lobe Gaussian fit of Wyman, Sloan & Shirley (2013).

    Args:
        wavelengths: Wavelength(s) in nm

    Returns:
        Array of shape (..., 3) holding (x_bar, y_bar, z_bar)
    """
    lam = np.asarray(wavelengths, dtype=np.float64)
    g = _piecewise_gaussian
    x = (1.056 * g(lam, 599.8, 37.9, 31.0) +
         0.362 * g(lam, 442.0, 16.0, 26.7) -
         0.065 * g(lam, 501.1, 20.4, 26.2))
    y = (0.821 * g(lam, 568.8, 46.9, 40.5) +
         0.286 * g(lam, 530.9, 16.3, 31.1))
    z = (1.217 * g(lam, 437.0, 11.8, 36.0) +
         0.681 * g(lam, 459.0, 26.0, 13.8))
    return np.stack([x, y, z], axis=-1)


def convert_spectrum_to_linear_srgb(wavelengths, spectrum) -> np.ndarray:
    """
    Integrate a sampled spectral radiance into linear sRGB luminance.

    The spectrum is integrated with the trapezoidal rule over the given
    wavelengths and scaled by the maximum luminous efficacy.
    """
    lam = np.asarray(wavelengths, dtype=np.float64)
    values = np.asarray(spectrum, dtype=np.float64)
    if lam.shape != values.shape:
        raise ValueError(f"Spectrum shape {values.shape} does not match wavelengths {lam.shape}")
    if lam.size < 2:
        raise ValueError("At least two spectral samples are required")

    order = np.argsort(lam)
    lam, values = lam[order], values[order]

    weights = np.zeros_like(lam)
    dlam = np.diff(lam)
    weights[:-1] += 0.5 * dlam
    weights[1:] += 0.5 * dlam

    xyz = np.sum(cie_color_matching_functions(lam) * (values * weights)[:, np.newaxis], axis=0)
    return MAX_LUMINOUS_EFFICACY * (XYZ_TO_SRGB @ xyz)


def compute_radiance_to_luminance(
    wavelengths=DEFAULT_WAVELENGTHS,
    delta_lambda: float = DEFAULT_DELTA_LAMBDA,
) -> np.ndarray:
    """
    Build the 4x4 matrix projecting 4-channel radiance onto linear sRGB.

    Column k holds the sRGB weight of channel k, i.e. the colour matching
    functions at that wavelength converted to sRGB and scaled by the channel
    bandwidth. The last row is zero so the result carries three meaningful
    components.
    """
    lam = np.asarray(wavelengths, dtype=np.float64)
    if lam.shape != (NUM_CHANNELS,):
        raise ValueError(f"Expected {NUM_CHANNELS} wavelengths, got shape {lam.shape}")

    rad_to_lum = np.zeros((4, 4), dtype=np.float64)
    srgb = cie_color_matching_functions(lam) @ XYZ_TO_SRGB.T  # (channel, rgb)
    rad_to_lum[:3, :] = srgb.T * delta_lambda
    return rad_to_lum
