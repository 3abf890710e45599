"""
Skylight Parameters - Atmosphere parameter structures and configuration loading.

Parameters are immutable: derive variants with ``dataclasses.replace`` or the
classmethod constructors below. Invalid values raise ConfigError at
construction time, so every AtmosphereParameters reaching the precompute is
known to be well formed.
"""

import math
import os
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, Mapping, Tuple

import numpy as np
import yaml

from .constants import (
    EARTH_RADIUS,
    EARTH_TOP_RADIUS,
    SUN_ANGULAR_RADIUS,
    MAX_SUN_ZENITH_ANGLE,
    RAYLEIGH_SCALE_HEIGHT,
    MIE_SCALE_HEIGHT,
    MIE_ANGSTROM_BETA,
    MIE_SINGLE_SCATTERING_ALBEDO,
    MIE_PHASE_FUNCTION_G,
    OZONE_CENTER_ALTITUDE,
    OZONE_WIDTH,
    OZONE_ABSORPTION_COEFFICIENTS,
    DEFAULT_GROUND_ALBEDO,
    DEFAULT_WAVELENGTHS,
    SOLAR_IRRADIANCE,
    NUM_CHANNELS,
    rayleigh_scattering_coefficients,
    mie_scattering_coefficients,
)


class ConfigError(ValueError):
    """Raised when atmosphere configuration validation fails."""

    pass


@dataclass(frozen=True)
class DensityProfileLayer:
    """
    An atmosphere layer whose density is defined as:
        exp_term * exp(exp_scale * h) + linear_term * h + constant_term
    clamped to [0, 1], where h is the altitude above the ground.

    Attributes:
        width: Layer width (ignored for the top layer)
        exp_term: Exponential term coefficient (unitless)
        exp_scale: Exponential scale in inverse length units
        linear_term: Linear term coefficient in inverse length units
        constant_term: Constant term (unitless)
    """
    width: float = 0.0
    exp_term: float = 0.0
    exp_scale: float = 0.0
    linear_term: float = 0.0
    constant_term: float = 0.0

    def get_density(self, altitude):
        """Compute density at given altitude within this layer."""
        density = (
            self.exp_term * np.exp(self.exp_scale * altitude) +
            self.linear_term * altitude +
            self.constant_term
        )
        return np.clip(density, 0.0, 1.0)

    def scaled(self, factor: float) -> 'DensityProfileLayer':
        """Express the layer in a length unit ``factor`` times larger."""
        return DensityProfileLayer(
            width=self.width / factor,
            exp_term=self.exp_term,
            exp_scale=self.exp_scale * factor,
            linear_term=self.linear_term * factor,
            constant_term=self.constant_term,
        )


def exponential_profile(scale_height: float) -> Tuple[DensityProfileLayer, ...]:
    return (DensityProfileLayer(exp_term=1.0, exp_scale=-1.0 / scale_height),)


def uniform_profile(density: float = 1.0) -> Tuple[DensityProfileLayer, ...]:
    return (DensityProfileLayer(constant_term=density),)


def ozone_profile() -> Tuple[DensityProfileLayer, ...]:
    """Tent-shaped ozone layer peaking at OZONE_CENTER_ALTITUDE."""
    return (
        DensityProfileLayer(
            width=OZONE_CENTER_ALTITUDE,
            linear_term=1.0 / OZONE_WIDTH,
            constant_term=-2.0 / 3.0,
        ),
        DensityProfileLayer(
            linear_term=-1.0 / OZONE_WIDTH,
            constant_term=8.0 / 3.0,
        ),
    )


_SPECTRAL_FIELDS = (
    'wavelengths',
    'solar_irradiance',
    'rayleigh_scattering',
    'mie_scattering',
    'mie_extinction',
    'absorption_extinction',
    'ground_albedo',
)

_PROFILE_FIELDS = ('rayleigh_density', 'mie_density', 'absorption_density')

# Fields expressed per unit length, rescaled by to_length_unit()
_INVERSE_LENGTH_FIELDS = (
    'rayleigh_scattering',
    'mie_scattering',
    'mie_extinction',
    'absorption_extinction',
)


def _readonly(values, size: int, name: str) -> np.ndarray:
    try:
        array = np.array(values, dtype=np.float64).reshape(-1)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{name}: expected {size} numbers ({e})")
    if array.shape != (size,):
        raise ConfigError(f"{name}: expected {size} values, got {array.shape[0]}")
    if not np.all(np.isfinite(array)):
        raise ConfigError(f"{name}: values must be finite")
    array.setflags(write=False)
    return array


def _as_profile(layers, name: str) -> Tuple[DensityProfileLayer, ...]:
    if isinstance(layers, (DensityProfileLayer, Mapping)):
        layers = [layers]
    result = []
    for layer in layers:
        if isinstance(layer, Mapping):
            try:
                layer = DensityProfileLayer(**layer)
            except TypeError as e:
                raise ConfigError(f"{name}: invalid layer ({e})")
        if not isinstance(layer, DensityProfileLayer):
            raise ConfigError(f"{name}: layers must be DensityProfileLayer or mappings")
        if layer.width < 0.0:
            raise ConfigError(f"{name}: layer width must be non-negative")
        result.append(layer)
    return tuple(result)


@dataclass(frozen=True, eq=False)
class AtmosphereParameters:
    """
    Complete atmosphere parameters for the precompute.

    Spectral quantities carry one value per channel (4 channels). Radii and
    coefficients are expressed in ``length_unit_in_meters`` (1.0 = meters).
    Scattering/extinction coefficients are per length unit, wavelengths in nm.
    """

    # Wavelengths for spectral data (nm)
    wavelengths: np.ndarray = field(default_factory=lambda: DEFAULT_WAVELENGTHS.copy())

    # Solar irradiance at top of atmosphere (W/m^2/nm) at each wavelength
    solar_irradiance: np.ndarray = field(default_factory=lambda: SOLAR_IRRADIANCE.copy())

    # Sun angular radius (radians)
    sun_angular_radius: float = SUN_ANGULAR_RADIUS

    # Planet geometry
    bottom_radius: float = EARTH_RADIUS
    top_radius: float = EARTH_TOP_RADIUS

    # Rayleigh scattering (air molecules)
    rayleigh_density: Tuple[DensityProfileLayer, ...] = field(
        default_factory=lambda: exponential_profile(RAYLEIGH_SCALE_HEIGHT)
    )
    rayleigh_scattering: np.ndarray = field(
        default_factory=lambda: rayleigh_scattering_coefficients(DEFAULT_WAVELENGTHS)
    )

    # Mie scattering (aerosols)
    mie_density: Tuple[DensityProfileLayer, ...] = field(
        default_factory=lambda: exponential_profile(MIE_SCALE_HEIGHT)
    )
    mie_scattering: np.ndarray = field(
        default_factory=lambda: mie_scattering_coefficients(DEFAULT_WAVELENGTHS)
    )
    mie_extinction: np.ndarray = field(
        default_factory=lambda: mie_scattering_coefficients(DEFAULT_WAVELENGTHS) / MIE_SINGLE_SCATTERING_ALBEDO
    )
    mie_phase_function_g: float = MIE_PHASE_FUNCTION_G

    # Absorption (ozone layer)
    absorption_density: Tuple[DensityProfileLayer, ...] = field(default_factory=ozone_profile)
    absorption_extinction: np.ndarray = field(
        default_factory=lambda: OZONE_ABSORPTION_COEFFICIENTS.copy()
    )

    ground_albedo: np.ndarray = field(
        default_factory=lambda: np.full(NUM_CHANNELS, DEFAULT_GROUND_ALBEDO)
    )

    # Only consumed when composing the final frame
    whitepoint: np.ndarray = field(default_factory=lambda: np.ones(3))

    # Cosine of the maximum sun zenith angle stored in the scattering LUT
    mu_s_min: float = math.cos(MAX_SUN_ZENITH_ANGLE)

    length_unit_in_meters: float = 1.0

    def __post_init__(self):
        for name in _SPECTRAL_FIELDS:
            object.__setattr__(self, name, _readonly(getattr(self, name), NUM_CHANNELS, name))
        object.__setattr__(self, 'whitepoint', _readonly(self.whitepoint, 3, 'whitepoint'))
        for name in _PROFILE_FIELDS:
            object.__setattr__(self, name, _as_profile(getattr(self, name), name))
        for name in ('bottom_radius', 'top_radius', 'sun_angular_radius',
                     'mie_phase_function_g', 'mu_s_min', 'length_unit_in_meters'):
            try:
                object.__setattr__(self, name, float(getattr(self, name)))
            except (TypeError, ValueError):
                raise ConfigError(f"{name}: expected a number, got {getattr(self, name)!r}")
        self.validate()

    def validate(self) -> None:
        """Check the configuration invariants, raising ConfigError."""
        if not (math.isfinite(self.bottom_radius) and math.isfinite(self.top_radius)):
            raise ConfigError("Radii must be finite")
        if not 0.0 < self.bottom_radius < self.top_radius:
            raise ConfigError(
                f"Expected 0 < bottom_radius < top_radius, got "
                f"bottom_radius={self.bottom_radius}, top_radius={self.top_radius}"
            )
        for name in _SPECTRAL_FIELDS:
            if np.any(getattr(self, name) < 0.0):
                raise ConfigError(f"{name}: values must be non-negative")
        if np.any(self.wavelengths <= 0.0):
            raise ConfigError("wavelengths: values must be positive")
        if self.sun_angular_radius < 0.0:
            raise ConfigError("sun_angular_radius must be non-negative")
        if not -1.0 <= self.mu_s_min < 1.0:
            raise ConfigError(f"mu_s_min must lie in [-1, 1), got {self.mu_s_min}")
        if not -1.0 < self.mie_phase_function_g < 1.0:
            raise ConfigError("mie_phase_function_g must lie in (-1, 1)")
        if self.length_unit_in_meters <= 0.0:
            raise ConfigError("length_unit_in_meters must be positive")
        for name in _PROFILE_FIELDS[:2]:
            if not getattr(self, name):
                raise ConfigError(f"{name}: at least one layer is required")

    @classmethod
    def earth_default(cls, use_ozone: bool = True) -> 'AtmosphereParameters':
        """Create default Earth atmosphere parameters."""
        params = cls()
        if not use_ozone:
            params = replace(params, absorption_extinction=np.zeros(NUM_CHANNELS))
        return params

    @classmethod
    def from_artistic_controls(
        cls,
        rayleigh_density_scale: float = 1.0,
        mie_density_scale: float = 1.0,
        mie_phase_g: float = MIE_PHASE_FUNCTION_G,
        rayleigh_height: float = RAYLEIGH_SCALE_HEIGHT,
        mie_height: float = MIE_SCALE_HEIGHT,
        ground_albedo: float = DEFAULT_GROUND_ALBEDO,
        use_ozone: bool = True,
        ozone_density: float = 1.0,
        mie_angstrom_beta: float = MIE_ANGSTROM_BETA,
    ) -> 'AtmosphereParameters':
        """
        Create atmosphere parameters from artistic control values.

        Args:
            rayleigh_density_scale: Multiplier for air molecule density
            mie_density_scale: Multiplier for aerosol density
            mie_phase_g: Mie phase function asymmetry parameter
            rayleigh_height: Scale height for air molecules (meters)
            mie_height: Scale height for aerosols (meters)
            ground_albedo: Ground reflectivity (0-1)
            use_ozone: Include ozone absorption layer
            ozone_density: Multiplier for ozone absorption (affects sunset colors)
            mie_angstrom_beta: Aerosol optical thickness (higher = denser haze)
        """
        # beta only rescales the aerosol amount; the scale height sets the profile
        mie = mie_scattering_coefficients(DEFAULT_WAVELENGTHS, beta=mie_angstrom_beta) * mie_density_scale

        if not use_ozone or ozone_density <= 0:
            absorption = np.zeros(NUM_CHANNELS)
        else:
            absorption = OZONE_ABSORPTION_COEFFICIENTS * ozone_density

        return cls(
            rayleigh_density=exponential_profile(rayleigh_height),
            rayleigh_scattering=rayleigh_scattering_coefficients(DEFAULT_WAVELENGTHS) * rayleigh_density_scale,
            mie_density=exponential_profile(mie_height),
            mie_scattering=mie,
            mie_extinction=mie / MIE_SINGLE_SCATTERING_ALBEDO,
            mie_phase_function_g=float(np.clip(mie_phase_g, -0.999, 0.999)),
            absorption_extinction=absorption,
            ground_albedo=np.full(NUM_CHANNELS, ground_albedo),
        )

    @classmethod
    def from_dict(cls, config: Mapping[str, Any]) -> 'AtmosphereParameters':
        """
        Build parameters from a plain mapping, e.g. a parsed YAML document.

        Keys override the Earth defaults, expressed in the config's
        ``length_unit_in_meters`` (meters when omitted). Density profiles are
        given as lists of layer mappings.
        """
        if not isinstance(config, Mapping):
            raise ConfigError(f"Expected a mapping, got {type(config).__name__}")
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(config) - known)
        if unknown:
            raise ConfigError(f"Unknown atmosphere parameter(s): {', '.join(unknown)}")
        try:
            length_unit = float(config.get('length_unit_in_meters', 1.0))
        except (TypeError, ValueError):
            raise ConfigError(f"length_unit_in_meters: expected a number, got {config['length_unit_in_meters']!r}")
        defaults = cls.earth_default().to_length_unit(length_unit)
        return replace(defaults, **dict(config))

    def to_length_unit(self, length_unit_in_meters: float) -> 'AtmosphereParameters':
        """
        Return the same atmosphere expressed in another length unit.

        Precomputing in kilometers keeps the radii and distances in a range
        where float32 tables stay accurate.
        """
        if length_unit_in_meters <= 0.0:
            raise ConfigError("length_unit_in_meters must be positive")
        factor = length_unit_in_meters / self.length_unit_in_meters
        changes: Dict[str, Any] = {
            'bottom_radius': self.bottom_radius / factor,
            'top_radius': self.top_radius / factor,
            'length_unit_in_meters': length_unit_in_meters,
        }
        for name in _INVERSE_LENGTH_FIELDS:
            changes[name] = getattr(self, name) * factor
        for name in _PROFILE_FIELDS:
            changes[name] = tuple(layer.scaled(factor) for layer in getattr(self, name))
        return replace(self, **changes)

    def get_atmosphere_height(self) -> float:
        """Return the atmosphere thickness in length units."""
        return self.top_radius - self.bottom_radius


def load_atmosphere_parameters(filepath: str) -> AtmosphereParameters:
    """
    Load atmosphere parameters from a YAML file.

    Args:
        filepath: Path to a YAML mapping of AtmosphereParameters fields

    Raises:
        FileNotFoundError: If the file does not exist
        ConfigError: If the document is malformed or violates an invariant
    """
    if not os.path.exists(filepath):
        raise FileNotFoundError(f"Atmosphere config not found: {filepath}")

    with open(filepath, 'r') as f:
        try:
            config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {filepath}: {e}")

    if config is None:
        config = {}
    return AtmosphereParameters.from_dict(config)
