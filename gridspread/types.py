"""Shared enumerations and exceptions for gridspread.

All dispersal modules import option values and the configuration error
from here so that string options in YAML and enum values in code stay in
one place.
"""

from enum import Enum, IntEnum


# ═══════════════════════════════════════════════════════════════════════
# ENUMERATIONS
# ═══════════════════════════════════════════════════════════════════════

class DispersalMethod(str, Enum):
    """Which dispersal engine moves the population."""
    FAST = "fast"                            # Fourier convolution on a torus
    KERNEL = "kernel"                        # exact pairwise kernel weights
    CELLULAR_AUTOMATA = "cellular_automata"  # ring-by-ring local movement


class ArrivalProbability(str, Enum):
    """Landscape layers that decide where dispersers may settle.

    SUITABILITY        p = suitability
    CARRYING_CAPACITY  p = 1 − occupied / K
    BOTH               p = suitability × (1 − occupied / K)
    """
    SUITABILITY = "suitability"
    CARRYING_CAPACITY = "carrying_capacity"
    BOTH = "both"

    def required_layers(self) -> tuple:
        if self is ArrivalProbability.BOTH:
            return ("suitability", "carrying_capacity")
        return (self.value,)


class BarrierType(IntEnum):
    """What happens to a disperser whose path meets a barrier cell."""
    BLOCKING = 0   # stops at the last habitat cell before the barrier
    LETHAL   = 1   # removed from the population

    @classmethod
    def parse(cls, value) -> "BarrierType":
        """Accept an enum member, its integer code or its lowercase name."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls[value.upper()]
            except KeyError:
                raise ValueError(
                    f"barrier_type must be one of "
                    f"{[m.name.lower() for m in cls]}, got '{value}'"
                ) from None
        return cls(int(value))


# ═══════════════════════════════════════════════════════════════════════
# EXCEPTIONS
# ═══════════════════════════════════════════════════════════════════════

class DispersalConfigurationError(ValueError):
    """Dispersal cannot run with the landscape and options it was given.

    Raised for missing landscape layers, stages with dispersers but no
    admissible destination, and embedding/grid shape mismatches. The
    current timestep is abandoned; no partially updated grid is returned.
    """
