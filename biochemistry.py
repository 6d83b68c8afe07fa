"""
Sodium and osmolality calculators.
Used alongside the protocol when sodium and glucose results are available.
"""

from models import DerivedQuantity

GLUCOSE_REFERENCE_MMOL_L = 5.6
SODIUM_CORRECTION_DIVISOR = 3.5


def calculate_corrected_sodium(sodium: float, glucose: float) -> DerivedQuantity:
    """Sodium corrected for hyperglycaemia (mmol/L)."""
    value = sodium + (glucose - GLUCOSE_REFERENCE_MMOL_L) / SODIUM_CORRECTION_DIVISOR
    return DerivedQuantity(
        value=value,
        formula="[sodium (mmol/L)] + ( ( [glucose (mmol/L)] - 5.6 ) / 3.5 )",
        working=f"[{sodium:g}mmol/L] + ( ( [{glucose:g}mmol/L] - 5.6 ) / 3.5 ) = {value:.1f}mmol/L",
    )


def calculate_effective_osmolality(sodium: float, glucose: float) -> DerivedQuantity:
    """Effective osmolality (mOsm/kg): 2 x sodium + glucose."""
    value = 2 * sodium + glucose
    return DerivedQuantity(
        value=value,
        formula="( 2 x [sodium (mmol/L)] ) + [glucose (mmol/L)]",
        working=f"( 2 x [{sodium:g}mmol/L] ) + [{glucose:g}mmol/L] = {value:.0f}mOsm/kg",
    )
