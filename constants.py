from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional, Tuple

VERSION = "1.0.0"
PROTOCOL_VERSION = "BSPED 2021"


class SeverityTier(Enum):
    SEVERE = "severe"
    MODERATE = "moderate"
    MILD = "mild"
    UNDETERMINED = "undetermined"


# Order in which tiers are tested. Most severe first.
SEVERITY_PRIORITY: Tuple[SeverityTier, ...] = (
    SeverityTier.SEVERE,
    SeverityTier.MODERATE,
    SeverityTier.MILD,
)


@dataclass(frozen=True)
class PhRange:
    """Half-open pH range: lower <= pH < upper."""
    lower: float
    upper: float

    def contains(self, ph: float) -> bool:
        return self.lower <= ph < self.upper


@dataclass(frozen=True)
class SeverityThreshold:
    ph_range: PhRange
    bicarbonate_below: float   # mmol/L
    deficit_percentage: int    # % body weight


@dataclass(frozen=True)
class ProtocolCaps:
    """
    Safety ceilings. Most are the weight-based value for a 75kg patient.
    Deficit caps are keyed by deficit percentage, insulin caps by the
    selected Units/kg/hour option.
    """
    bolus_ml: float
    glucose_bolus_ml: float
    hhs_bolus_ml: float
    maintenance_ml: float
    deficit_ml: Mapping[int, float]
    insulin_units_hr: Mapping[float, float]


def _frozen(mapping: dict) -> Mapping:
    return MappingProxyType(dict(mapping))


@dataclass(frozen=True)
class ProtocolConfig:
    """
    The protocol table. One immutable instance is passed into every
    calculation, so alternative thresholds can be tested without touching
    module state.
    """
    severity: Mapping[SeverityTier, SeverityThreshold]
    caps: ProtocolCaps
    bolus_mls_per_kg: float = 10.0
    glucose_bolus_mls_per_kg: float = 2.0
    hhs_bolus_mls_per_kg: float = 20.0
    deficit_replacement_hours: float = 48.0
    maintenance_hours: float = 24.0
    minimum_ketones: float = 3.0  # mmol/L, diagnostic threshold
    insulin_rate_options: Tuple[float, ...] = (0.05, 0.1)
    name: str = PROTOCOL_VERSION


@dataclass(frozen=True)
class WeightCentiles:
    """
    Weight bounds (kg) by sex, indexed by age in whole months (index 0 = birth).
    Typically mean +/- 2SD from a growth reference.
    """
    lower: Mapping[str, Tuple[float, ...]]
    upper: Mapping[str, Tuple[float, ...]]


@dataclass(frozen=True)
class ValidationLimits:
    """Field ranges enforced on incoming requests (not by the engine)."""
    patient_age: Tuple[float, float] = (0.0, 18.0)
    ph: Tuple[float, float] = (6.2, 7.5)
    bicarbonate: Tuple[float, float] = (0.0, 35.0)
    glucose: Tuple[float, float] = (3.0, 50.0)
    ketones_max: float = 42.0
    weight: Tuple[float, float] = (2.0, 150.0)
    patient_sex_options: Tuple[str, ...] = ("male", "female")
    insulin_delivery_method_options: Tuple[str, ...] = ("pen", "pump")
    episode_type_options: Tuple[str, ...] = ("real", "test")
    patient_hash_length: int = 64
    # Protocol start must fall inside this window around "now".
    protocol_start_within_past_hours: float = 24.0
    protocol_start_within_future_hours: float = 1.0
    protocol_start_grace_minutes: float = 10.0
    # Weight-for-age bounds; None when no growth dataset is installed.
    weight_centiles: Optional[WeightCentiles] = None


DEFAULT_CONFIG = ProtocolConfig(
    severity=_frozen({
        SeverityTier.SEVERE: SeverityThreshold(
            ph_range=PhRange(lower=6.2, upper=7.1),
            bicarbonate_below=5.0,
            deficit_percentage=10,
        ),
        SeverityTier.MODERATE: SeverityThreshold(
            ph_range=PhRange(lower=7.1, upper=7.2),
            bicarbonate_below=10.0,
            deficit_percentage=5,
        ),
        SeverityTier.MILD: SeverityThreshold(
            ph_range=PhRange(lower=7.2, upper=7.3),
            bicarbonate_below=15.0,
            deficit_percentage=5,
        ),
    }),
    caps=ProtocolCaps(
        bolus_ml=750.0,
        glucose_bolus_ml=150.0,
        hhs_bolus_ml=1500.0,
        maintenance_ml=2600.0,
        deficit_ml=_frozen({5: 3750.0, 10: 7500.0}),
        insulin_units_hr=_frozen({0.05: 3.75, 0.1: 7.5}),
    ),
)

VALIDATION_LIMITS = ValidationLimits()
