"""
DKA Calculator: Data Dictionary
===============================
Inputs (bedside values), the derived quantity shape shared by every
calculator, and the result tree returned to the API.

NO LOGIC is implemented here beyond type guards and serialisation.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from constants import VERSION, SeverityTier


class DataTypeError(TypeError):
    """Raised when inputs are wrong python types (str instead of float)."""
    pass


# --- 1. INPUT LAYER (What the Clinician Enters) ---

@dataclass(frozen=True)
class ClinicalInput:
    """
    Sanitised clinical record. Ranges are enforced upstream by the request
    schema; the engine only relies on numbers being numbers.
    """
    weight_kg: float
    ph: float
    shock_present: bool
    insulin_rate: float            # Units/kg/hour, one of the protocol options

    bicarbonate: Optional[float] = None   # mmol/L
    glucose: Optional[float] = None       # mmol/L
    ketones: Optional[float] = None       # mmol/L

    # Demographics (not used by the calculations)
    patient_age: Optional[float] = None   # years
    patient_sex: Optional[str] = None

    # Protocol metadata
    protocol_start_datetime: Optional[datetime] = None
    weight_limit_override: bool = False
    pre_existing_diabetes: Optional[bool] = None
    insulin_delivery_method: Optional[str] = None
    episode_type: Optional[str] = None

    def __post_init__(self):
        # Type safety only (prevent string math crashes)
        for name in ("weight_kg", "ph", "insulin_rate"):
            _require_number(name, getattr(self, name))
        for name in ("bicarbonate", "glucose", "ketones", "patient_age"):
            value = getattr(self, name)
            if value is not None:
                _require_number(name, value)
        if not isinstance(self.shock_present, bool):
            raise DataTypeError(f"Field 'shock_present' must be boolean, got {type(self.shock_present)}")


def _require_number(name: str, value: Any) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise DataTypeError(f"Field '{name}' must be numeric, got {type(value)}")


# --- 2. DERIVED QUANTITIES (One Node of the Result Tree) ---

@dataclass
class DerivedQuantity:
    """
    A calculated value plus everything needed to audit it.
    `value` keeps full precision; only `working` is rounded.
    """
    value: Optional[float]
    formula: str
    working: str
    is_capped: bool = False
    capping_limit: Optional[str] = None
    uncapped_value: Optional[float] = field(default=None, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "value": self.value,
            "isCapped": self.is_capped,
            "cappingLimit": self.capping_limit,
            "formula": self.formula,
            "working": self.working,
        }


@dataclass
class CappedVolume(DerivedQuantity):
    """Weight-based volume (bolus, glucose bolus, HHS bolus)."""
    mls_per_kg: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["mlsPerKg"] = self.mls_per_kg
        return data


@dataclass
class VolumeLessBolus(DerivedQuantity):
    bolus_to_subtract: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["bolusToSubtract"] = self.bolus_to_subtract
        return data


@dataclass
class DeficitResult:
    percentage: DerivedQuantity
    volume: DerivedQuantity
    volume_less_bolus: VolumeLessBolus
    rate: DerivedQuantity

    def to_dict(self) -> Dict[str, Any]:
        return {
            "percentage": self.percentage.to_dict(),
            "volume": self.volume.to_dict(),
            "volumeLessBolus": self.volume_less_bolus.to_dict(),
            "rate": self.rate.to_dict(),
        }


@dataclass
class MaintenanceResult:
    volume: DerivedQuantity
    rate: DerivedQuantity

    def to_dict(self) -> Dict[str, Any]:
        return {"volume": self.volume.to_dict(), "rate": self.rate.to_dict()}


# --- 3. ERROR ACCUMULATOR ---

@dataclass
class CalculationErrors:
    """
    Collects every problem found during one calculation pass.
    Passed into each calculator; read once by the orchestrator.
    """
    messages: List[str] = field(default_factory=list)

    def add(self, message: str) -> None:
        self.messages.append(message)

    def __len__(self) -> int:
        return len(self.messages)

    def snapshot(self) -> Tuple[str, ...]:
        return tuple(self.messages)


# --- 4. OUTPUT LAYER ---

@dataclass
class CalculationResult:
    """
    The full quantity tree and the errors found while building it.
    If `errors` is not empty, no value in the tree is clinically valid.
    """
    severity: SeverityTier
    bolus_volume: CappedVolume
    deficit: DeficitResult
    maintenance: MaintenanceResult
    starting_fluid_rate: DerivedQuantity
    insulin_rate: DerivedQuantity
    glucose_bolus_volume: CappedVolume
    hhs_bolus_volume: CappedVolume
    errors: Tuple[str, ...] = ()

    @property
    def success(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "severity": self.severity.value,
            "bolusVolume": self.bolus_volume.to_dict(),
            "deficit": self.deficit.to_dict(),
            "maintenance": self.maintenance.to_dict(),
            "startingFluidRate": self.starting_fluid_rate.to_dict(),
            "insulinRate": self.insulin_rate.to_dict(),
            "glucoseBolusVolume": self.glucose_bolus_volume.to_dict(),
            "hhsBolusVolume": self.hhs_bolus_volume.to_dict(),
            "errors": list(self.errors),
        }


@dataclass
class AuditLog:
    audit_id: str
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())
    action: str = "dka_calculation"
    inputs_hash: int = 0
    patient_hash: Optional[str] = None
    model_version: str = VERSION
