"""
DKA Calculator: Calculation Engine
==================================
Turns a sanitised ClinicalInput into the protocol's quantity tree.

Every calculator is a pure function of the input, the protocol config and
the nodes already computed before it. Problems are appended to a
CalculationErrors container instead of raised, so one pass reports every
issue at once.

Evaluation order:
    severity -> bolus / glucose bolus / HHS bolus -> deficit
    -> maintenance -> starting fluid rate -> insulin rate
"""

import logging
from typing import Optional

from constants import DEFAULT_CONFIG, SEVERITY_PRIORITY, ProtocolConfig, SeverityTier
from models import (
    CalculationErrors,
    CalculationResult,
    CappedVolume,
    ClinicalInput,
    DeficitResult,
    DerivedQuantity,
    MaintenanceResult,
    VolumeLessBolus,
)

logger = logging.getLogger("dka_engine")

EXCEEDS_LIMIT = "(exceeds limit)"


def _with_limit_flag(text: str, is_capped: bool) -> str:
    return f"{text} {EXCEEDS_LIMIT}" if is_capped else text


class DKACalculationEngine:
    """
    The Protocol Core.
    Clinical Input -> Severity -> Fluid & Insulin Quantities.
    """

    @staticmethod
    def _volume_to_rate(volume: float, hours: float) -> float:
        return volume / hours

    # --- 1. SEVERITY ---

    @staticmethod
    def classify_severity(ph: float, bicarbonate: Optional[float],
                          config: ProtocolConfig, errors: CalculationErrors) -> SeverityTier:
        """
        First matching tier wins, most severe first. A tier matches on pH
        range OR bicarbonate below its threshold, so bicarbonate alone can
        raise the severity.
        """
        for tier in SEVERITY_PRIORITY:
            threshold = config.severity.get(tier)
            if threshold is None:
                continue
            if threshold.ph_range.contains(ph):
                return tier
            if bicarbonate is not None and bicarbonate < threshold.bicarbonate_below:
                return tier

        bicarbonate_text = f"{bicarbonate} mmol/L" if bicarbonate is not None else "not provided"
        errors.add(
            f"pH of {ph} and bicarbonate of {bicarbonate_text} does not meet "
            f"the diagnostic threshold for DKA."
        )
        return SeverityTier.UNDETERMINED

    # --- 2. CAPPED VOLUMES ---

    @staticmethod
    def calculate_capped_volume(weight_kg: float, mls_per_kg: float, cap_ml: float) -> CappedVolume:
        """
        weight x mL/kg, capped at cap_ml. Total over its inputs: never errors.
        """
        uncapped = weight_kg * mls_per_kg
        is_capped = uncapped > cap_ml
        value = cap_ml if is_capped else uncapped

        working = f"[{mls_per_kg:g}mL/kg] x [{weight_kg:.1f}kg] = {uncapped:.0f}mL"
        return CappedVolume(
            value=value,
            uncapped_value=uncapped,
            is_capped=is_capped,
            capping_limit=f"{cap_ml:g}mL",
            formula=f"[{mls_per_kg:g}mL/kg] x [Patient weight (kg)]",
            working=_with_limit_flag(working, is_capped),
            mls_per_kg=mls_per_kg,
        )

    @staticmethod
    def calculate_bolus_volume(clinical_input: ClinicalInput, config: ProtocolConfig) -> CappedVolume:
        return DKACalculationEngine.calculate_capped_volume(
            clinical_input.weight_kg, config.bolus_mls_per_kg, config.caps.bolus_ml)

    @staticmethod
    def calculate_glucose_bolus_volume(clinical_input: ClinicalInput, config: ProtocolConfig) -> CappedVolume:
        return DKACalculationEngine.calculate_capped_volume(
            clinical_input.weight_kg, config.glucose_bolus_mls_per_kg, config.caps.glucose_bolus_ml)

    @staticmethod
    def calculate_hhs_bolus_volume(clinical_input: ClinicalInput, config: ProtocolConfig) -> CappedVolume:
        return DKACalculationEngine.calculate_capped_volume(
            clinical_input.weight_kg, config.hhs_bolus_mls_per_kg, config.caps.hhs_bolus_ml)

    # --- 3. DEFICIT ---

    @staticmethod
    def _calculate_deficit_percentage(clinical_input: ClinicalInput, severity: SeverityTier,
                                      config: ProtocolConfig,
                                      errors: CalculationErrors) -> DerivedQuantity:
        threshold = config.severity.get(severity)
        if threshold is None:
            errors.add(f"Unable to select deficit percentage using severity rating [{severity.value}].")
            percentage = None
            result_text = "not determined"
        else:
            percentage = threshold.deficit_percentage
            result_text = f"{percentage:g}%"

        bicarbonate_text = (f"{clinical_input.bicarbonate:.1f} mmol/L"
                            if clinical_input.bicarbonate is not None else "not provided")
        return DerivedQuantity(
            value=percentage,
            formula="[pH] or [bicarbonate] ==> Deficit Percentage",
            working=f"[pH {clinical_input.ph:.2f}] or [bicarbonate {bicarbonate_text}] ==> {result_text}",
        )

    @staticmethod
    def _calculate_deficit_volume(weight_kg: float, percentage: DerivedQuantity,
                                  config: ProtocolConfig,
                                  errors: CalculationErrors) -> DerivedQuantity:
        formula = "[Deficit percentage] x [Patient weight] x 10"

        # Root cause is already reported by the percentage step
        if percentage.value is None:
            return DerivedQuantity(
                value=0.0,
                uncapped_value=0.0,
                formula=formula,
                working="Deficit percentage not available",
            )

        uncapped = percentage.value * weight_kg * 10
        working = f"[{percentage.value:g}%] x [{weight_kg:.1f}kg] x 10 = {uncapped:.0f}mL"

        # Ceiling is keyed by the percentage value, not the severity tier
        cap = config.caps.deficit_ml.get(percentage.value)
        if cap is None:
            errors.add(f"Unable to select deficit volume cap using deficit percentage [{percentage.value:g}].")
            return DerivedQuantity(
                value=0.0,
                uncapped_value=uncapped,
                formula=formula,
                working=working,
            )

        is_capped = uncapped > cap
        return DerivedQuantity(
            value=cap if is_capped else uncapped,
            uncapped_value=uncapped,
            is_capped=is_capped,
            capping_limit=f"{cap:g}mL (for {percentage.value:g}% deficit)",
            formula=formula,
            working=_with_limit_flag(working, is_capped),
        )

    @staticmethod
    def _calculate_volume_less_bolus(clinical_input: ClinicalInput, volume: DerivedQuantity,
                                     bolus: CappedVolume) -> VolumeLessBolus:
        # Shocked patients' bolus is not subtracted. Otherwise the bolus node's
        # own value is used so the two figures can never drift apart.
        bolus_to_subtract = 0.0 if clinical_input.shock_present else bolus.value
        value = volume.value - bolus_to_subtract
        return VolumeLessBolus(
            value=value,
            formula=f"[Deficit volume] - [{bolus.mls_per_kg:g}mL/kg bolus (only for non-shocked patients)]",
            working=f"[{volume.value:.0f}mL] - [{bolus_to_subtract:.0f}mL] = {value:.0f}mL",
            bolus_to_subtract=bolus_to_subtract,
        )

    @staticmethod
    def _calculate_deficit_rate(volume_less_bolus: VolumeLessBolus,
                                config: ProtocolConfig) -> DerivedQuantity:
        hours = config.deficit_replacement_hours
        rate = DKACalculationEngine._volume_to_rate(volume_less_bolus.value, hours)
        return DerivedQuantity(
            value=rate,
            formula="[Deficit volume less bolus] ÷ [Deficit replacement duration (hours)]",
            working=f"[{volume_less_bolus.value:.0f}mL] ÷ [{hours:g} hours] = {rate:.1f}mL/hour",
        )

    @staticmethod
    def calculate_deficit(clinical_input: ClinicalInput, severity: SeverityTier, bolus: CappedVolume,
                          config: ProtocolConfig, errors: CalculationErrors) -> DeficitResult:
        """
        percentage -> volume (capped) -> volume less bolus -> rate.
        Each stage only reads the one before it.
        """
        percentage = DKACalculationEngine._calculate_deficit_percentage(clinical_input, severity, config, errors)
        volume = DKACalculationEngine._calculate_deficit_volume(clinical_input.weight_kg, percentage, config, errors)
        volume_less_bolus = DKACalculationEngine._calculate_volume_less_bolus(clinical_input, volume, bolus)
        rate = DKACalculationEngine._calculate_deficit_rate(volume_less_bolus, config)
        return DeficitResult(
            percentage=percentage,
            volume=volume,
            volume_less_bolus=volume_less_bolus,
            rate=rate,
        )

    # --- 4. MAINTENANCE (Holliday-Segar) ---

    @staticmethod
    def calculate_maintenance(weight_kg: float, config: ProtocolConfig) -> MaintenanceResult:
        cap = config.caps.maintenance_ml

        if weight_kg < 10:
            uncapped = weight_kg * 100
            formula = "[Weight (kg)] x 100"
            working = f"[{weight_kg:.1f}kg] x 100"
        elif weight_kg < 20:
            uncapped = 1000 + (weight_kg - 10) * 50
            formula = "1000 + [(Weight (kg) - 10) x 50]"
            working = f"1000 + [({weight_kg:.1f}kg - 10) x 50]"
        else:
            uncapped = 1500 + (weight_kg - 20) * 20
            formula = "1500 + [(Weight (kg) - 20) x 20]"
            working = f"1500 + [({weight_kg:.1f}kg - 20) x 20]"

        is_capped = uncapped > cap
        volume = DerivedQuantity(
            value=cap if is_capped else uncapped,
            uncapped_value=uncapped,
            is_capped=is_capped,
            capping_limit=f"{cap:g}mL",
            formula=formula,
            working=_with_limit_flag(f"{working} = {uncapped:.0f}mL", is_capped),
        )

        hours = config.maintenance_hours
        rate_value = DKACalculationEngine._volume_to_rate(volume.value, hours)
        rate = DerivedQuantity(
            value=rate_value,
            formula=f"[Daily maintenance volume] ÷ {hours:g} hours",
            working=f"[{volume.value:.0f}mL] ÷ {hours:g} hours = {rate_value:.1f}mL/hour",
        )
        return MaintenanceResult(volume=volume, rate=rate)

    # --- 5. STARTING FLUID RATE ---

    @staticmethod
    def calculate_starting_fluid_rate(deficit: DeficitResult,
                                      maintenance: MaintenanceResult) -> DerivedQuantity:
        deficit_rate = deficit.rate.value
        maintenance_rate = maintenance.rate.value
        value = deficit_rate + maintenance_rate
        return DerivedQuantity(
            value=value,
            formula="[Deficit replacement rate] + [Maintenance rate]",
            working=(f"[{deficit_rate:.1f}mL/hour] + [{maintenance_rate:.1f}mL/hour] "
                     f"= {value:.1f}mL/hour"),
        )

    # --- 6. INSULIN ---

    @staticmethod
    def calculate_insulin_rate(clinical_input: ClinicalInput, config: ProtocolConfig,
                               errors: CalculationErrors) -> DerivedQuantity:
        uncapped = clinical_input.insulin_rate * clinical_input.weight_kg
        formula = "[Insulin rate (Units/kg/hour)] x [Patient weight (kg)]"
        working = (f"[{clinical_input.insulin_rate:g} Units/kg/hour] x [{clinical_input.weight_kg:.1f}kg] "
                   f"= {uncapped:.2f} Units/hour")

        cap = config.caps.insulin_units_hr.get(clinical_input.insulin_rate)
        if cap is None:
            errors.add(f"Unable to select insulin rate cap using insulin rate [{clinical_input.insulin_rate:g}].")
            return DerivedQuantity(
                value=0.0,
                uncapped_value=uncapped,
                formula=formula,
                working=working,
            )

        is_capped = uncapped > cap
        return DerivedQuantity(
            value=cap if is_capped else uncapped,
            uncapped_value=uncapped,
            is_capped=is_capped,
            capping_limit=f"{cap:g} Units/hour",
            formula=formula,
            working=_with_limit_flag(working, is_capped),
        )

    # --- 7. ORCHESTRATOR ---

    @staticmethod
    def calculate_variables(clinical_input: ClinicalInput,
                            config: ProtocolConfig = DEFAULT_CONFIG) -> CalculationResult:
        """
        MAIN ENTRY POINT.
        Runs every calculator, even after a failure, and returns the tree
        together with every error found. Callers must check `errors` before
        using any value.
        """
        errors = CalculationErrors()
        engine = DKACalculationEngine

        severity = engine.classify_severity(clinical_input.ph, clinical_input.bicarbonate, config, errors)

        bolus = engine.calculate_bolus_volume(clinical_input, config)
        glucose_bolus = engine.calculate_glucose_bolus_volume(clinical_input, config)
        hhs_bolus = engine.calculate_hhs_bolus_volume(clinical_input, config)

        deficit = engine.calculate_deficit(clinical_input, severity, bolus, config, errors)
        maintenance = engine.calculate_maintenance(clinical_input.weight_kg, config)
        starting_fluid_rate = engine.calculate_starting_fluid_rate(deficit, maintenance)
        insulin_rate = engine.calculate_insulin_rate(clinical_input, config, errors)

        for message in errors.messages:
            logger.warning("Calculation error: %s", message)
        logger.debug("Calculated severity=%s weight=%.1fkg errors=%d",
                     severity.value, clinical_input.weight_kg, len(errors))

        return CalculationResult(
            severity=severity,
            bolus_volume=bolus,
            deficit=deficit,
            maintenance=maintenance,
            starting_fluid_rate=starting_fluid_rate,
            insulin_rate=insulin_rate,
            glucose_bolus_volume=glucose_bolus,
            hhs_bolus_volume=hhs_bolus,
            errors=errors.snapshot(),
        )


def calculate_variables(clinical_input: ClinicalInput,
                        config: ProtocolConfig = DEFAULT_CONFIG) -> CalculationResult:
    return DKACalculationEngine.calculate_variables(clinical_input, config)
