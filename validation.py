"""
DKA Calculator: Request Checks
==============================
Checks that depend on more than one field, or on the wall clock, and so
sit outside the per-field ranges in `ValidationLimits`. Each raises
ValueError with a message fit to show the clinician.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from constants import ValidationLimits


def check_protocol_start(start: datetime, limits: ValidationLimits,
                         now: Optional[datetime] = None) -> datetime:
    """
    The protocol start must be recent: no more than `within_past_hours` ago
    (plus a grace period for filling in the form) and no more than
    `within_future_hours` ahead. Naive datetimes are taken as UTC.
    """
    if start.tzinfo is None:
        start = start.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)

    earliest = now - timedelta(hours=limits.protocol_start_within_past_hours,
                               minutes=limits.protocol_start_grace_minutes)
    if start < earliest:
        raise ValueError(
            f"Protocol start datetime must be within the last "
            f"{limits.protocol_start_within_past_hours:g} hours.")

    future_hours = limits.protocol_start_within_future_hours
    if start > now + timedelta(hours=future_hours):
        unit = "hour" if future_hours == 1 else "hours"
        raise ValueError(
            f"Protocol start datetime must be no more than {future_hours:g} {unit} in the future.")
    return start


def check_weight_within_limit(weight: float, patient_age: float, patient_sex: str,
                              override: bool, limits: ValidationLimits) -> None:
    """
    Weight-for-age check against `limits.weight_centiles`.
    Skipped when the clinician overrides it or no table is configured;
    the hard range in `limits.weight` still applies either way.
    """
    centiles = limits.weight_centiles
    if override or centiles is None:
        return

    age_in_months = int(patient_age * 12 + 0.5)
    try:
        lower = centiles.lower[patient_sex][age_in_months]
        upper = min(centiles.upper[patient_sex][age_in_months], limits.weight[1])
    except (KeyError, IndexError):
        raise ValueError(f"No weight limits available for {patient_sex} patient "
                         f"aged {age_in_months} months.") from None

    if weight < round(lower, 2) or weight > round(upper, 2):
        years, months = divmod(age_in_months, 12)
        raise ValueError(
            f"If weight limit override is not selected, weight must be within 2 standard "
            f"deviations of the mean for age (upper limit {limits.weight[1]:g}kg) "
            f"(range {lower:.2f}kg to {upper:.2f}kg for {patient_sex} patient "
            f"aged {years} years and {months} months).")
