# main.py

import logging
import os
from dataclasses import asdict
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import (BaseModel, ConfigDict, Field, StrictBool, StrictFloat, field_validator,
                      model_validator)

from audit import generate_audit_id, rehash_patient_hash
from biochemistry import calculate_corrected_sodium, calculate_effective_osmolality
from constants import DEFAULT_CONFIG, PROTOCOL_VERSION, VALIDATION_LIMITS, VERSION
from dka_engine import calculate_variables
from models import AuditLog, ClinicalInput
from validation import check_protocol_start, check_weight_within_limit

# --- 1. CONFIGURATION & LOGGING ---
logging.basicConfig(level=os.environ.get("DKA_LOG_LEVEL", "INFO"))
logger = logging.getLogger("dka-calculator-api")

PATIENT_HASH_SALT = os.environ.get("DKA_PATIENT_HASH_SALT", "")

app = FastAPI(
    title="DKA Calculator API",
    version=VERSION,
    description="Paediatric DKA fluid and insulin protocol calculator "
                f"({PROTOCOL_VERSION}). \n\n"
                "**WARNING**: Decision Support Tool Only. Not for autonomous clinical use.",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
def read_root():
    return {"status": "active", "message": "DKA Calculator API is running."}


@app.get("/health")
def health_check():
    """Liveness check"""
    return {"status": "active", "version": VERSION, "protocol": DEFAULT_CONFIG.name}


# --- 2. STRICT INPUT SCHEMA (The Guardrails) ---
class CalculationRequest(BaseModel):
    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "legalAgreement": True, "patientAge": 8.5, "patientSex": "female",
                "protocolStartDatetime": "2025-01-01T10:00:00Z",
                "pH": 7.15, "bicarbonate": 8.0, "glucose": 24.0, "ketones": 4.2,
                "weight": 28.0, "weightLimitOverride": False, "shockPresent": False,
                "insulinRate": 0.05, "preExistingDiabetes": False,
                "insulinDeliveryMethod": None, "episodeType": "real",
            }
        },
    )

    # JSON types are checked strictly: "7.15" is not a number and "yes" is not a boolean.
    legal_agreement: StrictBool = Field(..., alias="legalAgreement")

    # Demographics
    patient_age: StrictFloat = Field(..., alias="patientAge",
                                     ge=VALIDATION_LIMITS.patient_age[0],
                                     le=VALIDATION_LIMITS.patient_age[1],
                                     description="Age in years")
    patient_sex: str = Field(..., alias="patientSex", description="'male' or 'female'")
    patient_hash: Optional[str] = Field(None, alias="patientHash",
                                        min_length=VALIDATION_LIMITS.patient_hash_length,
                                        max_length=VALIDATION_LIMITS.patient_hash_length,
                                        pattern="^[A-Za-z0-9]+$")
    protocol_start_datetime: datetime = Field(..., alias="protocolStartDatetime",
                                              description="ISO 8601; within the last 24 hours")

    # Biochemistry
    ph: StrictFloat = Field(..., alias="pH", ge=VALIDATION_LIMITS.ph[0], le=VALIDATION_LIMITS.ph[1])
    bicarbonate: Optional[StrictFloat] = Field(None, ge=VALIDATION_LIMITS.bicarbonate[0],
                                               le=VALIDATION_LIMITS.bicarbonate[1],
                                               description="mmol/L")
    glucose: Optional[StrictFloat] = Field(None, ge=VALIDATION_LIMITS.glucose[0],
                                           le=VALIDATION_LIMITS.glucose[1],
                                           description="mmol/L")
    ketones: Optional[StrictFloat] = Field(None, ge=DEFAULT_CONFIG.minimum_ketones,
                                           le=VALIDATION_LIMITS.ketones_max,
                                           description="mmol/L, at least the diagnostic threshold for DKA")

    # Weight & treatment choices
    weight: StrictFloat = Field(..., ge=VALIDATION_LIMITS.weight[0], le=VALIDATION_LIMITS.weight[1],
                                description="Weight in kg")
    weight_limit_override: StrictBool = Field(
        False, alias="weightLimitOverride",
        description="Skip the weight-for-age check. That check only runs when a growth "
                    "centile table is configured; the hard weight range always applies.")
    shock_present: StrictBool = Field(..., alias="shockPresent")
    insulin_rate: StrictFloat = Field(..., alias="insulinRate", description="Units/kg/hour")
    pre_existing_diabetes: StrictBool = Field(..., alias="preExistingDiabetes")
    insulin_delivery_method: Optional[str] = Field(None, alias="insulinDeliveryMethod")
    episode_type: str = Field(..., alias="episodeType")

    @field_validator("legal_agreement")
    @classmethod
    def must_agree(cls, value: bool) -> bool:
        if not value:
            raise ValueError("You must agree to the legal disclaimer.")
        return value

    @field_validator("patient_sex")
    @classmethod
    def check_sex(cls, value: str) -> str:
        if value not in VALIDATION_LIMITS.patient_sex_options:
            raise ValueError("Patient sex must be male or female.")
        return value

    @field_validator("insulin_rate")
    @classmethod
    def check_insulin_rate(cls, value: float) -> float:
        if value not in DEFAULT_CONFIG.insulin_rate_options:
            raise ValueError("Invalid insulin rate option provided.")
        return value

    @field_validator("episode_type")
    @classmethod
    def check_episode_type(cls, value: str) -> str:
        if value not in VALIDATION_LIMITS.episode_type_options:
            raise ValueError("Invalid episode type option provided.")
        return value

    @field_validator("protocol_start_datetime")
    @classmethod
    def check_protocol_start_datetime(cls, value: datetime) -> datetime:
        return check_protocol_start(value, VALIDATION_LIMITS)

    @model_validator(mode="after")
    def check_weight_for_age(self):
        check_weight_within_limit(self.weight, self.patient_age, self.patient_sex,
                                  self.weight_limit_override, VALIDATION_LIMITS)
        return self

    @model_validator(mode="after")
    def check_insulin_delivery_method(self):
        if self.pre_existing_diabetes:
            if self.insulin_delivery_method not in VALIDATION_LIMITS.insulin_delivery_method_options:
                raise ValueError("Invalid insulin delivery method option provided.")
        elif self.insulin_delivery_method:
            raise ValueError("Insulin delivery method must be blank if pre-existing diabetes status is false.")
        return self

    def to_clinical_input(self) -> ClinicalInput:
        return ClinicalInput(
            weight_kg=self.weight,
            ph=self.ph,
            shock_present=self.shock_present,
            insulin_rate=self.insulin_rate,
            bicarbonate=self.bicarbonate,
            glucose=self.glucose,
            ketones=self.ketones,
            patient_age=self.patient_age,
            patient_sex=self.patient_sex,
            protocol_start_datetime=self.protocol_start_datetime,
            weight_limit_override=self.weight_limit_override,
            pre_existing_diabetes=self.pre_existing_diabetes,
            insulin_delivery_method=self.insulin_delivery_method,
            episode_type=self.episode_type,
        )


class SodiumOsmolalityRequest(BaseModel):
    sodium: StrictFloat = Field(..., gt=100.0, le=200.0, description="mmol/L")
    glucose: StrictFloat = Field(..., ge=0.0, le=100.0, description="mmol/L")


# --- 3. EXPLICIT RESPONSE SCHEMA (The Contract) ---
class CalculationResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    audit_id: str = Field(..., alias="auditID")
    calculations: Dict[str, Any]


class CalculationErrorResponse(BaseModel):
    errors: List[str]


class SodiumOsmolalityResponse(BaseModel):
    corrected_sodium: Dict[str, Any] = Field(..., alias="correctedSodium")
    effective_osmolality: Dict[str, Any] = Field(..., alias="effectiveOsmolality")


# --- 4. ENDPOINTS ---

@app.post("/calculate", response_model=CalculationResponse, response_model_by_alias=True,
          responses={400: {"model": CalculationErrorResponse}})
def calculate(request: CalculationRequest):
    """
    Runs the DKA protocol calculations. Any calculation error is returned
    as a 400 with the complete error list; no audit record is created.
    """
    try:
        logger.info(f"Processing calculation for pH: {request.ph}, Wt: {request.weight}kg")

        clinical_input = request.to_clinical_input()
        result = calculate_variables(clinical_input, DEFAULT_CONFIG)

        if result.errors:
            logger.warning(f"Calculation rejected with {len(result.errors)} error(s)")
            return JSONResponse(status_code=400, content={"errors": list(result.errors)})

        audit_id = generate_audit_id()
        audit_log = AuditLog(
            audit_id=audit_id,
            inputs_hash=hash(str(request.model_dump())),
            patient_hash=rehash_patient_hash(request.patient_hash, PATIENT_HASH_SALT),
        )
        logger.info(f"Audit record: {asdict(audit_log)}")

        return CalculationResponse(audit_id=audit_id, calculations=result.to_dict())

    except ValueError as e:
        logger.warning(f"Clinical Validation Error: {str(e)}")
        raise HTTPException(status_code=422, detail=f"Clinical Validation Error: {str(e)}")

    except Exception as e:
        logger.error(f"Internal Engine Failure: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal Calculation Engine Error")


@app.post("/sodium-osmolality", response_model=SodiumOsmolalityResponse, response_model_by_alias=True)
def sodium_osmolality(request: SodiumOsmolalityRequest):
    corrected = calculate_corrected_sodium(request.sodium, request.glucose)
    osmolality = calculate_effective_osmolality(request.sodium, request.glucose)
    return {
        "correctedSodium": corrected.to_dict(),
        "effectiveOsmolality": osmolality.to_dict(),
    }
