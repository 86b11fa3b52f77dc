"""Risk Scoring Engine: PrEP, obstetric and lab-value risk."""

from .lab_risk import (
    LAB_THRESHOLDS,
    LabCategory,
    LabRiskAssessment,
    LabThreshold,
    PatientRiskProfile,
    RiskLevel,
    assess_comorbidity_risk,
    assess_lab_value_risk,
    assess_liver_function,
    generate_patient_risk_profile,
    overall_risk,
)
from .obstetric import (
    COMPLICATIONS,
    ObstetricRiskAssessment,
    ObstetricValidation,
    ParityCategory,
    assess_obstetric_risk,
    field_warnings,
    parity_category,
    validate_obstetric_history,
)
from .prep import (
    PREP_MAX_SCORE,
    PREP_RISK_FACTORS,
    FollowUpSchedule,
    PrEPAlert,
    PrEPPrescription,
    PrEPRiskLevel,
    assess_prep_risk,
    build_risk_factors,
    calculate_prep_follow_up_schedule,
    check_prep_contraindications,
    classify_prep_risk,
    determine_prep_eligibility,
    generate_prep_alert,
    generate_prep_recommendations,
    recommend_prep_regimen,
    score_prep_risk,
)

__all__ = [
    "PREP_MAX_SCORE",
    "PREP_RISK_FACTORS",
    "PrEPRiskLevel",
    "PrEPAlert",
    "PrEPPrescription",
    "FollowUpSchedule",
    "assess_prep_risk",
    "build_risk_factors",
    "score_prep_risk",
    "classify_prep_risk",
    "check_prep_contraindications",
    "determine_prep_eligibility",
    "generate_prep_recommendations",
    "generate_prep_alert",
    "calculate_prep_follow_up_schedule",
    "recommend_prep_regimen",
    "COMPLICATIONS",
    "ParityCategory",
    "ObstetricValidation",
    "ObstetricRiskAssessment",
    "validate_obstetric_history",
    "parity_category",
    "assess_obstetric_risk",
    "field_warnings",
    "LAB_THRESHOLDS",
    "LabCategory",
    "LabThreshold",
    "LabRiskAssessment",
    "PatientRiskProfile",
    "RiskLevel",
    "assess_lab_value_risk",
    "assess_liver_function",
    "assess_comorbidity_risk",
    "overall_risk",
    "generate_patient_risk_profile",
]
