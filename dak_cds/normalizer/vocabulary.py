"""Controlled observation vocabulary per module, and input field aliases.

Each module declares the observation keys its rules may reference and the
type each key carries. Upstream forms and integrations name the same
finding many ways; FIELD_ALIASES maps those spellings onto the canonical
key.
"""

from enum import Enum
from types import MappingProxyType


class ObservationType(str, Enum):
    """Declared value type of an observation key."""
    NUMBER = "number"
    BOOLEAN = "boolean"
    TEXT = "text"
    TEXT_SET = "text_set"


N = ObservationType.NUMBER
B = ObservationType.BOOLEAN
T = ObservationType.TEXT
S = ObservationType.TEXT_SET

_ANC = {
    "systolicBP": N,
    "diastolicBP": N,
    "pulse": N,
    "temperature": N,
    "respiratoryRate": N,
    "hemoglobin": N,
    "bloodGlucose": N,
    "gestationalAgeWeeks": N,
    "fundalHeight": N,
    "fetalHeartRate": N,
    "weightKg": N,
    "muac": N,
    "urineProtein": T,
    "hivStatus": T,
    "syphilisResult": T,
    "dangerSigns": S,
    "fetalMovement": T,
    "maternalConcern": B,
    "additionalSymptoms": S,
    "gravida": N,
    "para": N,
    "abortions": N,
    "livingChildren": N,
    "previousComplications": S,
    "caffeineIntake": T,
    "tobaccoSmoking": T,
    "tobaccoSniffing": T,
    "householdSmoking": B,
    "substanceUse": S,
    "intimatePartnerViolence": T,
}

_ART = {
    "cd4Count": N,
    "viralLoad": N,
    "alt": N,
    "ast": N,
    "creatinine": N,
    "hemoglobin": N,
    "weightKg": N,
    "adherencePercent": N,
    "monthsOnTreatment": N,
    "whoStage": N,
    "regimen": T,
    "tbSymptoms": S,
    "comorbidities": S,
    "pregnant": B,
}

_PREP = {
    "hivStatus": T,
    "acuteHivSymptoms": S,
    "creatinineClearance": N,
    "hepatitisB": T,
    "allergies": S,
    "riskFactors": S,
    "prepScore": N,
    "pregnant": B,
    "breastfeeding": B,
    "weightKg": N,
}

_PHARMACOVIGILANCE = {
    "adverseReactions": S,
    "rashGrade": N,
    "alt": N,
    "ast": N,
    "creatinine": N,
    "hemoglobin": N,
    "regimen": T,
    "concomitantMedications": S,
    "pregnant": B,
}

_PNC = {
    "systolicBP": N,
    "diastolicBP": N,
    "temperature": N,
    "pulse": N,
    "hemoglobin": N,
    "bloodLossMl": N,
    "daysPostpartum": N,
    "dangerSigns": S,
    "breastfeeding": B,
}

MODULE_VOCABULARY = MappingProxyType({
    "ANC": MappingProxyType(_ANC),
    "ART": MappingProxyType(_ART),
    "PREP": MappingProxyType(_PREP),
    "PHARMACOVIGILANCE": MappingProxyType(_PHARMACOVIGILANCE),
    "PNC": MappingProxyType(_PNC),
})

# Canonical key -> accepted spellings (compared after lower-casing and
# stripping separators). Dotted paths match flattened nested form objects.
FIELD_ALIASES = {
    "systolicBP": [
        "systolic", "sbp", "systolic_bp", "bp_systolic", "blood_pressure_systolic",
        "vitalsigns.bloodpressure.systolic", "bloodpressure.systolic",
    ],
    "diastolicBP": [
        "diastolic", "dbp", "diastolic_bp", "bp_diastolic", "blood_pressure_diastolic",
        "vitalsigns.bloodpressure.diastolic", "bloodpressure.diastolic",
    ],
    "pulse": ["pulse", "heart_rate", "hr", "pulse_rate"],
    "temperature": ["temp", "temperature", "body_temp", "body_temperature"],
    "respiratoryRate": ["respiratory_rate", "resp_rate", "rr"],
    "hemoglobin": ["hemoglobin", "haemoglobin", "hb", "hgb", "labresults.hemoglobin"],
    "bloodGlucose": ["blood_glucose", "glucose", "rbs", "random_blood_sugar"],
    "gestationalAgeWeeks": [
        "gestational_age", "gestational_age_weeks", "ga", "ga_weeks", "gestationalage",
    ],
    "fundalHeight": ["fundal_height", "sfh", "symphysis_fundal_height"],
    "fetalHeartRate": ["fetal_heart_rate", "fhr"],
    "weightKg": ["weight", "weight_kg", "wt", "body_weight"],
    "muac": ["muac", "mid_upper_arm_circumference"],
    "urineProtein": ["urine_protein", "protein", "urinalysis.protein", "labresults.urineprotein"],
    "hivStatus": ["hiv_status", "hiv_result", "hivtestresult"],
    "syphilisResult": ["syphilis", "syphilis_result", "rpr", "vdrl"],
    "dangerSigns": ["danger_signs", "dangersign", "quick_check_danger_signs"],
    "fetalMovement": ["fetal_movement", "movement_status", "movementstatus"],
    "maternalConcern": ["maternal_concern"],
    "additionalSymptoms": ["additional_symptoms"],
    "previousComplications": ["previous_complications", "obstetric_complications"],
    "livingChildren": ["living_children", "living"],
    "caffeineIntake": ["caffeine_intake", "daily_caffeine_intake"],
    "tobaccoSmoking": ["tobacco_smoking", "tobacco_use_smoking"],
    "tobaccoSniffing": ["tobacco_sniffing", "tobacco_use_sniffing"],
    "householdSmoking": ["household_smoking", "anyone_smokes_in_household"],
    "substanceUse": ["substance_use", "uses_alcohol_substances"],
    "intimatePartnerViolence": ["intimate_partner_violence", "ipv"],
    "cd4Count": ["cd4", "cd4_count", "cd4count", "medicaltests.cd4count"],
    "viralLoad": ["viral_load", "vl", "hiv_viral_load", "medicaltests.viralload"],
    "alt": ["alt", "sgpt", "alanine_aminotransferase", "medicaltests.alt"],
    "ast": ["ast", "sgot", "aspartate_aminotransferase", "medicaltests.ast"],
    "creatinine": ["creatinine", "creat", "serum_creatinine", "medicaltests.creatinine"],
    "adherencePercent": ["adherence", "adherence_percent", "adherence_pct"],
    "monthsOnTreatment": ["months_on_treatment", "months_on_art"],
    "whoStage": ["who_stage", "who_clinical_stage"],
    "tbSymptoms": ["tb_symptoms", "tb_screen"],
    "comorbidities": ["comorbidities", "co_morbidities"],
    "pregnant": ["pregnant", "is_pregnant", "pregnancy_status"],
    "acuteHivSymptoms": ["acute_hiv_symptoms"],
    "creatinineClearance": ["creatinine_clearance", "crcl", "egfr"],
    "hepatitisB": ["hepatitis_b", "hbsag", "hep_b"],
    "allergies": ["allergies", "drug_allergies"],
    "riskFactors": ["risk_factors", "prep_risk_factors"],
    "prepScore": ["prep_score", "risk_score"],
    "breastfeeding": ["breastfeeding", "is_breastfeeding"],
    "adverseReactions": ["adverse_reactions", "adrs", "side_effects"],
    "rashGrade": ["rash_grade"],
    "concomitantMedications": ["concomitant_medications", "other_medications"],
    "bloodLossMl": ["blood_loss", "blood_loss_ml", "ebl"],
    "daysPostpartum": ["days_postpartum", "postpartum_day"],
}


def known_modules() -> list[str]:
    return list(MODULE_VOCABULARY)


def vocabulary_for(module_code: str) -> MappingProxyType | None:
    """Get the observation vocabulary for a module, or None if it has none."""
    return MODULE_VOCABULARY.get(module_code.upper())
