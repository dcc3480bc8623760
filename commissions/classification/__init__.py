"""
Visit classification — the single source of truth for "was this a new
patient, an existing patient, or a follow-up?" and "who gets credit?".

Commission triggers, target progress and every report call
``classify_and_attribute``; nothing else re-implements the rules.
"""

from .age import age_category, calculate_patient_age, patient_age_category
from .classifier import (
    ClassificationContext,
    classify,
    classify_and_attribute,
    classify_appointment,
    is_first_visit,
)
from .types import (
    ADULT,
    CHILD,
    EXISTING_PATIENT,
    FOLLOW_UP_TASK,
    NEW_PATIENT,
    VISIT_CATEGORIES,
    Classification,
)

__all__ = [
    'ADULT',
    'CHILD',
    'EXISTING_PATIENT',
    'FOLLOW_UP_TASK',
    'NEW_PATIENT',
    'VISIT_CATEGORIES',
    'Classification',
    'ClassificationContext',
    'age_category',
    'calculate_patient_age',
    'classify',
    'classify_and_attribute',
    'classify_appointment',
    'is_first_visit',
    'patient_age_category',
]
