from datetime import date

from ..dates import today as business_today
from .types import ADULT, CHILD

ADULT_AGE_THRESHOLD = 16
MAX_VALID_AGE = 150


def _age_from_dob(dob: date, on: date) -> int:
    age = on.year - dob.year
    if (on.month, on.day) < (dob.month, dob.day):
        age -= 1
    return age


def _birth_year_from_national_id(national_id: str) -> int | None:
    digits = (national_id or '').strip()
    if len(digits) < 2 or not digits[:2].isdigit():
        return None
    two = int(digits[:2])
    # 00–29 → 2000s, 30–99 → 1900s
    return 2000 + two if two <= 29 else 1900 + two


def calculate_patient_age(dob: date | None = None, national_id: str = '', on: date | None = None) -> int | None:
    """Age in whole years from DOB, falling back to the national id's birth year."""
    on = on or business_today()
    if dob is not None:
        age = _age_from_dob(dob, on)
    else:
        birth_year = _birth_year_from_national_id(national_id)
        if birth_year is None:
            return None
        age = on.year - birth_year

    if 0 <= age <= MAX_VALID_AGE:
        return age
    return None


def age_category(age: int | None) -> str | None:
    if age is None:
        return None
    return ADULT if age > ADULT_AGE_THRESHOLD else CHILD


def patient_age_category(patient, on: date | None = None) -> str | None:
    return age_category(calculate_patient_age(patient.dob, patient.national_id, on))
