from dataclasses import dataclass

NEW_PATIENT = 'new_patient'
EXISTING_PATIENT = 'existing_patient'
FOLLOW_UP_TASK = 'follow_up_task'

VISIT_CATEGORIES = (NEW_PATIENT, EXISTING_PATIENT, FOLLOW_UP_TASK)

ADULT = 'adult'
CHILD = 'child'


@dataclass(frozen=True)
class Classification:
    """
    category          one of VISIT_CATEGORIES
    employee_id       who is credited (None only when nobody can be found)
    fallback_used     the natural owner was missing and another employee was credited
    follow_up_task_id the task behind a follow-up visit
    """

    category: str
    employee_id: object = None
    fallback_used: bool = False
    follow_up_task_id: object = None

    @property
    def is_new_patient(self) -> bool:
        return self.category == NEW_PATIENT

    @property
    def is_existing_patient(self) -> bool:
        return self.category == EXISTING_PATIENT

    @property
    def is_follow_up(self) -> bool:
        return self.category == FOLLOW_UP_TASK


@dataclass(frozen=True)
class FollowUpLink:
    task_id: object
    owner_id: object


@dataclass(frozen=True)
class VisitStamp:
    """The columns the ordering rules look at, detached from the ORM."""

    id: object
    patient_id: object
    hospital_id: object
    visit_date: object
    created_at: object

    @property
    def order_key(self):
        return (self.visit_date, self.created_at)
