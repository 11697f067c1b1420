"""Registration and clinical submission validation and merge.

The stateful workflow lives in ``submission.service``.
"""

from .entities import (
    ActiveClinicalSubmission,
    ActiveRegistration,
    CreateRegistrationRecord,
    DataValidationErrors,
    ModificationType,
    SubmissionState,
    SubmissionValidationError,
    SubmissionValidationUpdate,
)
from .registration_validation import calculate_registration_stats, validate_registration_data
from .clinical_validation import merge_and_validate_submission, validate_submission_data
from .merge import merge_active_submission_with_donors, merge_records_into_donor

__all__ = [
    "ActiveClinicalSubmission",
    "ActiveRegistration",
    "CreateRegistrationRecord",
    "DataValidationErrors",
    "ModificationType",
    "SubmissionState",
    "SubmissionValidationError",
    "SubmissionValidationUpdate",
    "calculate_registration_stats",
    "validate_registration_data",
    "merge_and_validate_submission",
    "validate_submission_data",
    "merge_active_submission_with_donors",
    "merge_records_into_donor",
]
