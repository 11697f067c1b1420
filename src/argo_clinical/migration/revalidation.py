"""Re-checking stored donor data against a dictionary version."""

from typing import Dict, List, Optional

from ..clinical.accessor import get_clinical_entities
from ..clinical.entities import Donor
from ..config.constants import CLINICAL_ENTITIES
from ..config.logging_config import get_logger
from ..dictionary.entities import SchemasDictionary, SchemaValidationError
from ..dictionary.processor import process, stringify_record

logger = get_logger("migration.revalidation")

# [{entity name: [errors]}, ...] in entity check order
DonorSchemaErrors = List[Dict[str, List[SchemaValidationError]]]


def validate_donor_entity_against_schema(
    entity_name: str, dictionary: SchemasDictionary, donor: Donor
) -> Optional[List[SchemaValidationError]]:
    """
    Run a donor's stored records of one entity through ``dictionary``.

    Stored values are turned back into raw strings first, so they go through
    the same processing as a fresh upload.

    Returns:
        The errors found, or None when the donor has no such records or they
        are all valid.
    """
    records = get_clinical_entities(donor, entity_name)
    if not records:
        return None

    logger.debug(f"Checking donor {donor.submitter_id} against schema {entity_name}")
    errors: List[SchemaValidationError] = []
    for index, record in enumerate(records):
        result = process(dictionary, entity_name, stringify_record(record), index)
        errors.extend(result.validation_errors)
    return errors or None


def revalidate_donor_entities(
    donor: Donor, dictionary: SchemasDictionary, entity_names: List[str]
) -> DonorSchemaErrors:
    """Check the listed entities of a donor; only failing entities appear in the result."""
    donor_errors: DonorSchemaErrors = []
    for entity_name in entity_names:
        if dictionary.get_schema(entity_name) is None:
            continue
        errors = validate_donor_entity_against_schema(entity_name, dictionary, donor)
        if errors:
            donor_errors.append({entity_name: errors})
    return donor_errors


def is_donor_valid_against(donor: Donor, dictionary: SchemasDictionary) -> bool:
    """Check every clinical entity of a donor against ``dictionary``."""
    return not revalidate_donor_entities(donor, dictionary, CLINICAL_ENTITIES)


def errors_to_dict(donor_errors: DonorSchemaErrors) -> List[Dict[str, List[Dict]]]:
    return [
        {entity: [e.to_dict() for e in errors] for entity, errors in entry.items()}
        for entry in donor_errors
    ]
