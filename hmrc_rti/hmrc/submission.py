"""
Submission preparation.

Assembles everything the gateway transport needs for one RTI document: the
validated XML, a usable access token, request headers and the endpoint URL.
Nothing is transmitted here.
"""

import threading
import weakref
from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional, Tuple
from urllib.parse import quote

from hmrc_rti.exceptions import RTIError, StructuralValidationError
from hmrc_rti.hmrc.auth import HMRCAuth
from hmrc_rti.hmrc.fraud_prevention import FraudPreventionHeaders, as_request_headers
from hmrc_rti.hmrc.models import CredentialSet, EPSInput, EYUInput, FPSInput, PayrollRecord, TokenCallback
from hmrc_rti.hmrc.rti_xml import RTIXMLGenerator
from hmrc_rti.hmrc.utils import get_base_url, mask_paye_reference
from hmrc_rti.simple_logger import get_logger

logger = get_logger("submission")

INPUT_TYPES = {
    'fps': FPSInput,
    'eps': EPSInput,
    'eyu': EYUInput,
}
SUBMISSION_KINDS = tuple(INPUT_TYPES)

# Entries disappear once no caller holds a reference to the lock
_credential_locks = weakref.WeakValueDictionary()
_registry_lock = threading.Lock()


def credential_lock(key: str) -> threading.Lock:
    """Per-credential-set lock for serializing token refreshes.

    Callers must keep the returned lock referenced while they use it.
    """
    with _registry_lock:
        lock = _credential_locks.get(key)
        if lock is None:
            lock = _credential_locks[key] = threading.Lock()
        return lock


@dataclass
class PreparedSubmission:
    kind: str
    xml: str
    access_token: str
    endpoint: str
    headers: Dict[str, str] = field(default_factory=dict)
    fraud_headers: Dict[str, str] = field(default_factory=dict)


def submission_endpoint(employer_paye_reference: str, kind: str, environment: Optional[str] = None) -> str:
    return f"{get_base_url(environment)}/paye/employers/{quote(employer_paye_reference, safe='')}" \
           f"/submissions/{kind.lower()}"


def check_same_period(records: Iterable[PayrollRecord]) -> Tuple[str, int, str]:
    """
    Ensure a batch of payroll records all belong to one tax period.

    Returns (tax_year, tax_period, period_type) of the batch.
    """
    records = list(records)
    if not records:
        raise RTIError('No approved payroll records found to submit', error_code='NO_RECORDS')

    first = records[0]
    period = (first.tax_year, first.tax_period, first.period_type)
    for payroll in records[1:]:
        if (payroll.tax_year, payroll.tax_period, payroll.period_type) != period:
            raise RTIError(
                f"Cannot batch submit: Payroll records must be for the same tax period. "
                f"Found: {payroll.tax_year} period {payroll.tax_period} ({payroll.period_type})",
                error_code='PERIOD_MISMATCH',
            )
    return period


def prepare_submission(kind: str, data, *, credentials: CredentialSet, auth: HMRCAuth,
                       fraud_headers: FraudPreventionHeaders, generator: Optional[RTIXMLGenerator] = None,
                       user_id: Optional[str] = None,
                       on_refreshed: Optional[TokenCallback] = None) -> PreparedSubmission:
    kind = (kind or '').lower()
    if kind not in SUBMISSION_KINDS:
        raise ValueError(f"Unknown submission type: {kind}. Must be one of {', '.join(SUBMISSION_KINDS)}")

    if isinstance(data, dict):
        data = INPUT_TYPES[kind].from_dict(data)

    generator = generator or RTIXMLGenerator()
    xml = getattr(generator, f"generate_{kind}")(data)
    result = generator.validate_xml(xml)
    if not result.valid:
        raise StructuralValidationError(
            f"Generated {kind.upper()} failed validation: {'; '.join(result.errors)}",
            errors=result.errors,
        )

    access_token = auth.get_valid_access_token(credentials, on_refreshed=on_refreshed)
    header_set = fraud_headers.generate_headers(user_id=user_id)

    employer_reference = data.employer_paye_reference
    endpoint = submission_endpoint(employer_reference, kind, credentials.environment)

    headers = {
        'Authorization': f'Bearer {access_token}',
        'Content-Type': 'application/xml',
        'Accept': 'application/json',
    }
    headers.update(as_request_headers(header_set))

    logger.info(
        "Prepared %s for employer %s (%s)",
        kind.upper(), mask_paye_reference(employer_reference), credentials.environment,
    )
    return PreparedSubmission(
        kind=kind,
        xml=xml,
        access_token=access_token,
        endpoint=endpoint,
        headers=headers,
        fraud_headers=header_set,
    )
