"""
RTI XML generation for FPS, EPS and EYU submissions.

Documents are assembled as ElementTree elements and rendered with a small
serializer so that every text and attribute value goes through the same
five-entity escape HMRC's schema tests expect.
"""

import re
import warnings
import xml.etree.ElementTree as ET
from typing import List, Optional, Union

from hmrc_rti.config import Config
from hmrc_rti.exceptions import MissingDataError, ValidationWarning
from hmrc_rti.hmrc.models import (
    Employee, EPSInput, EYUInput, FPSInput, PayrollRecord, ValidationResult,
)
from hmrc_rti.hmrc.utils import (
    escape_xml, format_date, format_money, is_positive, map_period_type, split_paye_reference,
)
from hmrc_rti.simple_logger import get_logger

logger = get_logger("rti_xml")

__all__ = ['RTIXMLGenerator', 'escape_xml', 'map_period_type', 'NAMESPACES']

XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8"?>'
RTI_NAMESPACE = 'http://www.govtalk.gov.uk/taxation/PAYE/RTI/{document}/14-15/1'

NAMESPACES = {
    'FullPaymentSubmission': RTI_NAMESPACE.format(document='FullPaymentSubmission'),
    'EmployerPaymentSummary': RTI_NAMESPACE.format(document='EmployerPaymentSummary'),
    'EarlierYearUpdate': RTI_NAMESPACE.format(document='EarlierYearUpdate'),
}

NINO_PATTERN = re.compile(r'^[A-Z]{2}[0-9]{6}[A-Z]?$')
DEFAULT_TAX_CODE = '1257L'
DEFAULT_NI_CATEGORY = 'A'
IRREGULAR_EMPLOYMENT_TYPES = ('temporary', 'contract')


def _text(parent: ET.Element, tag: str, value='') -> ET.Element:
    element = ET.SubElement(parent, tag)
    element.text = '' if value is None else str(value)
    return element


def _optional_money(value) -> str:
    return format_money(value) if is_positive(value) else ''


def _bool(value: bool) -> str:
    return 'true' if value else 'false'


def render(element: ET.Element, indent: str = '  ') -> str:
    """Serialize an element tree, two-space indented, with the XML declaration."""
    lines = [XML_DECLARATION]
    _render_element(element, 0, indent, lines)
    return '\n'.join(lines) + '\n'


def _render_element(element, depth, indent, lines):
    pad = indent * depth
    attributes = ''.join(f' {name}="{escape_xml(value)}"' for name, value in element.attrib.items())
    children = list(element)
    if not children:
        lines.append(f"{pad}<{element.tag}{attributes}>{escape_xml(element.text or '')}</{element.tag}>")
        return
    lines.append(f"{pad}<{element.tag}{attributes}>")
    for child in children:
        _render_element(child, depth + 1, indent, lines)
    lines.append(f"{pad}</{element.tag}>")


class RTIXMLGenerator:
    """Builds and spot-checks RTI submission documents."""

    def __init__(self, sender: Optional[str] = None, sender_id: Optional[str] = None):
        self.sender = sender or Config.RTI_SENDER
        self.sender_id = sender_id or Config.RTI_SENDER_ID

    # Envelope

    def _envelope(self, document: str, employer_paye_reference: str, accounts_office_reference: str,
                  submission_date) -> ET.Element:
        """IRenvelope with IRheader and the document body holding EmpRefs."""
        office_number, office_reference = split_paye_reference(employer_paye_reference)

        root = ET.Element('IRenvelope', {'xmlns': NAMESPACES[document]})
        header = ET.SubElement(root, 'IRheader')
        keys = ET.SubElement(header, 'Keys')
        _text(keys, 'Key', office_number).set('Type', 'TaxOfficeNumber')
        _text(keys, 'Key', office_reference).set('Type', 'TaxOfficeReference')
        _text(header, 'PeriodEnd', format_date(submission_date))
        _text(header, 'Sender', self.sender)
        _text(header, 'SenderID', self.sender_id)

        body = ET.SubElement(root, document)
        emp_refs = ET.SubElement(body, 'EmpRefs')
        _text(emp_refs, 'OfficeNo', office_number)
        _text(emp_refs, 'PayeRef', office_reference)
        _text(emp_refs, 'AORef', accounts_office_reference)
        return root

    # FPS

    def build_fps(self, data: Union[FPSInput, dict]) -> ET.Element:
        if isinstance(data, dict):
            data = FPSInput.from_dict(data)

        root = self._envelope('FullPaymentSubmission', data.employer_paye_reference,
                              data.accounts_office_reference, data.submission_date)
        body = root.find('FullPaymentSubmission')
        _text(body, 'TaxYear', data.tax_year)
        _text(body, 'PayFrequency', map_period_type(data.period_type))
        _text(body, 'PayId', data.period_number)
        _text(body, 'PaymentDate', format_date(data.payment_date))

        for index, payroll in enumerate(data.payroll_records):
            if payroll.employee is None:
                raise MissingDataError(
                    f"Employee data missing for payroll {payroll.id} (index {index}) - required for HMRC "
                    f"submission. Attach employee data before generating XML.",
                    payroll_id=payroll.id,
                    index=index,
                )
            self._employee_payment(body, payroll, payroll.employee, index)

        return root

    def generate_fps(self, data: Union[FPSInput, dict]) -> str:
        """Full Payment Submission, one Employee element per payroll record in input order."""
        root = self.build_fps(data)
        logger.info("Generated FPS with %d employee(s)", len(root.find('FullPaymentSubmission').findall('Employee')))
        return render(root)

    def _employee_payment(self, parent: ET.Element, payroll: PayrollRecord, employee: Employee, index: int):
        if not employee.national_insurance_number:
            raise MissingDataError(
                f"Employee {employee.id} missing National Insurance Number - required for HMRC submission",
                payroll_id=payroll.id,
                index=index,
            )
        nino = re.sub(r'\s', '', employee.national_insurance_number).upper()
        if len(nino) != 9 or not NINO_PATTERN.match(nino):
            message = f"Invalid NI number format for employee {employee.id}: {nino}"
            logger.warning(message)
            warnings.warn(message, ValidationWarning, stacklevel=4)

        tax_code = payroll.tax_code or employee.tax_code or DEFAULT_TAX_CODE
        tax_code_basis = payroll.tax_code_basis or employee.tax_code_basis or 'cumulative'
        ytd = payroll.ytd_data

        element = ET.SubElement(parent, 'Employee')
        _text(element, 'NINO', nino)
        _text(element, 'PayId', payroll.tax_period)
        _text(element, 'TaxCode', tax_code)
        _text(element, 'TaxBasis', 'C' if tax_code_basis == 'cumulative' else 'W1')
        _text(element, 'GrossPay', format_money(payroll.gross_pay))
        _text(element, 'TaxablePay', format_money(payroll.taxable_gross_pay))
        _text(element, 'TaxDeducted', format_money(payroll.tax_deductions))
        _text(element, 'NICategory', payroll.ni_category or DEFAULT_NI_CATEGORY)
        _text(element, 'EmployeeNIContributions', format_money(payroll.employee_ni_deductions))
        _text(element, 'EmployerNIContributions', format_money(payroll.employer_ni_contributions))
        _text(element, 'StudentLoanDeduction', _optional_money(payroll.student_loan_deductions))
        _text(element, 'PostgraduateLoanDeduction', _optional_money(payroll.postgraduate_loan_deductions))
        _text(element, 'PensionDeduction', _optional_money(payroll.employee_pension_deductions))
        _text(element, 'SSP', _optional_money(payroll.statutory_sick_pay))
        _text(element, 'SMP', _optional_money(payroll.statutory_maternity_pay))
        _text(element, 'SPP', _optional_money(payroll.statutory_paternity_pay))
        _text(element, 'PaymentAfterLeaving', _bool(employee.status == 'terminated'))
        _text(element, 'IrregularEmployment', _bool(employee.employment_type in IRREGULAR_EMPLOYMENT_TYPES))
        _text(element, 'YTDGrossPay', format_money(ytd.gross_pay))
        _text(element, 'YTDTaxablePay', format_money(ytd.taxable_pay))
        _text(element, 'YTDTaxDeducted', format_money(ytd.tax_paid))
        _text(element, 'YTDEmployeeNIContributions', format_money(ytd.employee_ni_paid))
        _text(element, 'YTDEmployerNIContributions', format_money(ytd.employer_ni_paid))
        _text(element, 'YTDStudentLoanDeduction', _optional_money(ytd.student_loan_paid))
        _text(element, 'YTDPostgraduateLoanDeduction', _optional_money(ytd.postgraduate_loan_paid))
        _text(element, 'YTDPensionDeduction', _optional_money(ytd.employee_pension))
        return element

    # EPS

    def build_eps(self, data: Union[EPSInput, dict]) -> ET.Element:
        if isinstance(data, dict):
            data = EPSInput.from_dict(data)

        root = self._envelope('EmployerPaymentSummary', data.employer_paye_reference,
                              data.accounts_office_reference, data.submission_date)
        body = root.find('EmployerPaymentSummary')
        _text(body, 'TaxYear', data.tax_year)
        _text(body, 'PayFrequency', map_period_type(data.period_type))
        _text(body, 'PayId', data.period_number)

        if data.no_payment_for_period:
            _text(body, 'NoPaymentForPeriod', 'true')

        recovery = data.statutory_pay_recovery
        if recovery is not None:
            section = ET.SubElement(body, 'StatutoryPayRecovery')
            for tag, value in (('SMP', recovery.smp), ('SPP', recovery.spp), ('SAP', recovery.sap),
                               ('ShPP', recovery.shpp), ('ASPP', recovery.aspp)):
                if value:
                    _text(section, tag, format_money(value))

        if data.employment_allowance is not None and data.employment_allowance.claimed:
            _text(body, 'EmploymentAllowance', format_money(data.employment_allowance.amount))

        if data.cis_deductions:
            _text(body, 'CISDeductions', format_money(data.cis_deductions))

        if data.apprenticeship_levy is not None:
            levy = ET.SubElement(body, 'ApprenticeshipLevy')
            _text(levy, 'Amount', format_money(data.apprenticeship_levy.amount))
            _text(levy, 'Allowance', format_money(data.apprenticeship_levy.allowance))

        return root

    def generate_eps(self, data: Union[EPSInput, dict]) -> str:
        """Employer Payment Summary; absent optional sections are omitted entirely."""
        return render(self.build_eps(data))

    # EYU

    def build_eyu(self, data: Union[EYUInput, dict]) -> ET.Element:
        if isinstance(data, dict):
            data = EYUInput.from_dict(data)

        root = self._envelope('EarlierYearUpdate', data.employer_paye_reference,
                              data.accounts_office_reference, data.submission_date)
        body = root.find('EarlierYearUpdate')
        _text(body, 'TaxYear', data.tax_year)
        _text(body, 'EmployeeId', data.employee_id)
        _text(body, 'OriginalPayrollId', data.original_payroll_id)
        _text(body, 'Reason', data.reason)

        corrections = ET.SubElement(body, 'Corrections')
        fields = data.corrections
        for tag, value in (('GrossPay', fields.gross_pay), ('TaxDeductions', fields.tax_deductions),
                           ('NIDeductions', fields.ni_deductions),
                           ('StudentLoanDeductions', fields.student_loan_deductions),
                           ('PensionDeductions', fields.pension_deductions)):
            if value is not None:
                _text(corrections, tag, format_money(value))

        return root

    def generate_eyu(self, data: Union[EYUInput, dict]) -> str:
        """Earlier Year Update; only the corrections supplied are emitted."""
        return render(self.build_eyu(data))

    # Validation

    def validate_xml(self, xml: str) -> ValidationResult:
        """Shallow structural checks only, not schema validation."""
        errors: List[str] = []

        if '<?xml' not in xml:
            errors.append('Missing XML declaration')

        if '<FullPaymentSubmission>' in xml and '<Employee>' not in xml:
            errors.append('FPS must contain at least one Employee element')

        return ValidationResult(valid=not errors, errors=errors)
