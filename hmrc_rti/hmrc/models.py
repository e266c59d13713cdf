"""
Data model for the HMRC RTI core.

Inputs arrive either as keyword-constructed dataclasses or as camelCase
dictionaries from upstream JSON (``from_dict``). Nothing here is persisted.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Union

from hmrc_rti.hmrc.utils import normalize_environment

Money = Union[int, float, str, Decimal]


def _pick(data: Dict[str, Any], *keys, default=None):
    """First present key from a dict, tolerating camelCase and snake_case."""
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class OAuthToken:
    """Token returned by the HMRC token endpoint"""
    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = 'Bearer'
    expires_in: int = 0
    scope: str = ''
    issued_at: datetime = field(default_factory=_utcnow)

    @property
    def expires_at(self) -> datetime:
        return self.issued_at + timedelta(seconds=self.expires_in)

    @classmethod
    def from_response(cls, data: Dict[str, Any], issued_at: Optional[datetime] = None) -> 'OAuthToken':
        return cls(
            access_token=data['access_token'],
            refresh_token=data.get('refresh_token'),
            token_type=data.get('token_type') or 'Bearer',
            expires_in=int(data.get('expires_in') or 0),
            scope=data.get('scope') or '',
            issued_at=issued_at or _utcnow(),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'access_token': self.access_token,
            'refresh_token': self.refresh_token,
            'token_type': self.token_type,
            'expires_in': self.expires_in,
            'scope': self.scope,
            'issued_at': self.issued_at.isoformat(),
            'expires_at': self.expires_at.isoformat(),
        }


@dataclass
class CredentialSet:
    """Caller-owned OAuth credentials for one employer"""
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    refresh_token: Optional[str] = None
    access_token: Optional[str] = None
    token_expiry: Optional[Union[datetime, int, float, str]] = None
    environment: str = 'sandbox'

    def __post_init__(self):
        self.environment = normalize_environment(self.environment)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CredentialSet':
        return cls(
            client_id=_pick(data, 'clientId', 'client_id'),
            client_secret=_pick(data, 'clientSecret', 'client_secret'),
            refresh_token=_pick(data, 'refreshToken', 'refresh_token'),
            access_token=_pick(data, 'accessToken', 'access_token'),
            token_expiry=_pick(data, 'tokenExpiry', 'token_expiry'),
            environment=_pick(data, 'environment', default='sandbox'),
        )


@dataclass
class ScreenInfo:
    width: int = 1920
    height: int = 1080
    scaling_factor: float = 1
    colour_depth: int = 24


@dataclass
class WindowSize:
    width: int = 1920
    height: int = 1080


@dataclass
class ClientEnvironment:
    """Device/session facts the fraud prevention headers are built from"""
    user_agent: Optional[str] = None
    screen: Optional[ScreenInfo] = None
    window: Optional[WindowSize] = None
    plugins: Optional[List[str]] = None
    do_not_track: Optional[bool] = None
    utc_offset: Optional[timedelta] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ClientEnvironment':
        screen = _pick(data, 'screen', 'screens')
        window = _pick(data, 'window', 'windowSize', 'window_size')
        offset_minutes = _pick(data, 'utcOffsetMinutes', 'utc_offset_minutes')
        return cls(
            user_agent=_pick(data, 'userAgent', 'user_agent'),
            screen=ScreenInfo(
                width=_pick(screen, 'width', default=1920),
                height=_pick(screen, 'height', default=1080),
                scaling_factor=_pick(screen, 'scalingFactor', 'scaling_factor', default=1),
                colour_depth=_pick(screen, 'colourDepth', 'colour_depth', default=24),
            ) if screen else None,
            window=WindowSize(
                width=_pick(window, 'width', default=1920),
                height=_pick(window, 'height', default=1080),
            ) if window else None,
            plugins=_pick(data, 'plugins'),
            do_not_track=_pick(data, 'doNotTrack', 'do_not_track'),
            utc_offset=timedelta(minutes=offset_minutes) if offset_minutes is not None else None,
        )


@dataclass
class Employee:
    id: str
    national_insurance_number: Optional[str] = None
    tax_code: Optional[str] = None
    tax_code_basis: Optional[str] = None
    ni_category: Optional[str] = None
    status: Optional[str] = None
    employment_type: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Employee':
        return cls(
            id=str(_pick(data, 'id', default='')),
            national_insurance_number=_pick(data, 'nationalInsuranceNumber', 'national_insurance_number'),
            tax_code=_pick(data, 'taxCode', 'tax_code'),
            tax_code_basis=_pick(data, 'taxCodeBasis', 'tax_code_basis'),
            ni_category=_pick(data, 'niCategory', 'ni_category'),
            status=_pick(data, 'status'),
            employment_type=_pick(data, 'employmentType', 'employment_type'),
        )


@dataclass
class YTDData:
    gross_pay: Money = 0
    taxable_pay: Money = 0
    tax_paid: Money = 0
    employee_ni_paid: Money = 0
    employer_ni_paid: Money = 0
    student_loan_paid: Optional[Money] = None
    postgraduate_loan_paid: Optional[Money] = None
    employee_pension: Money = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'YTDData':
        return cls(
            gross_pay=_pick(data, 'grossPayYTD', 'gross_pay', default=0),
            taxable_pay=_pick(data, 'taxablePayYTD', 'taxable_pay', default=0),
            tax_paid=_pick(data, 'taxPaidYTD', 'tax_paid', default=0),
            employee_ni_paid=_pick(data, 'employeeNIPaidYTD', 'employee_ni_paid', default=0),
            employer_ni_paid=_pick(data, 'employerNIPaidYTD', 'employer_ni_paid', default=0),
            student_loan_paid=_pick(data, 'studentLoanPaidYTD', 'student_loan_paid'),
            postgraduate_loan_paid=_pick(data, 'postgraduateLoanPaidYTD', 'postgraduate_loan_paid'),
            employee_pension=_pick(data, 'employeePensionYTD', 'employee_pension', default=0),
        )


@dataclass
class PayrollRecord:
    """One employee's approved payroll for a period, with its employee attached"""
    id: str
    employee_id: str
    tax_period: int
    gross_pay: Money
    taxable_gross_pay: Money
    tax_deductions: Money
    employee_ni_deductions: Money
    employer_ni_contributions: Money
    ytd_data: YTDData = field(default_factory=YTDData)
    tax_code: Optional[str] = None
    tax_code_basis: Optional[str] = None
    ni_category: Optional[str] = None
    student_loan_deductions: Optional[Money] = None
    postgraduate_loan_deductions: Optional[Money] = None
    employee_pension_deductions: Optional[Money] = None
    statutory_sick_pay: Optional[Money] = None
    statutory_maternity_pay: Optional[Money] = None
    statutory_paternity_pay: Optional[Money] = None
    tax_year: Optional[str] = None
    period_type: Optional[str] = None
    employee: Optional[Employee] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PayrollRecord':
        employee = data.get('employee')
        if isinstance(employee, dict):
            employee = Employee.from_dict(employee)
        ytd = _pick(data, 'ytdData', 'ytd_data', default={})
        return cls(
            id=str(_pick(data, 'id', default='')),
            employee_id=str(_pick(data, 'employeeId', 'employee_id', default='')),
            tax_period=_pick(data, 'taxPeriod', 'tax_period', default=0),
            gross_pay=_pick(data, 'grossPay', 'gross_pay', default=0),
            taxable_gross_pay=_pick(data, 'taxableGrossPay', 'taxable_gross_pay', default=0),
            tax_deductions=_pick(data, 'taxDeductions', 'tax_deductions', default=0),
            employee_ni_deductions=_pick(data, 'employeeNIDeductions', 'employee_ni_deductions', default=0),
            employer_ni_contributions=_pick(data, 'employerNIContributions', 'employer_ni_contributions', default=0),
            ytd_data=ytd if isinstance(ytd, YTDData) else YTDData.from_dict(ytd),
            tax_code=_pick(data, 'taxCode', 'tax_code'),
            tax_code_basis=_pick(data, 'taxCodeBasis', 'tax_code_basis'),
            ni_category=_pick(data, 'niCategory', 'ni_category'),
            student_loan_deductions=_pick(data, 'studentLoanDeductions', 'student_loan_deductions'),
            postgraduate_loan_deductions=_pick(data, 'postgraduateLoanDeductions', 'postgraduate_loan_deductions'),
            employee_pension_deductions=_pick(data, 'employeePensionDeductions', 'employee_pension_deductions'),
            statutory_sick_pay=_pick(data, 'statutorySickPay', 'statutory_sick_pay'),
            statutory_maternity_pay=_pick(data, 'statutoryMaternityPay', 'statutory_maternity_pay'),
            statutory_paternity_pay=_pick(data, 'statutoryPaternityPay', 'statutory_paternity_pay'),
            tax_year=_pick(data, 'taxYear', 'tax_year'),
            period_type=_pick(data, 'periodType', 'period_type'),
            employee=employee,
        )


def _employer_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'employer_paye_reference': _pick(data, 'employerPAYEReference', 'employer_paye_reference', default=''),
        'accounts_office_reference': _pick(data, 'accountsOfficeReference', 'accounts_office_reference', default=''),
        'tax_year': _pick(data, 'taxYear', 'tax_year', default=''),
        'submission_date': _pick(data, 'submissionDate', 'submission_date'),
    }


@dataclass
class FPSInput:
    payroll_records: List[PayrollRecord]
    employer_paye_reference: str
    accounts_office_reference: str
    tax_year: str
    period_number: int
    period_type: str
    payment_date: Any
    submission_date: Any

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FPSInput':
        records = [
            record if isinstance(record, PayrollRecord) else PayrollRecord.from_dict(record)
            for record in _pick(data, 'payrollRecords', 'payroll_records', default=[])
        ]
        return cls(
            payroll_records=records,
            period_number=_pick(data, 'periodNumber', 'period_number', default=0),
            period_type=_pick(data, 'periodType', 'period_type', default='monthly'),
            payment_date=_pick(data, 'paymentDate', 'payment_date'),
            **_employer_fields(data),
        )


@dataclass
class StatutoryPayRecovery:
    smp: Optional[Money] = None
    spp: Optional[Money] = None
    sap: Optional[Money] = None
    shpp: Optional[Money] = None
    aspp: Optional[Money] = None


@dataclass
class EmploymentAllowance:
    claimed: bool = False
    amount: Money = 0


@dataclass
class ApprenticeshipLevy:
    amount: Money = 0
    allowance: Money = 0


@dataclass
class EPSInput:
    employer_paye_reference: str
    accounts_office_reference: str
    tax_year: str
    period_number: int
    period_type: str
    submission_date: Any
    no_payment_for_period: bool = False
    statutory_pay_recovery: Optional[StatutoryPayRecovery] = None
    employment_allowance: Optional[EmploymentAllowance] = None
    cis_deductions: Optional[Money] = None
    apprenticeship_levy: Optional[ApprenticeshipLevy] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EPSInput':
        recovery = _pick(data, 'statutoryPayRecovery', 'statutory_pay_recovery')
        allowance = _pick(data, 'employmentAllowance', 'employment_allowance')
        levy = _pick(data, 'apprenticeshipLevy', 'apprenticeship_levy')
        return cls(
            period_number=_pick(data, 'periodNumber', 'period_number', default=0),
            period_type=_pick(data, 'periodType', 'period_type', default='monthly'),
            no_payment_for_period=bool(_pick(data, 'noPaymentForPeriod', 'no_payment_for_period', default=False)),
            statutory_pay_recovery=StatutoryPayRecovery(**recovery) if recovery else None,
            employment_allowance=EmploymentAllowance(**allowance) if allowance else None,
            cis_deductions=_pick(data, 'cisDeductions', 'cis_deductions'),
            apprenticeship_levy=ApprenticeshipLevy(**levy) if levy else None,
            **_employer_fields(data),
        )


@dataclass
class Corrections:
    gross_pay: Optional[Money] = None
    tax_deductions: Optional[Money] = None
    ni_deductions: Optional[Money] = None
    student_loan_deductions: Optional[Money] = None
    pension_deductions: Optional[Money] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Corrections':
        return cls(
            gross_pay=_pick(data, 'grossPay', 'gross_pay'),
            tax_deductions=_pick(data, 'taxDeductions', 'tax_deductions'),
            ni_deductions=_pick(data, 'niDeductions', 'ni_deductions'),
            student_loan_deductions=_pick(data, 'studentLoanDeductions', 'student_loan_deductions'),
            pension_deductions=_pick(data, 'pensionDeductions', 'pension_deductions'),
        )


@dataclass
class EYUInput:
    employer_paye_reference: str
    accounts_office_reference: str
    tax_year: str
    submission_date: Any
    employee_id: str
    original_payroll_id: str
    reason: str
    corrections: Corrections = field(default_factory=Corrections)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EYUInput':
        corrections = _pick(data, 'corrections', default={})
        return cls(
            employee_id=str(_pick(data, 'employeeId', 'employee_id', default='')),
            original_payroll_id=str(_pick(data, 'originalPayrollId', 'original_payroll_id', default='')),
            reason=_pick(data, 'reason', default=''),
            corrections=corrections if isinstance(corrections, Corrections) else Corrections.from_dict(corrections),
            **_employer_fields(data),
        )


@dataclass
class ValidationResult:
    valid: bool
    errors: List[str] = field(default_factory=list)


TokenCallback = Callable[[OAuthToken], None]
