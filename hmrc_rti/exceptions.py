"""
Custom exceptions for the HMRC RTI core
Every failure this package raises derives from RTIError
"""

from typing import Optional, Dict, Any


class RTIError(Exception):
    """Base exception for all RTI core errors"""

    def __init__(self, message: str, error_code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        payload = {'error': self.message, 'code': self.error_code}
        if self.details:
            payload['details'] = self.details
        return payload


class AuthError(RTIError):
    """Raised when the HMRC token endpoint returns a non-success response"""

    def __init__(self, message: str, error_code: Optional[str] = None, status_code: Optional[int] = None,
                 errors: Optional[list] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, error_code=error_code, details=details)
        self.status_code = status_code
        self.errors = errors or []


class ConfigurationError(RTIError):
    """Raised when required credentials or settings are missing"""

    def __init__(self, message: str, missing_fields: Optional[list] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.missing_fields = list(missing_fields or [])


class MissingDataError(RTIError):
    """Raised when a payroll record lacks data required for generation"""

    def __init__(self, message: str, payroll_id: Optional[str] = None, index: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.payroll_id = payroll_id
        self.index = index


class StructuralValidationError(RTIError):
    """Raised when a generated document fails the structural checks"""

    def __init__(self, message: str, errors: Optional[list] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.errors = list(errors or [])


class TokenStorageError(RTIError):
    """Raised when encrypted token storage is misconfigured or unreadable"""
    pass


class ValidationWarning(UserWarning):
    """Emitted for data that is suspicious but does not block generation"""
    pass
