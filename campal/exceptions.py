"""
Custom Exceptions for the CAMPAL Registration Application

This module defines custom exception classes that provide specific
error handling for the failure scenarios of registration, payment
and check-in operations.
"""


class CampalException(Exception):
    """
    Base exception for the CAMPAL application

    All custom exceptions in the system inherit from this base class
    so the web layer can handle them uniformly.
    """

    status_code = 500

    def __init__(self, message: str, error_code: str = None):
        """
        Initialize CAMPAL exception

        Args:
            message: Human-readable error message
            error_code: Optional error code for programmatic handling
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code

    def __str__(self) -> str:
        """String representation of the exception"""
        if self.error_code:
            return f"[{self.error_code}] {self.message}"
        return self.message


class RegistrationNotFoundException(CampalException):
    """
    Raised when a registration row does not exist

    Args:
        registration_id: The ID that was looked up
    """

    status_code = 404

    def __init__(self, registration_id: str):
        message = f"Inscrição '{registration_id}' não encontrada"
        super().__init__(message, "REGISTRATION_NOT_FOUND")
        self.registration_id = registration_id


class CheckinTokenNotFoundException(CampalException):
    """Raised when a scanned QR token matches no registration"""

    status_code = 404

    def __init__(self, token: str):
        message = "QR Code inválido ou expirado"
        super().__init__(message, "CHECKIN_TOKEN_NOT_FOUND")
        self.token = token


class AlreadyCheckedInException(CampalException):
    """
    Raised when a participant is scanned or confirmed a second time

    The earlier check-in timestamp is kept so the scanner page can
    tell the organizer when the participant came in.
    """

    status_code = 409

    def __init__(self, registration_id: str, checkin_datetime: str = None):
        message = "Check-in já realizado"
        if checkin_datetime:
            message = f"Participante já realizou check-in em {checkin_datetime}"
        super().__init__(message, "ALREADY_CHECKED_IN")
        self.registration_id = registration_id
        self.checkin_datetime = checkin_datetime


class PaymentException(CampalException):
    """
    Raised when a payment status change is not allowed

    Args:
        registration_id: ID of the registration involved
        operation: The payment operation that failed ('confirm', 'revert')
        reason: Reason for the failure
    """

    status_code = 409

    def __init__(self, registration_id: str, operation: str, reason: str):
        message = f"Pagamento ({operation}) recusado para inscrição '{registration_id}': {reason}"
        super().__init__(message, "PAYMENT_ERROR")
        self.registration_id = registration_id
        self.operation = operation
        self.reason = reason


class CheckinException(CampalException):
    """Raised when a check-in change is not allowed"""

    status_code = 409

    def __init__(self, registration_id: str, operation: str, reason: str):
        message = f"Check-in ({operation}) recusado para inscrição '{registration_id}': {reason}"
        super().__init__(message, "CHECKIN_ERROR")
        self.registration_id = registration_id
        self.operation = operation
        self.reason = reason


class DataValidationException(CampalException):
    """
    Raised when form data fails validation

    Args:
        field_name: Name of the first field that failed validation
        validation_error: Description of the validation error
        errors: Optional mapping of every failing field to its message
    """

    status_code = 400

    def __init__(self, field_name: str, validation_error: str, errors: dict = None):
        message = f"Validation error in field '{field_name}': {validation_error}"
        super().__init__(message, "VALIDATION_ERROR")
        self.field_name = field_name
        self.validation_error = validation_error
        self.errors = errors or {field_name: validation_error}


class DataAccessException(CampalException):
    """
    Raised when a call to the hosted database fails

    Args:
        operation: The operation that failed (e.g., 'select', 'insert')
        details: Detailed error information
    """

    def __init__(self, operation: str, details: str):
        message = f"Data access error during {operation}: {details}"
        super().__init__(message, "DATA_ACCESS_ERROR")
        self.operation = operation
        self.details = details


class PasswordConfirmationException(CampalException):
    """Raised when the organizer password does not match"""

    status_code = 403

    def __init__(self):
        super().__init__("Senha incorreta", "PASSWORD_MISMATCH")
