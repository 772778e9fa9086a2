# adminpanel/errors.py


class OTPError(Exception):
    """Base class for errors reported back to the caller as a client error."""

    code = "OTP_ERROR"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self):
        return {"success": False, "error": self.message, "code": self.code}


class InvalidSecret(OTPError):
    code = "INVALID_SECRET"

    def __init__(self, message: str = "Secret must be Base32 (A-Z, 2-7, optional '=' padding)"):
        super().__init__(message)


class InvalidEncoding(OTPError, ValueError):
    code = "INVALID_ENCODING"

    def __init__(self, char: str):
        self.char = char
        super().__init__(f"Invalid Base32 character: {char!r}")


class TotpComputationError(OTPError):
    code = "TOTP_COMPUTATION_ERROR"


class RequestValidationError(OTPError):
    code = "VALIDATION_ERROR"

    def __init__(self, details):
        self.details = list(details)
        super().__init__("Validation failed")

    def to_dict(self):
        payload = super().to_dict()
        payload["details"] = self.details
        return payload


class InvalidParameters(OTPError, ValueError):
    code = "INVALID_PARAMETERS"
