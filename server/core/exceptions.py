# core/exceptions.py

"""
Custom exceptions for the Healthbot aggregator
Upstream failures are absorbed at the adapter boundary; contract errors propagate
"""

class HealthbotException(Exception):
    """Base exception for the Healthbot aggregator"""
    def __init__(self, message: str, error_code: str = None):
        self.message = message
        self.error_code = error_code
        super().__init__(self.message)

class ExternalAPIError(HealthbotException):
    """External API communication errors (timeouts, non-2xx, connection)"""
    def __init__(self, message: str, api_name: str = None, status_code: int = None):
        self.api_name = api_name
        self.status_code = status_code
        super().__init__(message, "EXTERNAL_API_ERROR")

class ResponseParseError(HealthbotException):
    """Upstream answered 2xx but the payload could not be understood"""
    def __init__(self, message: str, api_name: str = None):
        self.api_name = api_name
        super().__init__(message, "RESPONSE_PARSE_ERROR")

class ValidationError(HealthbotException):
    """Input validation errors (malformed profile, bad query)"""
    def __init__(self, message: str):
        super().__init__(message, "VALIDATION_ERROR")

class ConfigurationError(HealthbotException):
    """Configuration and setup errors"""
    def __init__(self, message: str):
        super().__init__(message, "CONFIGURATION_ERROR")

class SessionNotFoundError(HealthbotException):
    """Conversation session lookup errors"""
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session not found: {session_id}", "SESSION_NOT_FOUND")
