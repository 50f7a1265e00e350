# src/fs_gateway/utils/errors.py
"""
Custom exception classes for the FreeSWITCH gateway.
Provides specific error types for each failure scenario of the control connection.
Every error carries a stable ``code`` that is surfaced in logs and API responses.
"""

class GatewayError(Exception):
    """Base exception class for all gateway errors."""
    code = "gateway-error"

class ConfigurationError(GatewayError):
    """Raised when there is an error in the configuration."""
    code = "configuration-error"

class NotConnectedError(GatewayError):
    """Raised when a command is attempted while the switch connection is not ready."""
    code = "not-connected"

    def __init__(self, message: str = "FreeSWITCH is not connected"):
        super().__init__(message)

class AuthFailedError(GatewayError):
    """Raised when the switch rejects the configured password. Never retried."""
    code = "auth-failed"

class CommandTimeoutError(GatewayError):
    """Raised when a command or background job exceeds its deadline."""
    code = "command-timeout"

class ConnectionLostError(GatewayError):
    """Raised for every outstanding command when the connection drops mid-flight."""
    code = "connection-lost"

    def __init__(self, message: str = "Connection to FreeSWITCH lost"):
        super().__init__(message)

class MalformedFrameError(GatewayError):
    """Raised by the frame codec for a frame that cannot be decoded."""
    code = "malformed-frame"

class ProtocolError(GatewayError):
    """Raised when a frame arrives that is unexpected in the current state."""
    code = "protocol-error"

class CommandError(GatewayError):
    """Raised when the switch answers a command with -ERR."""
    code = "command-error"

class ResultParseError(GatewayError):
    """Raised when command output expected to be JSON cannot be parsed."""
    code = "result-parse-error"

class InvalidParameterError(GatewayError):
    """Raised when a request parameter is missing or unsafe to put into a command."""
    code = "invalid-parameter"
