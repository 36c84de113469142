"""
This module implements custom exceptions
"""

# Standard
from enum import Enum
from typing import Any

## Base Error ##################################################################


class OperatorError(Exception):
    """Base class for all odoo operator exceptions"""

    def __init__(self, message: str, is_fatal_error: bool):
        """Construct with a flag indicating whether this is a fatal error. This
        will be a static property of all children.
        """
        super().__init__(message)
        self._is_fatal_error = is_fatal_error

    @property
    def is_fatal_error(self):
        """Property indicating whether or not this error should halt
        reconciliation of the object until its spec changes
        """
        return self._is_fatal_error


## Fatal Errors ################################################################


class OperatorFatalError(OperatorError):
    """An OperatorFatalError is one that will not resolve by retrying the same
    reconciliation
    """

    def __init__(self, message: str = ""):
        super().__init__(message=message, is_fatal_error=True)


class ConfigError(OperatorFatalError):
    """Exception caused by invalid user-provided configuration"""


class UnknownKeyError(ConfigError):
    """A configuration override names a key that is not in the property spec"""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Unknown configuration key [{key}]")


class TypeMismatchError(ConfigError):
    """A configuration value could not be parsed as the declared type"""

    def __init__(self, key: str, expected_type: str):
        self.key = key
        self.expected_type = expected_type
        super().__init__(
            f"Configuration key [{key}] must be of type [{expected_type}]"
        )


class OutOfRangeError(ConfigError):
    """A configuration value parsed correctly but violates its rule"""

    def __init__(self, key: str, value: Any, rule: str):
        self.key = key
        self.value = value
        self.rule = rule
        super().__init__(
            f"Configuration key [{key}] has value [{value}] which violates {rule}"
        )


class PropertySpecError(OperatorFatalError):
    """Exception caused by a missing or malformed property spec document"""


class RenderError(OperatorFatalError):
    """Exception raised while rendering manifests"""


class InvariantError(RenderError):
    """An internal invariant was violated. This always indicates a bug in the
    operator rather than a user error
    """


## Expected Errors #############################################################


class OperatorExpectedError(OperatorError):
    """An OperatorExpectedError is one that indicates an expected failure
    condition that should resolve in a subsequent attempt
    """

    def __init__(self, message: str = ""):
        super().__init__(message=message, is_fatal_error=False)


class PlatformErrorReason(Enum):
    """The classes of failure when talking to the cluster"""

    CONFLICT = "Conflict"
    TIMEOUT = "Timeout"
    THROTTLED = "Throttled"
    UNAVAILABLE = "Unavailable"
    NOT_FOUND = "NotFound"
    FORBIDDEN = "Forbidden"
    INVALID = "Invalid"


TRANSIENT_PLATFORM_ERRORS = [
    PlatformErrorReason.CONFLICT,
    PlatformErrorReason.TIMEOUT,
    PlatformErrorReason.THROTTLED,
    PlatformErrorReason.UNAVAILABLE,
]


class PlatformError(OperatorExpectedError):
    """Exception caused when an operation against the cluster fails"""

    def __init__(
        self,
        message: str = "",
        reason: PlatformErrorReason = PlatformErrorReason.UNAVAILABLE,
    ):
        self.reason = reason
        super().__init__(message)

    @property
    def is_transient(self) -> bool:
        """Whether retrying the same operation may succeed"""
        return self.reason in TRANSIENT_PLATFORM_ERRORS


## Assertions ##################################################################


def assert_config(condition: bool, message: str = ""):
    """Replacement for assert() which will throw a ConfigError. This should be
    used when parsing the user-provided resource.
    """
    if not condition:
        raise ConfigError(message)


def assert_invariant(condition: bool, message: str = ""):
    """Replacement for assert() which will throw an InvariantError. This should
    be used for conditions that earlier stages guarantee.
    """
    if not condition:
        raise InvariantError(message)


def assert_property_spec(condition: bool, message: str = ""):
    """Replacement for assert() which will throw a PropertySpecError"""
    if not condition:
        raise PropertySpecError(message)
