"""Error taxonomy and exit codes for stack-bootstrap.

Every failure surfaces as a BootstrapError carrying a human-readable message
and a stable exit code, so calling automation can tell failure classes apart
without parsing output.
"""

# Exit codes
EXIT_SUCCESS = 0
EXIT_USAGE = 1
EXIT_USER_DECLINED = 2
EXIT_MISSING_VARIABLE = 3
EXIT_MISSING_STUNNEL_INPUT = 4
EXIT_MISSING_DDNS_INPUT = 5
EXIT_MISSING_ADDRESS = 6
EXIT_INVALID_SOURCE = 10
EXIT_FETCH_FAILED = 11
EXIT_AUTH_FAILED = 12
EXIT_MISSING_PATH = 13
EXIT_INVALID_ARTIFACT = 20
EXIT_COMPOSE_INVALID = 30
EXIT_BUILD_FAILED = 31
EXIT_START_FAILED = 32
EXIT_MISSING_TOOL = 127


class BootstrapError(Exception):
    """Base exception for all provisioning failures."""

    exit_code = EXIT_USAGE

    def __init__(self, message: str, exit_code: int | None = None):
        self.message = message
        if exit_code is not None:
            self.exit_code = exit_code
        super().__init__(message)


class PreconditionError(BootstrapError):
    """A required variable, tool, or profile input is absent.

    Always raised before any network or destructive action.
    """

    exit_code = EXIT_MISSING_VARIABLE


class InvalidSourceError(PreconditionError):
    """Source spec is malformed or of an unsupported kind."""

    exit_code = EXIT_INVALID_SOURCE


class TransportError(BootstrapError):
    """A fetch failed, timed out, or returned an empty body."""

    exit_code = EXIT_FETCH_FAILED


class AuthError(TransportError):
    """The remote rejected the credentials (or their absence)."""

    exit_code = EXIT_AUTH_FAILED


class MissingPathError(TransportError):
    """The requested path is absent or empty in the fetched ref."""

    exit_code = EXIT_MISSING_PATH


class ValidationError(BootstrapError):
    """A retrieved artifact failed a structural check."""

    exit_code = EXIT_INVALID_ARTIFACT


class ConflictError(BootstrapError):
    """Existing resources collide with desired state and cleanup was declined."""

    exit_code = EXIT_USER_DECLINED


class ExternalToolError(BootstrapError):
    """An orchestrated tool (compose build/up/config) reported failure."""

    exit_code = EXIT_START_FAILED

    def __init__(self, message: str, exit_code: int | None = None, output: str = ''):
        self.output = output
        super().__init__(message, exit_code)
