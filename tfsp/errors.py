"""
errors.py: the small error taxonomy shared by the store, the gate and the
dispatcher.

Every per-command failure is a TfspError subclass. The dispatcher catches the
base class and turns it into a single `ERROR <message>` line, so the message
passed to the constructor is exactly what the client will read.
"""


class TfspError(Exception):
    """Base class for recoverable protocol errors."""


class AuthenticationFailure(TfspError):
    """Bad credentials or malformed AUTH line. Connection stays open."""


class PermissionDenied(TfspError):
    """Role check failed for a privileged command."""


class NotFound(TfspError):
    """Requested file or directory does not exist."""


class PathTraversal(TfspError):
    """Resolved path escapes the store root."""


class IOFailure(TfspError):
    """Underlying read/write/delete/stat failed."""


class CapacityExceeded(TfspError):
    """Admission control refused a new connection."""


class PayloadTooLarge(TfspError):
    """Upload buffer grew past the configured cap before CONTENT_END."""


class InvalidTransition(TfspError):
    """Session state machine refused a transition."""
