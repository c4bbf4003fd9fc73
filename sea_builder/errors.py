"""Exception hierarchy for sea-builder.

Errors fall into three groups:

- :class:`UsageError` and :class:`PayloadBuildError` abort the whole
  invocation.
- :class:`TargetBuildError` subclasses are caught at the per-target boundary
  and only cause that target to be skipped.
"""


class SeaBuilderError(RuntimeError):
    """Base class for all sea-builder errors."""


class UsageError(SeaBuilderError):
    """Raised for invalid command line input."""


class PayloadBuildError(SeaBuilderError):
    """Raised when the application blob cannot be produced."""


class TargetBuildError(SeaBuilderError):
    """Raised when a single target cannot be assembled."""


class DownloadError(TargetBuildError):
    """Raised when a runtime archive cannot be fetched or decoded."""


class MissingExecutableError(TargetBuildError):
    """Raised when a runtime archive lacks the expected executable."""


class InjectionError(TargetBuildError):
    """Raised when the payload cannot be injected into a runtime binary."""


class SigningError(TargetBuildError):
    """Raised when stripping or applying a code signature fails."""
