"""Exceptions related to mesh-operator."""

from collections.abc import Iterable

__all__ = [
    "MeshOperatorException",
    "InputException",
    "CommandException",
    "KubectlException",
    "ObjectNotFoundError",
    "ResourceKindNotFoundError",
    "OwnerNotFoundError",
    "VersionError",
    "PreconditionFailedError",
    "CustomizedConfigError",
    "AggregateError",
    "ErrorList",
]


class MeshOperatorException(Exception):
    """Generic base exception used for this library."""


class InputException(MeshOperatorException):
    """Raised when the input manifests or values are not formatted as expected."""


class CommandException(MeshOperatorException):
    """Raised when there is a failure running a subcommand."""


class KubectlException(CommandException):
    """Raised when there is a failure running a kubectl command."""


class ObjectNotFoundError(MeshOperatorException):
    """Raised when an object is not found in the cluster."""


class ResourceKindNotFoundError(ObjectNotFoundError):
    """Raised when the cluster does not serve the requested kind at all."""


class OwnerNotFoundError(MeshOperatorException):
    """Raised when the custom resource owning an installation cannot be located."""


class VersionError(MeshOperatorException):
    """Raised when a version or version constraint cannot be parsed."""


class PreconditionFailedError(MeshOperatorException):
    """Raised when an operation is blocked and requires operator intervention.

    These are not transient and should not be retried automatically.
    """


class CustomizedConfigError(PreconditionFailedError):
    """Raised when in-cluster configuration differs from the known defaults."""

    def __init__(self, kind: str, name: str, diff: str) -> None:
        super().__init__(
            f"customized config exists for kind: {kind}, name: {name}, diff is: "
            f"{diff}. please check existing mixer config first before upgrade"
        )
        self.kind = kind
        self.name = name
        self.diff = diff


class AggregateError(MeshOperatorException):
    """Raised to report a list of errors as a single failure."""

    def __init__(self, errors: list[Exception]) -> None:
        super().__init__(", ".join(str(err) for err in errors))
        self.errors = errors


class ErrorList(list[Exception]):
    """A growable collection of errors from a partially failed operation.

    An empty list means full success.
    """

    def add(self, err: Exception | Iterable[Exception] | None) -> "ErrorList":
        """Append an error, or every error in a list of errors, ignoring None."""
        if err is None:
            return self
        if isinstance(err, Exception):
            self.append(err)
        else:
            self.extend(err)
        return self

    def to_exception(self) -> AggregateError | None:
        """Return a single exception for all errors, or None when empty."""
        if not self:
            return None
        return AggregateError(list(self))

    def __str__(self) -> str:
        return ", ".join(str(err) for err in self)
