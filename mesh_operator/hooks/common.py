"""Version gated hooks run around an upgrade or apply of the control plane.

A hook inspects or changes the cluster and is only needed when moving between
particular versions. Hooks are grouped in `HookVersionMapping` entries, each
with a constraint on the source version and the target version of the
operation, and an entry's hooks are run only when both versions satisfy
its constraints.

Versions are semantic versions, where minor and patch may be omitted e.g.
`1.3` or `1.7.0-alpha.e5d3f2c`. A constraint is a comma separated list of
clauses that must all hold, each an operator (`=`, `!=`, `>`, `<`, `>=`,
`<=` or the pessimistic `~>`) and a version e.g. `>=1.4, <1.6`.

A prerelease version only satisfies a clause whose version is a prerelease
of the same release, so `1.5.0-beta.1` does not satisfy `>=1.3` while it
does satisfy `>=1.5.0-alpha`.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum
import logging
import re
from typing import ClassVar

import semver

from mesh_operator.cluster.client import ClusterClient
from mesh_operator.exceptions import ErrorList, MeshOperatorException, VersionError
from mesh_operator.manifest import IstioOperator, K8sObject

__all__ = [
    "Hook",
    "HookKind",
    "HookCommonParams",
    "HookVersionMapping",
    "run_hooks",
]

_LOGGER = logging.getLogger(__name__)


class HookKind(StrEnum):
    """The phase of an operation in which hooks run."""

    PRE_UPGRADE = "pre-upgrade"
    POST_UPGRADE = "post-upgrade"
    APPLY = "apply"


@dataclass(frozen=True)
class HookCommonParams:
    """Parameters shared by every hook run for a single operation."""

    source_ver: str
    """The version being upgraded from."""

    target_ver: str
    """The version being upgraded to."""

    default_telemetry_manifest: dict[tuple[str, str], K8sObject] = field(
        default_factory=dict
    )
    """Default telemetry objects of the source version, keyed by (kind, name)."""

    source_operator: IstioOperator | None = None
    """The installation spec being upgraded from."""

    target_operator: IstioOperator | None = None
    """The installation spec being upgraded to."""


class Hook(ABC):
    """A check or change made to the cluster during an operation.

    Hooks report problems through the returned error list. A hook should only
    be used for version specific actions.
    """

    name: ClassVar[str]
    """Name of the hook shown in logs."""

    @abstractmethod
    async def run(self, client: ClusterClient, params: HookCommonParams) -> ErrorList:
        """Run the hook against the cluster."""

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class HookVersionMapping:
    """Hooks to run when the source and target versions match the constraints."""

    source_version_constraint: str
    target_version_constraint: str
    hooks: tuple[Hook, ...]

    @property
    def hook_names(self) -> str:
        return ", ".join(hook.name for hook in self.hooks)


_CLAUSE_RE = re.compile(r"^\s*(~>|>=|<=|!=|==|=|>|<)?\s*v?(\S+)\s*$")

_COMPARISONS: dict[str, Callable[[int], bool]] = {
    "=": lambda cmp: cmp == 0,
    "==": lambda cmp: cmp == 0,
    "!=": lambda cmp: cmp != 0,
    ">": lambda cmp: cmp > 0,
    "<": lambda cmp: cmp < 0,
    ">=": lambda cmp: cmp >= 0,
    "<=": lambda cmp: cmp <= 0,
}


@dataclass(frozen=True)
class _Clause:
    """A single operator and version of a constraint."""

    operator: str
    version: semver.Version
    segments: int
    """Number of release segments written in the clause, used by `~>`."""


def _parse_version(ver: str) -> semver.Version:
    try:
        return semver.Version.parse(
            ver.removeprefix("v"), optional_minor_and_patch=True
        )
    except ValueError as err:
        raise VersionError(f"Invalid version '{ver}': {err}") from err


def _parse_constraint(constraint: str) -> list[_Clause]:
    clauses = []
    for part in constraint.split(","):
        if not (match := _CLAUSE_RE.match(part)):
            raise VersionError(f"Invalid version constraint '{constraint}'")
        operator, ver = match.groups()
        try:
            version = semver.Version.parse(ver, optional_minor_and_patch=True)
        except ValueError as err:
            raise VersionError(
                f"Invalid version constraint '{constraint}': {err}"
            ) from err
        release = re.split(r"[-+]", ver, maxsplit=1)[0]
        segments = min(release.count(".") + 1, 3)
        clauses.append(_Clause(operator or "=", version, segments))
    return clauses


def _prerelease_allowed(ver: semver.Version, clause: _Clause) -> bool:
    if not ver.prerelease:
        return True
    if not clause.version.prerelease:
        return False
    return ver.finalize_version() == clause.version.finalize_version()


def _satisfies(ver: semver.Version, clause: _Clause) -> bool:
    if not _prerelease_allowed(ver, clause):
        return False
    cmp = ver.compare(clause.version)
    if clause.operator != "~>":
        return _COMPARISONS[clause.operator](cmp)
    if cmp < 0:
        return False
    # All but the last written segment must match, e.g. ~>1.2 is <2.0
    release = (ver.major, ver.minor, ver.patch)
    bound = (clause.version.major, clause.version.minor, clause.version.patch)
    return release[: clause.segments - 1] == bound[: clause.segments - 1]


def _check_constraint(ver: semver.Version, constraint: str) -> bool:
    """Report whether the version satisfies every clause of the constraint."""
    return all(_satisfies(ver, clause) for clause in _parse_constraint(constraint))


def _matches(
    mapping: HookVersionMapping,
    source: semver.Version,
    target: semver.Version,
    params: HookCommonParams,
) -> bool:
    if not _check_constraint(source, mapping.source_version_constraint):
        _LOGGER.info(
            "Source version %s does not satisfy source constraint %s, skip hooks",
            params.source_ver,
            mapping.source_version_constraint,
        )
        return False
    if not _check_constraint(target, mapping.target_version_constraint):
        _LOGGER.info(
            "Target version %s does not satisfy target constraint %s, skip hooks",
            params.target_ver,
            mapping.target_version_constraint,
        )
        return False
    return True


async def run_hooks(
    mappings: tuple[HookVersionMapping, ...],
    client: ClusterClient,
    params: HookCommonParams,
    dry_run: bool = False,
) -> ErrorList:
    """Run the hooks of every mapping whose constraints match the versions.

    Mappings are checked in order. A failing hook does not stop the hooks
    after it from running, and all failures are returned. If the source or
    target version cannot be parsed no hooks are run and the error is
    returned alone.
    """
    try:
        source = _parse_version(params.source_ver)
        target = _parse_version(params.target_ver)
    except VersionError as err:
        return ErrorList([err])

    errors = ErrorList()
    for mapping in mappings:
        try:
            if not _matches(mapping, source, target, params):
                continue
        except VersionError as err:
            errors.add(err)
            continue
        _LOGGER.info(
            "Running the following hooks which match source->target versions %s->%s: %s",
            params.source_ver,
            params.target_ver,
            mapping.hook_names,
        )
        if dry_run:
            _LOGGER.info("(Skipping running hooks due to dry-run being set.)")
            continue
        for hook in mapping.hooks:
            _LOGGER.info("Running hook %s", hook.name)
            try:
                errors.add(await hook.run(client, params))
            except MeshOperatorException as err:
                _LOGGER.error("Hook %s failed: %s", hook.name, err)
                errors.add(err)
    return errors
