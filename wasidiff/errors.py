"""Exception hierarchy for wasidiff.

All exceptions inherit from WasidiffError.

Hierarchy:
    WasidiffError (base)
    ├── GeneratorError            ← program generator failed (per iteration)
    ├── ToolInvocationError       ← external tool could not be launched (fatal)
    ├── ArtifactLaunchError       ← a build output could not be executed (per iteration)
    ├── ConfigurationError        ← invalid campaign configuration (fatal)
    ├── ReductionNonDeterminism   ← predicate disagreed with itself
    └── CampaignCancelled         ← stop signal observed inside a worker

Compile failures and execution timeouts are outcomes, not exceptions: they are
carried by CompileFailure and ExecutionRecord values (see wasidiff.types).
"""

from __future__ import annotations

from typing import Any


class WasidiffError(Exception):
    """Base exception carrying a message and structured context.

    Attributes:
        message: Human-readable error message
        context: Extra fields for logging and health events
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}


class GeneratorError(WasidiffError):
    """The program generator failed or produced unusable output.

    Fatal for one iteration only; the campaign keeps going.
    """


class ToolInvocationError(WasidiffError):
    """An external tool could not be launched at all (missing binary, EACCES).

    This indicates misconfiguration rather than a fuzzing outcome, so it aborts
    the whole campaign.
    """

    def __init__(self, tool: str, message: str, context: dict[str, Any] | None = None):
        super().__init__(message, context)
        self.tool = tool


class ArtifactLaunchError(WasidiffError):
    """A per-iteration build output (the native binary) could not be executed.

    The toolchain produced something the OS refuses to run, e.g. ENOEXEC. Only
    that seed is affected; it is counted as inconclusive.
    """

    def __init__(self, target: str, message: str, context: dict[str, Any] | None = None):
        super().__init__(message, context)
        self.target = target


class ConfigurationError(WasidiffError):
    """The campaign configuration is invalid. Raised before any work starts."""


class ReductionNonDeterminism(WasidiffError):
    """The reduction predicate returned different verdicts for one candidate."""

    def __init__(self, message: str, first: Any, second: Any):
        super().__init__(message, {"first": str(first), "second": str(second)})
        self.first = first
        self.second = second


class CampaignCancelled(WasidiffError):
    """The global stop signal was raised while an iteration was in flight."""
