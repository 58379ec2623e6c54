"""Exception hierarchy for the orchestrator.

Configuration errors are fatal and raised before a run is constructed.
Stage-level errors are caught by the stage executor and turned into
failed StageResults; StageNotFound and CapabilityNotFound indicate an
inconsistent pipeline and abort the whole run.
"""

from typing import Sequence


class EduvidError(Exception):
    """Base class for all eduvid errors."""


class ConfigurationError(EduvidError):
    """Raised when a pipeline definition fails validation.

    Carries every validation problem so callers can show the full list.
    """

    def __init__(self, errors: Sequence[str]):
        self.errors = list(errors)
        super().__init__("Invalid configuration: " + "; ".join(self.errors))


class StageNotFound(EduvidError):
    """Raised when a stage id is not part of the pipeline definition."""


class CapabilityNotFound(EduvidError):
    """Raised when a stage references a capability the registry does not hold."""


class StageTimeout(EduvidError):
    """Raised when a single stage attempt exceeds its timeout."""


class StageOutputMissing(EduvidError):
    """Raised when a capability returns without a declared output."""


class PipelineCancelled(EduvidError):
    """Raised when an external cancellation signal is observed."""


class RunStateFrozen(EduvidError):
    """Raised when a terminal run state would be mutated or overwritten."""


class CapabilityError(EduvidError):
    """Raised by a capability that could not produce its outputs."""
