"""Fail-fast validation of pipeline definitions.

Every problem is collected as a human-readable message so the caller can
report the complete list; a definition with any error is never run.
"""

import logging
from typing import Any, Iterable, Mapping

from pydantic import ValidationError

from eduvid.orchestrator.errors import ConfigurationError
from eduvid.schemas.pipeline import BRANCH_SEED_NAMES, PipelineDefinition

logger = logging.getLogger(__name__)

# Stages with capability "none" that the orchestrator knows how to run itself
INLINE_STAGE_IDS = frozenset({"voice-synthesis", "final-assembly"})

FINAL_OUTPUT = "final_video"


def _format_pydantic_errors(exc: ValidationError) -> list[str]:
    messages = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err["loc"]) or "definition"
        messages.append(f"{location}: {err['msg']}")
    return messages


def parse_definition(data: Mapping[str, Any]) -> PipelineDefinition:
    """Build a PipelineDefinition from a merged configuration document.

    Raises:
        ConfigurationError: With one message per structural problem.
    """
    try:
        return PipelineDefinition.model_validate(dict(data))
    except ValidationError as e:
        raise ConfigurationError(_format_pydantic_errors(e)) from e


def validate_definition(
    definition: PipelineDefinition,
    inline_stages: Iterable[str] = INLINE_STAGE_IDS,
) -> list[str]:
    """Return every semantic problem with ``definition`` (empty when valid)."""
    errors: list[str] = []
    inline_stages = set(inline_stages)

    stage_ids = [s.id for s in definition.stages]
    for dup in sorted({i for i in stage_ids if stage_ids.count(i) > 1}):
        errors.append(f"Duplicate stage id '{dup}'")

    capability_ids = [c.id for c in definition.capabilities]
    for dup in sorted({i for i in capability_ids if capability_ids.count(i) > 1}):
        errors.append(f"Duplicate capability id '{dup}'")

    known_capabilities = set(capability_ids)
    for stage in definition.stages:
        if stage.is_inline:
            if stage.id not in inline_stages:
                errors.append(
                    f"Stage '{stage.id}' is marked as handled inline but the orchestrator "
                    f"has no inline handler for it"
                )
        elif stage.capability not in known_capabilities:
            errors.append(
                f"Stage '{stage.id}' references non-existent capability '{stage.capability}'"
            )

    if definition.video.fps <= 0 or definition.video.fps > 120:
        errors.append("Video FPS must be between 1 and 120")

    if not definition.output_dir.strip():
        errors.append("Output directory must be specified")

    ideation = definition.get_stage(definition.ideation_stage)
    if ideation is None:
        errors.append(f"Ideation stage '{definition.ideation_stage}' is not defined")
    elif "ideas" not in ideation.outputs:
        errors.append(f"Ideation stage '{ideation.id}' must declare an 'ideas' output")

    # Every branch input must come from a seed or an earlier stage in the branch
    available = set(BRANCH_SEED_NAMES)
    if ideation is not None:
        # Ideation runs before any candidate exists
        run_seeds = set(definition.seed_values()) | {"topic"}
        for name in ideation.inputs:
            if name not in run_seeds:
                errors.append(
                    f"Stage '{ideation.id}' declares input '{name}' that no earlier stage produces"
                )
    branch_stages = definition.branch_stages()
    for stage in branch_stages:
        for name in stage.inputs:
            if name not in available:
                errors.append(
                    f"Stage '{stage.id}' declares input '{name}' that no earlier stage produces"
                )
        available.update(stage.outputs)

    if not any(FINAL_OUTPUT in s.outputs for s in branch_stages):
        errors.append(f"No branch stage declares the '{FINAL_OUTPUT}' output")

    if definition.enable_critique:
        critique = definition.get_stage(definition.critique_stage)
        if critique is None:
            errors.append(
                f"Critique is enabled but stage '{definition.critique_stage}' is not defined"
            )
        else:
            for name in critique.inputs:
                if name not in available:
                    errors.append(
                        f"Stage '{critique.id}' declares input '{name}' that no earlier stage produces"
                    )

    return errors


def ensure_valid(
    definition: PipelineDefinition,
    inline_stages: Iterable[str] = INLINE_STAGE_IDS,
) -> PipelineDefinition:
    """Raise ConfigurationError unless ``definition`` is valid."""
    errors = validate_definition(definition, inline_stages)
    if errors:
        for message in errors:
            logger.error(f"Configuration error: {message}")
        raise ConfigurationError(errors)
    return definition
