"""Pipeline orchestration: definitions, stage execution, branching, run state.

Import concrete pieces from their modules (eduvid.orchestrator.pipeline,
eduvid.orchestrator.executor, ...).
"""
