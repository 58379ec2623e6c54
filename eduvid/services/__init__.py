"""External collaborators: LLM adapters, rendering, narration, assembly, files."""
