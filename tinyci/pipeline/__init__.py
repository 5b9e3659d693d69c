"""Pipeline definitions, run logs and the execution hierarchy.

Control flow for one run:
    PipelineRunner -> StageRunner -> JobRunner -> TaskRunner
with ChangeDetector deciding beforehand whether the run is needed.
"""
