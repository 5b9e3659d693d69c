"""Artifact export for completed pipeline runs."""

from .exporter import ArtifactExporter

__all__ = ["ArtifactExporter"]
