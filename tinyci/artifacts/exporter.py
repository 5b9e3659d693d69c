"""
Artifact Exporter
=================
Copy build outputs out of the working copy into the pipeline's artifacts
directory.

For each artifact definition the `src` glob is resolved under the working
copy and every matching file is copied flat (file name only, no directory
structure) into `artifacts/<dst>`, overwriting files of the same name. A
matched directory contributes the files directly inside it. A pattern that
matches nothing is logged and skipped; the destination directory is still
created. A destination or file that cannot be written is logged and skipped,
so one bad artifact never fails a finished run.
"""

from __future__ import annotations

import shutil
from pathlib import Path
from typing import List

from loguru import logger

from tinyci.pipeline.definitions import ArtifactDef, PipelineDef
from tinyci.utils.validation import is_within


class ArtifactExporter:
    """Exports declared artifacts for a built pipeline."""

    def __init__(self, *, src_subdir: str = "src", artifacts_subdir: str = "artifacts"):
        self.src_subdir = src_subdir
        self.artifacts_subdir = artifacts_subdir

    def _matches(self, artifact: ArtifactDef, src_dir: Path) -> List[Path]:
        try:
            candidates = sorted(src_dir.glob(artifact.src))
        except (OSError, ValueError) as e:
            logger.warning(f"Could not list artifact source '{artifact.src}': {e}")
            return []

        files: List[Path] = []
        for p in candidates:
            if p.is_dir():
                # A directory match contributes the files directly inside it.
                files.extend(sorted(child for child in p.iterdir() if child.is_file()))
            elif p.is_file():
                files.append(p)
        files = [p for p in dict.fromkeys(files) if is_within(p, src_dir)]
        if not files:
            logger.warning(f"Artifact source '{artifact.src}' matched no files in {src_dir}")
        return files

    def export_artifact(self, artifact: ArtifactDef, pipeline_dir: Path) -> List[Path]:
        """Export a single artifact definition; returns the copied destination paths."""
        src_dir = pipeline_dir / self.src_subdir
        dest_dir = pipeline_dir / self.artifacts_subdir
        if artifact.dst:
            dest_dir = dest_dir / artifact.dst

        files = self._matches(artifact, src_dir)
        try:
            dest_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.warning(f"Could not create artifact directory {dest_dir}: {e}")
            return []

        copied: List[Path] = []
        for source in files:
            target = dest_dir / source.name
            try:
                shutil.copyfile(source, target)
                shutil.copymode(source, target)
            except OSError as e:
                logger.warning(f"Could not copy artifact {source.name} to {target}: {e}")
                continue
            copied.append(target)

        logger.info(f"ARTIFACT: {artifact.src} -> {dest_dir} ({len(copied)} file(s))")
        return copied

    def export(self, pipeline: PipelineDef, pipeline_dir: Path) -> List[Path]:
        """Export every artifact declared by the pipeline, in declaration order."""
        copied: List[Path] = []
        for artifact in pipeline.artifacts:
            copied.extend(self.export_artifact(artifact, Path(pipeline_dir)))
        return copied
