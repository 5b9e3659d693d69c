"""
Pipeline Definitions
====================
Immutable pipeline definitions and the JSON config loader.

Config shape:

    {
      "pipelines": [
        {
          "name": "My project",
          "package": "my-project",            # or "domain"; the pipeline identity
          "src": "https://example.com/repo.git",
          "vc": {"branch": "main"},           # optional
          "stages": [
            {"name": "build", "jobs": [
              {"name": "compile", "tasks": [{"cmd": "make"}]}
            ]}
          ],
          "artifacts": [{"src": "dist/*.bin", "dst": "release"}]   # optional
        }
      ]
    }
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Tuple

from loguru import logger

from tinyci.errors import ConfigError
from tinyci.utils.schema_validation import validate_pipeline_config
from tinyci.utils.validation import validate_identity, validate_relative_path


@dataclass(frozen=True)
class TaskDef:
    """A single command line."""

    cmd: str
    timeout_seconds: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TaskDef":
        return cls(cmd=str(data["cmd"]), timeout_seconds=data.get("timeout"))

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"cmd": self.cmd}
        if self.timeout_seconds is not None:
            payload["timeout"] = self.timeout_seconds
        return payload


@dataclass(frozen=True)
class JobDef:
    name: str
    tasks: Tuple[TaskDef, ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JobDef":
        return cls(
            name=str(data["name"]),
            tasks=tuple(TaskDef.from_dict(t) for t in data.get("tasks", [])),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "tasks": [t.to_dict() for t in self.tasks]}


@dataclass(frozen=True)
class StageDef:
    name: str
    jobs: Tuple[JobDef, ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StageDef":
        return cls(
            name=str(data["name"]),
            jobs=tuple(JobDef.from_dict(j) for j in data.get("jobs", [])),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "jobs": [j.to_dict() for j in self.jobs]}


@dataclass(frozen=True)
class ArtifactDef:
    """Files matching `src` (a glob under the working copy) are copied into `dst`.

    `dst` is relative to the pipeline's artifacts directory; an empty string
    means the artifacts directory itself.
    """

    src: str
    dst: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "src", validate_relative_path(self.src, what="artifact src"))
        if self.dst.strip():
            object.__setattr__(self, "dst", validate_relative_path(self.dst, what="artifact dst"))
        else:
            object.__setattr__(self, "dst", "")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ArtifactDef":
        return cls(src=str(data["src"]), dst=str(data.get("dst", "")))

    def to_dict(self) -> Dict[str, Any]:
        return {"src": self.src, "dst": self.dst}


@dataclass(frozen=True)
class PipelineDef:
    """One end-to-end build definition for a single source repository."""

    identity: str
    name: str
    src: str
    branch: Optional[str] = None
    stages: Tuple[StageDef, ...] = ()
    artifacts: Tuple[ArtifactDef, ...] = ()
    identity_key: str = "package"

    def __post_init__(self) -> None:
        object.__setattr__(self, "identity", validate_identity(self.identity))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PipelineDef":
        identity_key = "domain" if "domain" in data else "package"
        vc = data.get("vc") or {}
        return cls(
            identity=str(data[identity_key]),
            name=str(data["name"]),
            src=str(data["src"]),
            branch=vc.get("branch"),
            stages=tuple(StageDef.from_dict(s) for s in data.get("stages", [])),
            artifacts=tuple(ArtifactDef.from_dict(a) for a in data.get("artifacts", [])),
            identity_key=identity_key,
        )

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "name": self.name,
            self.identity_key: self.identity,
            "src": self.src,
            "stages": [s.to_dict() for s in self.stages],
        }
        if self.branch is not None:
            payload["vc"] = {"branch": self.branch}
        if self.artifacts:
            payload["artifacts"] = [a.to_dict() for a in self.artifacts]
        return payload


@dataclass(frozen=True)
class PipelineSet:
    """All configured pipelines, in config order."""

    pipelines: Tuple[PipelineDef, ...] = field(default_factory=tuple)

    def __iter__(self) -> Iterator[PipelineDef]:
        return iter(self.pipelines)

    def __len__(self) -> int:
        return len(self.pipelines)

    def get(self, identity: str) -> Optional[PipelineDef]:
        for pipeline in self.pipelines:
            if pipeline.identity == identity:
                return pipeline
        return None

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "PipelineSet":
        """Validate a config document and build the pipeline set.

        Raises:
            ConfigError: When the document fails validation.
        """
        try:
            validate_pipeline_config(payload)
            pipelines = tuple(PipelineDef.from_dict(p) for p in payload["pipelines"])
        except ValueError as e:
            raise ConfigError(f"Invalid pipeline config: {e}") from e
        return cls(pipelines=pipelines)


def load_pipeline_set(config_path: str | Path) -> PipelineSet:
    """Read and validate the pipeline config file.

    Raises:
        ConfigError: When the file is missing, unreadable, not JSON or invalid.
    """
    path = Path(config_path).expanduser()
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {path}") from e
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"Failed to read config file {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in config file {path}: {e}") from e

    if not isinstance(payload, dict):
        raise ConfigError(f"Config file {path} must contain a JSON object")

    pipeline_set = PipelineSet.from_dict(payload)
    logger.debug(f"Loaded {len(pipeline_set)} pipeline(s) from {path}")
    return pipeline_set


class JsonFileConfigSource:
    """Config source that re-reads a JSON file on every call."""

    def __init__(self, config_path: str | Path):
        self.config_path = Path(config_path)

    def load(self) -> PipelineSet:
        return load_pipeline_set(self.config_path)
