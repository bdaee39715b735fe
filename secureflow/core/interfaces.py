"""Interfaces of the external collaborators the pipeline drives.

The orchestrator, scheduler, webhook ingestor and remediation workflow only
depend on these protocols; `GitLabClient` and `LLMAnalysisEngine` are the
shipped implementations and tests substitute in-process fakes.
"""
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from secureflow.agents.schemas import FileAnalysis, FixProposal
from secureflow.schemas.analysis import ThreatModel
from secureflow.schemas.project import ProjectScanConfig


@dataclass(frozen=True)
class FileEntry:
    path: str
    size: Optional[int] = None


class RepositoryClient(Protocol):
    async def list_files(self, ref: str) -> list[FileEntry]: ...

    async def get_file_content(self, path: str, ref: str) -> str: ...

    async def list_changed_files(self, commit_ref: str) -> list[str]: ...

    async def create_branch(self, name: str, from_ref: str) -> None: ...

    async def commit_file(self, path: str, content: str, message: str, branch: str) -> str: ...

    async def open_merge_request(
        self, source_branch: str, target_branch: str, title: str, description: str
    ) -> str: ...


# Builds the repository client bound to one project
RepositoryFactory = Callable[[ProjectScanConfig], RepositoryClient]


class AnalysisEngine(Protocol):
    async def analyze_file(self, content: str, path: str) -> FileAnalysis: ...

    async def propose_fix(self, file: str, code: str, vuln_type: str, severity: str) -> FixProposal: ...

    async def build_threat_model(self, paths: list[str]) -> ThreatModel: ...


class JobDispatch(Protocol):
    """Launches a job run in the background."""

    def submit(self, job_id: str) -> None: ...
