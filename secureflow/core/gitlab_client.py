"""GitLab REST implementation of the repository client.

One client is bound to one GitLab project. All HTTP failures are raised as
TransientExternalError; callers decide whether a failure is per-file or fatal.
"""
from typing import Any, Optional
from urllib.parse import quote
import logging

import httpx

from secureflow.core.config import Settings
from secureflow.core.exceptions import TransientExternalError
from secureflow.core.interfaces import FileEntry
from secureflow.schemas.project import ProjectScanConfig

logger = logging.getLogger(__name__)

CODE_EXTENSIONS = (
    ".js", ".ts", ".jsx", ".tsx", ".py", ".java", ".c", ".cpp", ".cs",
    ".php", ".rb", ".go", ".rs", ".swift", ".kt", ".scala", ".sql",
    ".html", ".vue", ".svelte", ".yaml", ".yml", ".json", ".xml",
    ".sh", ".bash", ".dockerfile", ".tf",
)
CODE_FILENAMES = {"dockerfile", "makefile", "jenkinsfile"}


def is_code_file(path: str) -> bool:
    name = path.rsplit("/", 1)[-1].lower()
    return name.endswith(CODE_EXTENSIONS) or name in CODE_FILENAMES


class GitLabClient:
    def __init__(
        self,
        project_id: str,
        token: str,
        base_url: str = "https://gitlab.com/api/v4",
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._project_path = f"/projects/{quote(str(project_id), safe='')}"
        self._http = http_client or httpx.AsyncClient(
            base_url=base_url,
            headers={"Private-Token": token},
            timeout=timeout,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        url = f"{self._project_path}{path}"
        try:
            response = await self._http.request(method, url, **kwargs)
            response.raise_for_status()
            return response
        except httpx.HTTPError as exc:
            raise TransientExternalError(f"GitLab {method} {path} failed: {exc}") from exc

    async def list_files(self, ref: str) -> list[FileEntry]:
        files: list[FileEntry] = []
        page: Optional[str] = "1"
        while page:
            response = await self._request(
                "GET",
                "/repository/tree",
                params={"ref": ref, "recursive": "true", "per_page": 100, "page": page},
            )
            for item in response.json():
                if item.get("type") == "blob" and is_code_file(item["path"]):
                    files.append(FileEntry(path=item["path"], size=item.get("size")))
            page = response.headers.get("X-Next-Page") or None
        return files

    async def get_file_content(self, path: str, ref: str) -> str:
        response = await self._request(
            "GET",
            f"/repository/files/{quote(path, safe='')}/raw",
            params={"ref": ref},
        )
        return response.text

    async def list_changed_files(self, commit_ref: str) -> list[str]:
        response = await self._request("GET", f"/repository/commits/{quote(commit_ref, safe='')}/diff")
        return [
            diff["new_path"]
            for diff in response.json()
            if diff.get("new_path") and not diff.get("deleted_file") and is_code_file(diff["new_path"])
        ]

    async def create_branch(self, name: str, from_ref: str) -> None:
        await self._request("POST", "/repository/branches", params={"branch": name, "ref": from_ref})

    async def commit_file(self, path: str, content: str, message: str, branch: str) -> str:
        response = await self._request(
            "POST",
            "/repository/commits",
            json={
                "branch": branch,
                "commit_message": message,
                "actions": [{"action": "update", "file_path": path, "content": content}],
            },
        )
        return str(response.json()["id"])

    async def open_merge_request(self, source_branch: str, target_branch: str, title: str, description: str) -> str:
        response = await self._request(
            "POST",
            "/merge_requests",
            json={
                "source_branch": source_branch,
                "target_branch": target_branch,
                "title": title,
                "description": description,
                "remove_source_branch": True,
            },
        )
        return str(response.json()["iid"])


def gitlab_factory(settings: Settings):
    """Repository factory binding a GitLabClient to each project."""

    def build(project: ProjectScanConfig) -> GitLabClient:
        return GitLabClient(
            project.repository_project_id,
            settings.GITLAB_API_TOKEN,
            base_url=settings.GITLAB_BASE_URL,
            timeout=settings.REPOSITORY_TIMEOUT_SECONDS,
        )

    return build
