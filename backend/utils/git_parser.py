"""Git repository parsing utilities for Repo Rank.

This module clones GitHub repositories into throwaway directories and
extracts commit metadata plus a unified-diff patch for every commit.
Callers only see ``list[Commit]`` or a SourceUnavailableError; the
temporary clone is always removed.
"""

import logging
import re
import shutil
import tempfile
from itertools import islice
from pathlib import Path
from typing import Optional

from git import GitCommandError, InvalidGitRepositoryError, Repo
from git.cmd import Git

from models.commit import Commit
from services.errors import SourceUnavailableError

logger = logging.getLogger(__name__)

GITHUB_URL = "https://github.com"

_NAME_RE = re.compile(r"^[A-Za-z0-9_.-]+$")

INITIAL_COMMIT_PATCH = "Initial commit"
EMPTY_COMMIT_PATCH = "No changes (empty commit)"
FAILED_PATCH = "Failed to generate patch"
TRUNCATED_MARKER = "\n\n... [diff truncated] ..."
# git itself treats a blob as binary when its first 8000 bytes hold a NUL
BINARY_SNIFF_BYTES = 8000


def build_repo_url(owner: str, repo: str) -> str:
    """Return the HTTPS clone URL for a GitHub repository."""
    for part in (owner, repo):
        if not part or not _NAME_RE.match(part) or part in (".", ".."):
            raise SourceUnavailableError(f"Invalid repository name: {owner}/{repo}")
    return f"{GITHUB_URL}/{owner}/{repo}.git"


def clone_repo(repo_url: str, dest: str, timeout: Optional[float] = None) -> Repo:
    """
    Clone the default branch of ``repo_url`` into ``dest``.

    Args:
        timeout: Seconds after which the git process is killed. None waits
            indefinitely.

    Raises:
        SourceUnavailableError: if the clone fails or times out. The message
            is specialised for authentication and not-found failures.
    """
    logger.info("Cloning %s", repo_url)
    try:
        # GIT_TERMINAL_PROMPT=0 makes private/missing repos fail instead of
        # blocking on a credential prompt.
        Git().clone(
            "--single-branch",
            "--",
            repo_url,
            dest,
            env={"GIT_TERMINAL_PROMPT": "0"},
            kill_after_timeout=timeout,
        )
    except GitCommandError as e:
        err_msg = str(e.stderr or e).lower()
        if timeout is not None and "timeout" in err_msg:
            raise SourceUnavailableError(
                f"Cloning {repo_url} timed out after {timeout:g}s"
            ) from e
        if "authentication failed" in err_msg or "could not read username" in err_msg:
            raise SourceUnavailableError(
                f"Repository not found or not accessible: {repo_url}"
            ) from e
        if "repository not found" in err_msg or "not found" in err_msg:
            raise SourceUnavailableError(f"Repository not found: {repo_url}") from e
        raise SourceUnavailableError(f"Failed to clone repository {repo_url}: {e}") from e
    return Repo(dest)


def _truncate(patch: str, max_chars: Optional[int]) -> str:
    if max_chars is not None and len(patch) > max_chars:
        return patch[:max_chars] + TRUNCATED_MARKER
    return patch


def _decode(data) -> str:
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data or ""


def _is_binary(head: bytes) -> bool:
    return b"\0" in head


def _root_commit_patch(commit, max_chars: Optional[int] = None) -> str:
    """
    Render every text file of a root commit as an added file.

    Binary blobs are left out. Traversal stops once the rendered text is
    longer than ``max_chars``, since the rest would be truncated anyway.
    """
    parts = []
    length = 0
    for item in commit.tree.traverse():
        if item.type != "blob":
            continue
        stream = item.data_stream
        head = stream.read(BINARY_SNIFF_BYTES)
        if _is_binary(head):
            # drain so the shared cat-file process stays in sync for the next blob
            stream.read()
            logger.debug("Skipping binary file %s in root commit", item.path)
            continue
        lines = _decode(head + stream.read()).splitlines()
        body = "\n".join("+" + line for line in lines)
        part = (
            f"diff --git a/{item.path} b/{item.path}\n"
            f"new file\n"
            f"--- /dev/null\n"
            f"+++ b/{item.path}\n"
            f"@@ -0,0 +1,{len(lines)} @@\n"
            f"{body}"
        )
        parts.append(part)
        length += len(part) + 1
        if max_chars is not None and length > max_chars:
            break
    return "\n".join(parts)


def build_patch(commit, max_chars: Optional[int] = None) -> str:
    """
    Build a unified diff between ``commit`` and its first parent.

    Root commits are rendered as a list of added files. Merge commits are
    diffed against their first parent only.
    """
    if not commit.parents:
        patch = _root_commit_patch(commit, max_chars)
        return _truncate(patch, max_chars) if patch else INITIAL_COMMIT_PATCH

    parent = commit.parents[0]
    parts = []
    for item in parent.diff(commit, create_patch=True):
        a_path = item.a_path or item.b_path
        b_path = item.b_path or item.a_path
        old = "/dev/null" if item.new_file else f"a/{a_path}"
        new = "/dev/null" if item.deleted_file else f"b/{b_path}"
        parts.append(
            f"diff --git a/{a_path} b/{b_path}\n"
            f"--- {old}\n"
            f"+++ {new}\n"
            f"{_decode(item.diff)}"
        )

    if not parts:
        return EMPTY_COMMIT_PATCH
    return _truncate("\n".join(parts), max_chars)


def list_commits(
    local_repo_path: str,
    max_commits: Optional[int] = None,
    max_patch_chars: Optional[int] = None,
    commit_url_base: Optional[str] = None,
) -> list[Commit]:
    """
    List commits (newest first) from a local Git repository, with patches.

    Args:
        local_repo_path: Path to a working tree or bare repository.
        max_commits: Maximum number of commits to read; None reads all.
        max_patch_chars: Patches longer than this are truncated.
        commit_url_base: Prefix for commit URLs, e.g.
            ``https://github.com/owner/repo/commit``. No URL when None.

    Raises:
        ValueError: if the path does not exist or is not a directory.
        SourceUnavailableError: if the path is not a Git repository.
    """
    repo_path = Path(local_repo_path).resolve()

    if not repo_path.exists():
        raise ValueError(f"Repository path does not exist: {local_repo_path}")

    if not repo_path.is_dir():
        raise ValueError(f"Repository path is not a directory: {local_repo_path}")

    try:
        repo = Repo(str(repo_path))
    except InvalidGitRepositoryError as e:
        raise SourceUnavailableError(
            f"Path is not a valid Git repository: {local_repo_path}"
        ) from e

    try:
        commit_iter = repo.iter_commits()
        if max_commits is not None and max_commits > 0:
            commit_iter = islice(commit_iter, max_commits)

        result: list[Commit] = []
        for commit in commit_iter:
            try:
                patch = build_patch(commit, max_patch_chars)
            except Exception as exc:
                logger.warning("Failed to get patch for commit %s: %s", commit.hexsha, exc)
                patch = FAILED_PATCH

            result.append(
                Commit(
                    id=commit.hexsha,
                    title=_decode(commit.summary),
                    author=commit.author.name or "Unknown",
                    date=commit.authored_datetime.isoformat(),
                    patch=patch,
                    url=f"{commit_url_base}/{commit.hexsha}" if commit_url_base else None,
                )
            )
    except (GitCommandError, ValueError) as e:
        # ValueError: iter_commits on a repository without any commit
        raise SourceUnavailableError(f"Failed to read commit history: {e}") from e
    finally:
        repo.close()

    return result


def fetch_commits(
    owner: str,
    repo: str,
    max_commits: Optional[int] = None,
    max_patch_chars: Optional[int] = None,
    clone_timeout: Optional[float] = None,
) -> list[Commit]:
    """
    Clone ``owner/repo`` from GitHub and return its commits with patches.

    The clone lives in a temporary directory that is removed before
    returning, whether or not extraction succeeded.
    """
    repo_url = build_repo_url(owner, repo)
    tmp = tempfile.mkdtemp(prefix="repo_rank_")
    try:
        clone_repo(repo_url, tmp, timeout=clone_timeout).close()
        commits = list_commits(
            tmp,
            max_commits=max_commits,
            max_patch_chars=max_patch_chars,
            commit_url_base=f"{GITHUB_URL}/{owner}/{repo}/commit",
        )
        logger.info("Read %s commits from %s/%s", len(commits), owner, repo)
        return commits
    finally:
        shutil.rmtree(tmp, ignore_errors=True)
