"""
Lightup Git Worktree Service

Per-card worktrees and the review merge flow: diff against the default
branch, merge with optional conflict preservation, conflict inspection and
resolution, completion or abort, and PR creation through the GitHub CLI.

Merges mutate the repository's default branch, so each repository has one
merge owner (a card) from `merge` until the merge completes or is aborted,
and every git step runs under that repository's lock.
"""

import shutil
import subprocess
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple, TypeVar, Union

from lightup.errors import (
    BadRequestError,
    GitCommandError,
    MergeInProgressError,
    ValidationError,
)
from lightup.logging import get_logger
from lightup.services.base import Service, ServiceContext
from lightup.services.plan_generator import slugify

logger = get_logger(__name__)

T = TypeVar("T")

WORKSPACES_DIR = ".lightup-workspaces"
GITIGNORE_ENTRY = f"{WORKSPACES_DIR}/"
BRANCH_SLUG_LIMIT = 40

_STATUS_NAMES = {"A": "added", "M": "modified", "D": "deleted", "R": "renamed"}

CONFLICT_TYPES = {
    "UU": "both-modified",
    "AA": "both-added",
    "DU": "deleted-by-us",
    "UD": "deleted-by-them",
    "AU": "added-by-us",
    "UA": "added-by-them",
    "DD": "both-deleted",
}

RESOLUTION_CHOICES = ("ours", "theirs", "manual")

PathLike = Union[str, Path]


def run_process(
    cmd: list,
    *,
    cwd: Optional[Path] = None,
    capture_output: bool = True,
    text: bool = True,
    check: bool = True,
    **kwargs,
) -> subprocess.CompletedProcess:
    """
    Run a subprocess command with sensible defaults.

    Raises:
        subprocess.CalledProcessError: If check=True and command fails
    """
    result = subprocess.run(
        cmd,
        cwd=cwd,
        capture_output=capture_output,
        text=text,
        **kwargs,
    )
    if check and result.returncode != 0:
        raise subprocess.CalledProcessError(
            result.returncode,
            cmd,
            result.stdout,
            result.stderr,
        )
    return result


def is_git_lock_error(error: Exception) -> bool:
    """Check if an exception is related to git index.lock contention."""
    error_str = str(error).lower()
    lock_indicators = [
        "index.lock",
        "unable to create",
        "another git process seems to be running",
        "lock file exists",
        "could not lock",
    ]
    return any(indicator in error_str for indicator in lock_indicators)


def with_git_lock_retry(func: Callable[[], T], max_retries: int = 3, retry_delay: float = 0.5) -> T:
    """Retry a git operation while another git process holds index.lock."""
    for attempt in range(max_retries + 1):
        try:
            return func()
        except GitCommandError as exc:
            if not is_git_lock_error(exc) or attempt >= max_retries:
                raise
            delay = retry_delay * (2 ** attempt)
            logger.warning(
                "git_lock_contention",
                extra={"attempt": attempt + 1, "max_retries": max_retries, "delay_seconds": delay},
            )
            time.sleep(delay)
    raise AssertionError("unreachable")


def branch_name_for(card_id: str, title: str) -> str:
    slug = slugify(title)[:BRANCH_SLUG_LIMIT].rstrip("-")
    return f"ai/{card_id[:8]}-{slug}" if slug else f"ai/{card_id[:8]}"


def ensure_gitignore(repo: Path) -> bool:
    """Append the workspaces entry to .gitignore; returns False if already present."""
    path = repo / ".gitignore"
    content = path.read_text(encoding="utf-8") if path.exists() else ""
    entries = {line.strip() for line in content.splitlines()}
    if GITIGNORE_ENTRY in entries or WORKSPACES_DIR in entries:
        return False
    if content and not content.endswith("\n"):
        content += "\n"
    path.write_text(content + GITIGNORE_ENTRY + "\n", encoding="utf-8")
    return True


# Result types

@dataclass
class FileDiff:
    path: str
    status: str
    additions: int = 0
    deletions: int = 0
    diff: str = ""


@dataclass
class DiffStats:
    files_changed: int = 0
    additions: int = 0
    deletions: int = 0


@dataclass
class DiffResult:
    files: List[FileDiff] = field(default_factory=list)
    stats: DiffStats = field(default_factory=DiffStats)


@dataclass
class ConflictFile:
    path: str
    conflict_type: str
    is_binary: bool = False
    ours_content: Optional[str] = None
    theirs_content: Optional[str] = None
    base_content: Optional[str] = None


@dataclass
class ConflictDetail:
    merge_in_progress: bool
    files: List[ConflictFile] = field(default_factory=list)


@dataclass
class MergeResult:
    success: bool
    message: str
    conflicts: List[str] = field(default_factory=list)
    conflict_detail: Optional[ConflictDetail] = None


@dataclass
class Resolution:
    file_path: str
    choice: str
    manual_content: Optional[str] = None


class MergeLockRegistry:
    """
    Per-repository merge ownership keyed on the canonical repo path.

    A card owns a repository from `merge` until the merge completes or is
    aborted; another card trying to merge the same repository is rejected.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._repo_locks: Dict[str, threading.Lock] = {}
        self._owners: Dict[str, str] = {}

    @staticmethod
    def canonical(repo: PathLike) -> str:
        return str(Path(repo).expanduser().resolve())

    def repo_lock(self, repo: PathLike) -> threading.Lock:
        key = self.canonical(repo)
        with self._lock:
            if key not in self._repo_locks:
                self._repo_locks[key] = threading.Lock()
            return self._repo_locks[key]

    def owner(self, repo: PathLike) -> Optional[str]:
        with self._lock:
            return self._owners.get(self.canonical(repo))

    def check(self, repo: PathLike, card_id: Optional[str]) -> None:
        key = self.canonical(repo)
        with self._lock:
            owner = self._owners.get(key)
        if owner is not None and card_id is not None and owner != card_id:
            raise MergeInProgressError(
                f"Merge already in progress for {key} (card {owner})",
                metadata={"repo": key, "owner_card_id": owner, "card_id": card_id},
            )

    def acquire(self, repo: PathLike, card_id: str) -> None:
        key = self.canonical(repo)
        with self._lock:
            owner = self._owners.get(key)
            if owner is not None and owner != card_id:
                raise MergeInProgressError(
                    f"Merge already in progress for {key} (card {owner})",
                    metadata={"repo": key, "owner_card_id": owner, "card_id": card_id},
                )
            self._owners[key] = card_id

    def release(self, repo: PathLike, card_id: Optional[str] = None) -> None:
        key = self.canonical(repo)
        with self._lock:
            owner = self._owners.get(key)
            if owner is not None and (card_id is None or owner == card_id):
                del self._owners[key]

    def repos_owned_by(self, card_id: str) -> List[str]:
        with self._lock:
            return sorted(repo for repo, owner in self._owners.items() if owner == card_id)


class GitWorktreeService(Service):
    """
    Service for card worktrees and the merge flow.

    Example:
        git = GitWorktreeService(context, MergeLockRegistry())
        branch, path = git.create_worktree(repo, card.id, card.title)
        result = git.merge(repo, branch, keep_conflicts=True, card_id=card.id)
    """

    def __init__(self, context: ServiceContext, locks: Optional[MergeLockRegistry] = None) -> None:
        super().__init__(context)
        self.locks = locks or MergeLockRegistry()

    # Plumbing
    def _git(self, repo: PathLike, *args: str, check: bool = True) -> subprocess.CompletedProcess:
        try:
            return run_process(["git", *args], cwd=Path(repo), check=check)
        except subprocess.CalledProcessError as exc:
            raise GitCommandError(
                f"Git command failed: {(exc.stderr or '').strip()}",
                metadata={"args": list(args), "returncode": exc.returncode},
            ) from exc
        except FileNotFoundError as exc:
            raise GitCommandError(f"Git command failed: {exc}") from exc

    def _git_bytes(self, repo: PathLike, *args: str) -> Optional[bytes]:
        """Raw stdout, or None when the command fails (e.g. a missing index stage)."""
        result = run_process(["git", *args], cwd=Path(repo), text=False, check=False)
        if result.returncode != 0:
            return None
        return result.stdout

    def _require_repo(self, repo: PathLike) -> Path:
        path = Path(repo)
        if not (path / ".git").exists():
            raise ValidationError(f"Not a git repository: {path}")
        return path

    def _git_dir(self, repo: Path) -> Path:
        result = self._git(repo, "rev-parse", "--absolute-git-dir", check=False)
        if result.returncode == 0 and result.stdout.strip():
            return Path(result.stdout.strip())
        return repo / ".git"

    def default_branch(self, repo: PathLike) -> str:
        """origin/HEAD when a remote is configured, else main, else master."""
        result = self._git(repo, "symbolic-ref", "refs/remotes/origin/HEAD", check=False)
        if result.returncode == 0 and result.stdout.strip():
            return result.stdout.strip().rsplit("/", 1)[-1]
        for candidate in ("main", "master"):
            if self._git(repo, "rev-parse", "--verify", "--quiet", candidate, check=False).returncode == 0:
                return candidate
        return "main"

    # Worktrees
    def create_worktree(self, repo: PathLike, card_id: str, card_title: str) -> Tuple[str, Path]:
        repo_path = self._require_repo(repo)
        branch = branch_name_for(card_id, card_title)
        worktree_path = repo_path / WORKSPACES_DIR / card_id
        ensure_gitignore(repo_path)
        worktree_path.parent.mkdir(parents=True, exist_ok=True)

        with_git_lock_retry(
            lambda: self._git(repo_path, "worktree", "add", str(worktree_path), "-b", branch)
        )
        self.logger.info(
            "worktree_created",
            extra=self.log_extra(card_id=card_id, branch=branch, worktree_path=str(worktree_path)),
        )
        return branch, worktree_path

    def remove_worktree(self, repo: PathLike, worktree_path: PathLike, branch: Optional[str]) -> None:
        """Best-effort removal of the worktree and its branch."""
        removal = self._git(repo, "worktree", "remove", str(worktree_path), "--force", check=False)
        if removal.returncode != 0:
            self.logger.warning(
                "worktree_remove_failed",
                extra=self.log_extra(worktree_path=str(worktree_path), error=(removal.stderr or "").strip()),
            )
        if branch:
            deletion = self._git(repo, "branch", "-D", branch, check=False)
            if deletion.returncode != 0:
                self.logger.warning(
                    "branch_delete_failed",
                    extra=self.log_extra(branch=branch, error=(deletion.stderr or "").strip()),
                )
        self.logger.info("worktree_removed", extra=self.log_extra(worktree_path=str(worktree_path), branch=branch))

    # Diff
    def diff(self, repo: PathLike, branch: str) -> DiffResult:
        repo_path = self._require_repo(repo)
        range_spec = f"{self.default_branch(repo_path)}...{branch}"

        name_status = self._git(repo_path, "diff", "--name-status", range_spec).stdout
        numstat = self._git(repo_path, "diff", "--numstat", range_spec).stdout
        counts = _parse_numstat(numstat)

        files: List[FileDiff] = []
        for line in name_status.splitlines():
            parts = line.split("\t")
            if len(parts) < 2:
                continue
            code = parts[0][:1]
            path = parts[2] if code == "R" and len(parts) > 2 else parts[1]
            additions, deletions = counts.get(path, (0, 0))
            patch = self._git(repo_path, "diff", range_spec, "--", path, check=False).stdout
            files.append(
                FileDiff(
                    path=path,
                    status=_STATUS_NAMES.get(code, "modified"),
                    additions=additions,
                    deletions=deletions,
                    diff=patch or "",
                )
            )
        stats = DiffStats(
            files_changed=len(files),
            additions=sum(f.additions for f in files),
            deletions=sum(f.deletions for f in files),
        )
        return DiffResult(files=files, stats=stats)

    # Merge flow
    def merge(
        self,
        repo: PathLike,
        branch: str,
        *,
        keep_conflicts: bool = False,
        card_id: Optional[str] = None,
    ) -> MergeResult:
        repo_path = self._require_repo(repo)
        already_owned = card_id is not None and self.locks.owner(repo_path) == card_id
        if card_id is not None:
            self.locks.acquire(repo_path, card_id)
        try:
            with self.locks.repo_lock(repo_path):
                result = self._merge_locked(repo_path, branch, keep_conflicts)
        except Exception:
            if card_id is not None and not already_owned:
                self.locks.release(repo_path, card_id)
            raise
        if card_id is not None and not result.conflict_detail:
            self.locks.release(repo_path, card_id)
        self.logger.info(
            "merge_attempted",
            extra=self.log_extra(
                card_id=card_id,
                branch=branch,
                success=result.success,
                conflicts=len(result.conflicts),
                kept=bool(result.conflict_detail),
            ),
        )
        return result

    def _merge_locked(self, repo: Path, branch: str, keep_conflicts: bool) -> MergeResult:
        default = self.default_branch(repo)
        previous = self._git(repo, "rev-parse", "--abbrev-ref", "HEAD", check=False).stdout.strip()
        if previous != default:
            self._git(repo, "checkout", default)
        merged = self._git(repo, "merge", branch, "--no-ff", "-m", f"Merge {branch}", check=False)
        if merged.returncode == 0:
            self._restore_branch(repo, previous, default)
            return MergeResult(success=True, message=f"Merged {branch} into {default}")

        error = ((merged.stderr or "") + (merged.stdout or "")).strip()
        conflicts = self._unmerged_paths(repo)
        detail: Optional[ConflictDetail] = None
        if keep_conflicts and conflicts:
            detail = self._conflict_details_locked(repo)
        else:
            self._git(repo, "merge", "--abort", check=False)
            self._restore_branch(repo, previous, default)
        return MergeResult(
            success=False,
            message=f"Merge failed: {error}",
            conflicts=conflicts,
            conflict_detail=detail,
        )

    def _restore_branch(self, repo: Path, previous: str, default: str) -> None:
        if previous and previous not in (default, "HEAD"):
            self._git(repo, "checkout", previous, check=False)

    def _unmerged_paths(self, repo: Path) -> List[str]:
        out = self._git(repo, "diff", "--name-only", "--diff-filter=U", check=False).stdout or ""
        return [line for line in out.splitlines() if line.strip()]

    def conflict_details(self, repo: PathLike) -> ConflictDetail:
        repo_path = self._require_repo(repo)
        with self.locks.repo_lock(repo_path):
            return self._conflict_details_locked(repo_path)

    def _conflict_details_locked(self, repo: Path) -> ConflictDetail:
        in_progress = (self._git_dir(repo) / "MERGE_HEAD").exists()
        status = self._git(repo, "status", "--porcelain=v1", "-z", check=False).stdout or ""
        files: List[ConflictFile] = []
        for entry in status.split("\0"):
            if len(entry) < 4:
                continue
            code, path = entry[:2], entry[3:]
            conflict_type = CONFLICT_TYPES.get(code)
            if conflict_type is None:
                continue
            base = self._git_bytes(repo, "show", f":1:{path}")
            ours = self._git_bytes(repo, "show", f":2:{path}")
            theirs = self._git_bytes(repo, "show", f":3:{path}")
            is_binary = any(_looks_binary(blob) for blob in (base, ours, theirs) if blob is not None)
            files.append(
                ConflictFile(
                    path=path,
                    conflict_type=conflict_type,
                    is_binary=is_binary,
                    ours_content=None if is_binary else _decode(ours),
                    theirs_content=None if is_binary else _decode(theirs),
                    base_content=None if is_binary else _decode(base),
                )
            )
        return ConflictDetail(merge_in_progress=in_progress, files=files)

    def resolve(
        self,
        repo: PathLike,
        resolutions: Sequence[Resolution],
        *,
        card_id: Optional[str] = None,
    ) -> ConflictDetail:
        """Apply ours/theirs/manual resolutions, stage them, and return what remains."""
        repo_path = self._require_repo(repo)
        self.locks.check(repo_path, card_id)
        root = repo_path.resolve()
        with self.locks.repo_lock(repo_path):
            for resolution in resolutions:
                if resolution.choice not in RESOLUTION_CHOICES:
                    raise ValidationError(
                        f"Invalid resolution choice: {resolution.choice}. "
                        f"Expected one of: {', '.join(RESOLUTION_CHOICES)}"
                    )
                target = (root / resolution.file_path).resolve()
                if root not in target.parents:
                    raise ValidationError(f"Path escapes repository: {resolution.file_path}")
                self._apply_resolution(repo_path, target, resolution)
            detail = self._conflict_details_locked(repo_path)
        self.logger.info(
            "conflicts_resolved",
            extra=self.log_extra(card_id=card_id, resolved=len(resolutions), remaining=len(detail.files)),
        )
        return detail

    def _apply_resolution(self, repo: Path, target: Path, resolution: Resolution) -> None:
        path = resolution.file_path
        if resolution.choice == "manual":
            if resolution.manual_content is None:
                raise ValidationError(f"manual_content is required for manual resolution of {path}")
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(resolution.manual_content.encode("utf-8"))
            self._git(repo, "add", "--", path)
            return

        stage = 2 if resolution.choice == "ours" else 3
        if self._git_bytes(repo, "show", f":{stage}:{path}") is None:
            # The chosen side deleted the file.
            self._git(repo, "rm", "--quiet", "--", path)
            return
        self._git(repo, "checkout", f"--{resolution.choice}", "--", path)
        self._git(repo, "add", "--", path)

    def complete_merge(self, repo: PathLike, *, card_id: Optional[str] = None) -> MergeResult:
        repo_path = self._require_repo(repo)
        self.locks.check(repo_path, card_id)
        with self.locks.repo_lock(repo_path):
            remaining = self._unmerged_paths(repo_path)
            if remaining:
                raise BadRequestError(
                    f"Cannot complete merge: conflicts remain in {len(remaining)} file(s): {', '.join(remaining)}",
                    metadata={"conflicts": remaining},
                )
            if not (self._git_dir(repo_path) / "MERGE_HEAD").exists():
                raise BadRequestError("No merge in progress")
            self._git(repo_path, "commit", "--no-edit")
        self.locks.release(repo_path, card_id)
        self.logger.info("merge_completed", extra=self.log_extra(card_id=card_id))
        return MergeResult(success=True, message="Merge completed")

    def abort_merge(self, repo: PathLike, *, card_id: Optional[str] = None) -> None:
        repo_path = self._require_repo(repo)
        self.locks.check(repo_path, card_id)
        with self.locks.repo_lock(repo_path):
            if not (self._git_dir(repo_path) / "MERGE_HEAD").exists():
                raise BadRequestError("No merge in progress")
            self._git(repo_path, "merge", "--abort")
        self.locks.release(repo_path, card_id)
        self.logger.info("merge_aborted", extra=self.log_extra(card_id=card_id))

    # Pull requests
    def create_pr(self, repo: PathLike, branch: str, title: str, body: str) -> str:
        """Push the branch and open a PR with the GitHub CLI; returns its output (the URL)."""
        repo_path = self._require_repo(repo)
        base = self.default_branch(repo_path)
        self._git(repo_path, "push", "-u", "origin", branch)
        if shutil.which("gh") is None:
            raise GitCommandError("GitHub CLI (gh) is not installed")
        try:
            result = run_process(
                ["gh", "pr", "create", "--title", title, "--body", body, "--base", base, "--head", branch],
                cwd=repo_path,
            )
        except subprocess.CalledProcessError as exc:
            raise GitCommandError(f"GitHub PR creation failed: {(exc.stderr or '').strip()}") from exc
        url = (result.stdout or "").strip()
        if not url:
            raise GitCommandError("GitHub PR creation returned empty output")
        self.logger.info("pr_created", extra=self.log_extra(branch=branch, base=base, url=url))
        return url


def _parse_numstat(output: str) -> Dict[str, Tuple[int, int]]:
    counts: Dict[str, Tuple[int, int]] = {}
    for line in output.splitlines():
        parts = line.split("\t")
        if len(parts) < 3:
            continue
        added = int(parts[0]) if parts[0].isdigit() else 0
        deleted = int(parts[1]) if parts[1].isdigit() else 0
        counts[_renamed_path(parts[2])] = (added, deleted)
    return counts


def _renamed_path(path: str) -> str:
    """numstat renders renames as `old => new` or `dir/{old => new}/file`."""
    if " => " not in path:
        return path
    if "{" in path and "}" in path:
        prefix, rest = path.split("{", 1)
        inner, suffix = rest.split("}", 1)
        new = inner.split(" => ", 1)[1]
        return (prefix + new + suffix).replace("//", "/")
    return path.split(" => ", 1)[1]


def _looks_binary(blob: bytes) -> bool:
    return b"\0" in blob[:8000]


def _decode(blob: Optional[bytes]) -> Optional[str]:
    if blob is None:
        return None
    return blob.decode("utf-8", errors="replace")
