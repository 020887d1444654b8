from dataclasses import dataclass
from datetime import datetime
from datetime import timezone
import re
import shutil
import subprocess
import typing as t

from ddci.internal.logger import get_logger
from ddci.internal.telemetry.api import TelemetryAPI
from ddci.internal.telemetry.constants import GitCommand
from ddci.internal.utils import StopWatch


log = get_logger(__name__)


class GitTag:
    """Names of the ``git.*`` tags. Commit dates are ISO 8601 in UTC."""

    REPOSITORY_URL = "git.repository_url"
    COMMIT_SHA = "git.commit.sha"
    BRANCH = "git.branch"
    TAG = "git.tag"

    COMMIT_MESSAGE = "git.commit.message"
    COMMIT_AUTHOR_NAME = "git.commit.author.name"
    COMMIT_AUTHOR_EMAIL = "git.commit.author.email"
    COMMIT_AUTHOR_DATE = "git.commit.author.date"
    COMMIT_COMMITTER_NAME = "git.commit.committer.name"
    COMMIT_COMMITTER_EMAIL = "git.commit.committer.email"
    COMMIT_COMMITTER_DATE = "git.commit.committer.date"


# Every git tag can be overridden by the matching DD_GIT_* variable, e.g. DD_GIT_COMMIT_AUTHOR_NAME.
_DD_GIT_VARIABLES = {
    tag: "DD_" + tag.upper().replace(".", "_")
    for tag in (
        GitTag.REPOSITORY_URL,
        GitTag.COMMIT_SHA,
        GitTag.BRANCH,
        GitTag.TAG,
        GitTag.COMMIT_MESSAGE,
        GitTag.COMMIT_AUTHOR_NAME,
        GitTag.COMMIT_AUTHOR_EMAIL,
        GitTag.COMMIT_AUTHOR_DATE,
        GitTag.COMMIT_COMMITTER_NAME,
        GitTag.COMMIT_COMMITTER_EMAIL,
        GitTag.COMMIT_COMMITTER_DATE,
    )
}

# Author and committer of HEAD, tab separated, dates as unix timestamps.
_USER_INFO_FORMAT = "--format=%an\t%ae\t%at\t%cn\t%ce\t%ct"


@dataclass
class GitResult:
    stdout: str
    stderr: str
    return_code: int

    @property
    def ok(self) -> bool:
        return self.return_code == 0


@dataclass
class GitUserInfo:
    author_name: str
    author_email: str
    author_date: str
    committer_name: str
    committer_email: str
    committer_date: str

    @classmethod
    def from_output(cls, output: str) -> "GitUserInfo":
        an, ae, at, cn, ce, ct = (field.strip() for field in output.split("\t"))
        return cls(an, ae, _to_iso8601(at), cn, ce, _to_iso8601(ct))

    def to_tags(self) -> t.Dict[str, t.Optional[str]]:
        return {
            GitTag.COMMIT_AUTHOR_NAME: self.author_name,
            GitTag.COMMIT_AUTHOR_EMAIL: self.author_email,
            GitTag.COMMIT_AUTHOR_DATE: self.author_date,
            GitTag.COMMIT_COMMITTER_NAME: self.committer_name,
            GitTag.COMMIT_COMMITTER_EMAIL: self.committer_email,
            GitTag.COMMIT_COMMITTER_DATE: self.committer_date,
        }


def _to_iso8601(timestamp: str) -> str:
    return datetime.fromtimestamp(int(timestamp), tz=timezone.utc).isoformat()


class Git:
    """
    Read-only queries against the repository containing `cwd`.

    Every query returns an empty string when git fails, so callers only have to check for falsy values. Queries that
    the backend tracks report their duration and exit code to telemetry.
    """

    def __init__(self, cwd: t.Optional[str] = None):
        executable = shutil.which("git")
        if not executable:
            raise RuntimeError("`git` command not found")

        self.executable: str = executable
        self.cwd = cwd

    def run(self, *args: str) -> GitResult:
        command = [self.executable, *args]
        log.debug("Running git command: %r", command)

        completed = subprocess.run(
            command,
            capture_output=True,
            stdin=subprocess.DEVNULL,
            cwd=self.cwd,
            encoding="utf-8",
            errors="replace",
        )
        return GitResult(completed.stdout.strip(), completed.stderr.strip(), completed.returncode)

    def output(self, *args: str, command: t.Optional[GitCommand] = None) -> str:
        result: t.Optional[GitResult] = None
        with StopWatch() as stopwatch:
            try:
                result = self.run(*args)
            except OSError as e:
                log.debug("Could not run git %s: %s", " ".join(args), e)

        if command is not None:
            TelemetryAPI.get().record_git_command(
                command, stopwatch.elapsed(), result.return_code if result is not None else -1
            )

        if result is None:
            return ""
        if not result.ok:
            log.debug("git %s exited with %d: %s", " ".join(args), result.return_code, result.stderr)
            return ""
        return result.stdout

    def get_repository_url(self) -> str:
        return self.output("ls-remote", "--get-url", command=GitCommand.GET_REPOSITORY)

    def get_commit_sha(self) -> str:
        return self.output("rev-parse", "HEAD")

    def get_branch(self) -> str:
        return self.output("rev-parse", "--abbrev-ref", "HEAD", command=GitCommand.GET_BRANCH)

    def get_tag(self) -> str:
        return self.output("tag", "--points-at", "HEAD")

    def get_commit_message(self) -> str:
        return self.output("show", "-s", "--format=%s")

    def get_workspace_path(self) -> str:
        return self.output("rev-parse", "--show-toplevel")

    def get_user_info(self) -> t.Optional[GitUserInfo]:
        output = self.output("show", "-s", _USER_INFO_FORMAT)
        if not output:
            return None
        try:
            return GitUserInfo.from_output(output)
        except (ValueError, OverflowError, OSError):
            log.debug("Could not parse git commit users from %r", output)
            return None


def get_git_tags_from_git_command(cwd: t.Optional[str] = None) -> t.Dict[str, t.Optional[str]]:
    """Collect repository, commit and workspace tags from the local repository."""
    # ci imports this module.
    from ddci.internal.ci import CITag

    try:
        git = Git(cwd=cwd)
    except RuntimeError as e:
        log.debug("Local git metadata unavailable: %s", e)
        return {}

    tags: t.Dict[str, t.Optional[str]] = {
        CITag.WORKSPACE_PATH: git.get_workspace_path(),
        GitTag.REPOSITORY_URL: git.get_repository_url(),
        GitTag.COMMIT_SHA: git.get_commit_sha(),
        GitTag.BRANCH: git.get_branch(),
        GitTag.TAG: git.get_tag(),
        GitTag.COMMIT_MESSAGE: git.get_commit_message(),
    }
    user_info = git.get_user_info()
    if user_info is not None:
        tags.update(user_info.to_tags())
    return tags


# refs/, refs/heads/, origin/ and tags/ prefixes, stripped repeatedly.
_REF_PREFIX = re.compile(r"^(?:refs/heads/|refs/|origin/|tags/)")


def normalize_ref(name: t.Optional[str]) -> t.Optional[str]:
    if name is None:
        return None
    while True:
        stripped = _REF_PREFIX.sub("", name)
        if stripped == name:
            return name
        name = stripped


def is_ref_a_tag(ref: t.Optional[str]) -> bool:
    return bool(ref) and "tags/" in ref


def get_git_tags_from_dd_variables(env: t.Mapping[str, str]) -> t.Dict[str, str]:
    """Git tags set explicitly through ``DD_GIT_*`` variables; blank values are ignored."""
    return {tag: env[name] for tag, name in _DD_GIT_VARIABLES.items() if env.get(name, "").strip()}
