"""
CI provider detection.

Every supported provider is described by a :class:`Provider` entry in ``PROVIDERS``, keyed by a sentinel environment
variable. Entries are checked in order and the first one whose sentinel is present extracts the tags; when none
matches, no provider tags are produced and the local git fallback in ``env_tags`` supplies what it can.
"""

import json
import typing as t

import attr

from ddci.internal import git
from ddci.internal.git import GitTag
from ddci.internal.logger import get_logger
from ddci.internal.utils import _filter_sensitive_info


log = get_logger(__name__)


class CITag:
    """Names of the ``ci.*`` tags attached to every event of a run."""

    PROVIDER_NAME = "ci.provider.name"
    WORKSPACE_PATH = "ci.workspace_path"

    PIPELINE_ID = "ci.pipeline.id"
    PIPELINE_NAME = "ci.pipeline.name"
    PIPELINE_NUMBER = "ci.pipeline.number"
    PIPELINE_URL = "ci.pipeline.url"
    STAGE_NAME = "ci.stage.name"
    JOB_NAME = "ci.job.name"
    JOB_URL = "ci.job.url"

    NODE_NAME = "ci.node.name"
    NODE_LABELS = "ci.node.labels"

    # JSON object of the variables the backend uses to correlate a run with its pipeline.
    _CI_ENV_VARS = "_dd.ci.env_vars"


_TagDict = t.Dict[str, t.Optional[str]]
# One variable name, or several to try in order.
_Source = t.Union[str, t.Tuple[str, ...]]
TProviderFunction = t.Callable[[t.Mapping[str, str]], _TagDict]


def _lookup(env: t.Mapping[str, str], source: _Source) -> t.Optional[str]:
    if isinstance(source, str):
        return env.get(source)
    for name in source:
        value = env.get(name)
        if value:
            return value
    return None


def _json_list(values: t.List[str]) -> str:
    return json.dumps(values, separators=(",", ":"))


def _correlation_vars(env: t.Mapping[str, str], names: t.Iterable[str]) -> str:
    return json.dumps({name: env.get(name) for name in names}, separators=(",", ":"))


@attr.s(frozen=True)
class Provider:
    """
    Tag extraction for a single CI provider.

    ``tags`` maps a tag name to the variable (or ordered fallback variables) holding its value. ``correlation`` names
    the variables serialized into ``_dd.ci.env_vars``. ``computed`` derives the tags that are not a plain copy of one
    variable; its result is applied last.
    """

    name = attr.ib(type=str)
    tags = attr.ib(type=t.Mapping[str, _Source], factory=dict)
    correlation = attr.ib(type=t.Tuple[str, ...], default=())
    computed = attr.ib(type=t.Optional[TProviderFunction], default=None)

    def __call__(self, env: t.Mapping[str, str]) -> _TagDict:
        tags: _TagDict = {CITag.PROVIDER_NAME: self.name}
        tags.update((tag, _lookup(env, source)) for tag, source in self.tags.items())
        if self.correlation:
            tags[CITag._CI_ENV_VARS] = _correlation_vars(env, self.correlation)
        if self.computed is not None:
            tags.update(self.computed(env))
        return tags


def _appveyor(env: t.Mapping[str, str]) -> _TagDict:
    url = "https://ci.appveyor.com/project/%s/builds/%s" % (env.get("APPVEYOR_REPO_NAME"), env.get("APPVEYOR_BUILD_ID"))
    tags: _TagDict = {CITag.PIPELINE_URL: url, CITag.JOB_URL: url}

    # Repository details are only reliable for GitHub-hosted projects.
    if env.get("APPVEYOR_REPO_PROVIDER") == "github":
        tags[GitTag.REPOSITORY_URL] = "https://github.com/%s.git" % env.get("APPVEYOR_REPO_NAME")
        tags[GitTag.COMMIT_SHA] = env.get("APPVEYOR_REPO_COMMIT")
        tags[GitTag.BRANCH] = _lookup(env, ("APPVEYOR_PULL_REQUEST_HEAD_REPO_BRANCH", "APPVEYOR_REPO_BRANCH"))
        tags[GitTag.TAG] = env.get("APPVEYOR_REPO_TAG_NAME")

    message = env.get("APPVEYOR_REPO_COMMIT_MESSAGE")
    extended = env.get("APPVEYOR_REPO_COMMIT_MESSAGE_EXTENDED")
    tags[GitTag.COMMIT_MESSAGE] = "%s\n%s" % (message, extended) if message and extended else message
    return tags


def _azure_pipelines(env: t.Mapping[str, str]) -> _TagDict:
    server, project, build = (
        env.get("SYSTEM_TEAMFOUNDATIONSERVERURI"),
        env.get("SYSTEM_TEAMPROJECTID"),
        env.get("BUILD_BUILDID"),
    )
    if not (server and project and build):
        return {}
    pipeline_url = "%s%s/_build/results?buildId=%s" % (server, project, build)
    return {
        CITag.PIPELINE_URL: pipeline_url,
        CITag.JOB_URL: "%s&view=logs&j=%s&t=%s"
        % (pipeline_url, env.get("SYSTEM_JOBID"), env.get("SYSTEM_TASKINSTANCEID")),
    }


def _bitbucket(env: t.Mapping[str, str]) -> _TagDict:
    url = "https://bitbucket.org/%s/addon/pipelines/home#!/results/%s" % (
        env.get("BITBUCKET_REPO_FULL_NAME"),
        env.get("BITBUCKET_BUILD_NUMBER"),
    )
    return {
        CITag.PIPELINE_ID: env.get("BITBUCKET_PIPELINE_UUID", "").strip("{}") or None,
        CITag.PIPELINE_URL: url,
        CITag.JOB_URL: url,
    }


def _bitrise(env: t.Mapping[str, str]) -> _TagDict:
    message = env.get("BITRISE_GIT_MESSAGE")
    if not message:
        subject = env.get("GIT_CLONE_COMMIT_MESSAGE_SUBJECT")
        body = env.get("GIT_CLONE_COMMIT_MESSAGE_BODY")
        message = "%s:\n%s" % (subject, body) if subject or body else None
    return {GitTag.COMMIT_MESSAGE: message}


def _buddy(env: t.Mapping[str, str]) -> _TagDict:
    return {CITag.PIPELINE_ID: "%s/%s" % (env.get("BUDDY_PIPELINE_ID"), env.get("BUDDY_EXECUTION_ID"))}


def _buildkite(env: t.Mapping[str, str]) -> _TagDict:
    prefix = "BUILDKITE_AGENT_META_DATA_"
    labels = ["%s:%s" % (name[len(prefix) :].lower(), value) for name, value in env.items() if name.startswith(prefix)]
    return {
        CITag.JOB_URL: "%s#%s" % (env.get("BUILDKITE_BUILD_URL"), env.get("BUILDKITE_JOB_ID")),
        CITag.NODE_LABELS: _json_list(labels),
    }


def _circle_ci(env: t.Mapping[str, str]) -> _TagDict:
    return {CITag.PIPELINE_URL: "https://app.circleci.com/pipelines/workflows/%s" % env.get("CIRCLE_WORKFLOW_ID")}


def _github_actions(env: t.Mapping[str, str]) -> _TagDict:
    server_url = _filter_sensitive_info(env.get("GITHUB_SERVER_URL"))
    repository = env.get("GITHUB_REPOSITORY")
    run_id = env.get("GITHUB_RUN_ID")
    attempt = env.get("GITHUB_RUN_ATTEMPT")

    pipeline_url = "%s/%s/actions/runs/%s" % (server_url, repository, run_id)
    correlation = {"GITHUB_SERVER_URL": server_url, "GITHUB_REPOSITORY": repository, "GITHUB_RUN_ID": run_id}
    if attempt:
        pipeline_url += "/attempts/%s" % attempt
        correlation["GITHUB_RUN_ATTEMPT"] = attempt

    return {
        CITag.PIPELINE_URL: pipeline_url,
        CITag.JOB_URL: "%s/%s/commit/%s/checks" % (server_url, repository, env.get("GITHUB_SHA")),
        CITag._CI_ENV_VARS: json.dumps(correlation, separators=(",", ":")),
        GitTag.REPOSITORY_URL: "%s/%s.git" % (server_url, repository),
    }


def _gitlab(env: t.Mapping[str, str]) -> _TagDict:
    author = env.get("CI_COMMIT_AUTHOR") or ""
    if " <" not in author:
        return {}
    name, email = author.strip("> ").split(" <", 1)
    return {GitTag.COMMIT_AUTHOR_NAME: name, GitTag.COMMIT_AUTHOR_EMAIL: email}


def _jenkins(env: t.Mapping[str, str]) -> _TagDict:
    name = env.get("JOB_NAME")
    branch = git.normalize_ref(env.get("GIT_BRANCH"))
    if name and branch:
        name = name.replace("/" + branch, "")
    if name:
        # Matrix parameters ("k=v") show up as path segments of multibranch job names.
        name = "/".join(segment for segment in name.split("/") if segment and "=" not in segment)
    return {
        CITag.PIPELINE_NAME: name,
        CITag.NODE_LABELS: _json_list(env.get("NODE_LABELS", "").split()),
    }


def _travis(env: t.Mapping[str, str]) -> _TagDict:
    return {GitTag.REPOSITORY_URL: "https://github.com/%s.git" % env.get("TRAVIS_REPO_SLUG")}


PROVIDERS: t.List[t.Tuple[str, TProviderFunction]] = [
    (
        "APPVEYOR",
        Provider(
            "appveyor",
            {
                CITag.WORKSPACE_PATH: "APPVEYOR_BUILD_FOLDER",
                CITag.PIPELINE_ID: "APPVEYOR_BUILD_ID",
                CITag.PIPELINE_NAME: "APPVEYOR_REPO_NAME",
                CITag.PIPELINE_NUMBER: "APPVEYOR_BUILD_NUMBER",
                GitTag.COMMIT_AUTHOR_NAME: "APPVEYOR_REPO_COMMIT_AUTHOR",
                GitTag.COMMIT_AUTHOR_EMAIL: "APPVEYOR_REPO_COMMIT_AUTHOR_EMAIL",
            },
            computed=_appveyor,
        ),
    ),
    (
        "TF_BUILD",
        Provider(
            "azurepipelines",
            {
                CITag.WORKSPACE_PATH: "BUILD_SOURCESDIRECTORY",
                CITag.PIPELINE_ID: "BUILD_BUILDID",
                CITag.PIPELINE_NAME: "BUILD_DEFINITIONNAME",
                CITag.PIPELINE_NUMBER: "BUILD_BUILDID",
                CITag.STAGE_NAME: "SYSTEM_STAGEDISPLAYNAME",
                CITag.JOB_NAME: "SYSTEM_JOBDISPLAYNAME",
                GitTag.REPOSITORY_URL: ("SYSTEM_PULLREQUEST_SOURCEREPOSITORYURI", "BUILD_REPOSITORY_URI"),
                GitTag.COMMIT_SHA: ("SYSTEM_PULLREQUEST_SOURCECOMMITID", "BUILD_SOURCEVERSION"),
                GitTag.BRANCH: ("SYSTEM_PULLREQUEST_SOURCEBRANCH", "BUILD_SOURCEBRANCH", "BUILD_SOURCEBRANCHNAME"),
                GitTag.COMMIT_MESSAGE: "BUILD_SOURCEVERSIONMESSAGE",
                GitTag.COMMIT_AUTHOR_NAME: "BUILD_REQUESTEDFORID",
                GitTag.COMMIT_AUTHOR_EMAIL: "BUILD_REQUESTEDFOREMAIL",
            },
            correlation=("SYSTEM_TEAMPROJECTID", "BUILD_BUILDID", "SYSTEM_JOBID"),
            computed=_azure_pipelines,
        ),
    ),
    (
        "BITBUCKET_COMMIT",
        Provider(
            "bitbucket",
            {
                CITag.WORKSPACE_PATH: "BITBUCKET_CLONE_DIR",
                CITag.PIPELINE_NAME: "BITBUCKET_REPO_FULL_NAME",
                CITag.PIPELINE_NUMBER: "BITBUCKET_BUILD_NUMBER",
                GitTag.REPOSITORY_URL: ("BITBUCKET_GIT_SSH_ORIGIN", "BITBUCKET_GIT_HTTP_ORIGIN"),
                GitTag.COMMIT_SHA: "BITBUCKET_COMMIT",
                GitTag.BRANCH: "BITBUCKET_BRANCH",
                GitTag.TAG: "BITBUCKET_TAG",
            },
            computed=_bitbucket,
        ),
    ),
    (
        "BITRISE_BUILD_SLUG",
        Provider(
            "bitrise",
            {
                CITag.WORKSPACE_PATH: "BITRISE_SOURCE_DIR",
                CITag.PIPELINE_ID: "BITRISE_BUILD_SLUG",
                CITag.PIPELINE_NAME: "BITRISE_TRIGGERED_WORKFLOW_ID",
                CITag.PIPELINE_NUMBER: "BITRISE_BUILD_NUMBER",
                CITag.PIPELINE_URL: "BITRISE_BUILD_URL",
                GitTag.REPOSITORY_URL: "GIT_REPOSITORY_URL",
                GitTag.COMMIT_SHA: ("BITRISE_GIT_COMMIT", "GIT_CLONE_COMMIT_HASH"),
                GitTag.BRANCH: ("BITRISEIO_GIT_BRANCH_DEST", "BITRISE_GIT_BRANCH"),
                GitTag.TAG: "BITRISE_GIT_TAG",
                GitTag.COMMIT_AUTHOR_NAME: "GIT_CLONE_COMMIT_AUTHOR_NAME",
                GitTag.COMMIT_AUTHOR_EMAIL: "GIT_CLONE_COMMIT_AUTHOR_EMAIL",
                # Bitrise spells these with a single T.
                GitTag.COMMIT_COMMITTER_NAME: "GIT_CLONE_COMMIT_COMMITER_NAME",
                GitTag.COMMIT_COMMITTER_EMAIL: "GIT_CLONE_COMMIT_COMMITER_EMAIL",
            },
            computed=_bitrise,
        ),
    ),
    (
        "BUDDY",
        Provider(
            "buddy",
            {
                CITag.PIPELINE_NAME: "BUDDY_PIPELINE_NAME",
                CITag.PIPELINE_NUMBER: "BUDDY_EXECUTION_ID",
                CITag.PIPELINE_URL: "BUDDY_EXECUTION_URL",
                GitTag.REPOSITORY_URL: "BUDDY_SCM_URL",
                GitTag.COMMIT_SHA: "BUDDY_EXECUTION_REVISION",
                GitTag.BRANCH: "BUDDY_EXECUTION_BRANCH",
                GitTag.TAG: "BUDDY_EXECUTION_TAG",
                GitTag.COMMIT_MESSAGE: "BUDDY_EXECUTION_REVISION_MESSAGE",
                GitTag.COMMIT_COMMITTER_NAME: "BUDDY_EXECUTION_REVISION_COMMITTER_NAME",
                GitTag.COMMIT_COMMITTER_EMAIL: "BUDDY_EXECUTION_REVISION_COMMITTER_EMAIL",
            },
            computed=_buddy,
        ),
    ),
    (
        "BUILDKITE",
        Provider(
            "buildkite",
            {
                CITag.WORKSPACE_PATH: "BUILDKITE_BUILD_CHECKOUT_PATH",
                CITag.PIPELINE_ID: "BUILDKITE_BUILD_ID",
                CITag.PIPELINE_NAME: "BUILDKITE_PIPELINE_SLUG",
                CITag.PIPELINE_NUMBER: "BUILDKITE_BUILD_NUMBER",
                CITag.PIPELINE_URL: "BUILDKITE_BUILD_URL",
                CITag.NODE_NAME: "BUILDKITE_AGENT_ID",
                GitTag.REPOSITORY_URL: "BUILDKITE_REPO",
                GitTag.COMMIT_SHA: "BUILDKITE_COMMIT",
                GitTag.BRANCH: "BUILDKITE_BRANCH",
                GitTag.TAG: "BUILDKITE_TAG",
                GitTag.COMMIT_MESSAGE: "BUILDKITE_MESSAGE",
                GitTag.COMMIT_AUTHOR_NAME: "BUILDKITE_BUILD_AUTHOR",
                GitTag.COMMIT_AUTHOR_EMAIL: "BUILDKITE_BUILD_AUTHOR_EMAIL",
                GitTag.COMMIT_COMMITTER_NAME: "BUILDKITE_BUILD_CREATOR",
                GitTag.COMMIT_COMMITTER_EMAIL: "BUILDKITE_BUILD_CREATOR_EMAIL",
            },
            correlation=("BUILDKITE_BUILD_ID", "BUILDKITE_JOB_ID"),
            computed=_buildkite,
        ),
    ),
    (
        "CIRCLECI",
        Provider(
            "circleci",
            {
                CITag.WORKSPACE_PATH: "CIRCLE_WORKING_DIRECTORY",
                CITag.PIPELINE_ID: "CIRCLE_WORKFLOW_ID",
                CITag.PIPELINE_NAME: "CIRCLE_PROJECT_REPONAME",
                CITag.PIPELINE_NUMBER: "CIRCLE_BUILD_NUM",
                CITag.JOB_URL: "CIRCLE_BUILD_URL",
                CITag.JOB_NAME: "CIRCLE_JOB",
                GitTag.REPOSITORY_URL: "CIRCLE_REPOSITORY_URL",
                GitTag.COMMIT_SHA: "CIRCLE_SHA1",
                GitTag.BRANCH: "CIRCLE_BRANCH",
                GitTag.TAG: "CIRCLE_TAG",
            },
            correlation=("CIRCLE_WORKFLOW_ID", "CIRCLE_BUILD_NUM"),
            computed=_circle_ci,
        ),
    ),
    (
        "CF_BUILD_ID",
        Provider(
            "codefresh",
            {
                CITag.PIPELINE_ID: "CF_BUILD_ID",
                CITag.PIPELINE_NAME: "CF_PIPELINE_NAME",
                CITag.PIPELINE_URL: "CF_BUILD_URL",
                CITag.JOB_NAME: "CF_STEP_NAME",
                GitTag.BRANCH: "CF_BRANCH",
            },
            correlation=("CF_BUILD_ID",),
        ),
    ),
    (
        "GITHUB_SHA",
        Provider(
            "github",
            {
                CITag.WORKSPACE_PATH: "GITHUB_WORKSPACE",
                CITag.PIPELINE_ID: "GITHUB_RUN_ID",
                CITag.PIPELINE_NAME: "GITHUB_WORKFLOW",
                CITag.PIPELINE_NUMBER: "GITHUB_RUN_NUMBER",
                CITag.JOB_NAME: "GITHUB_JOB",
                GitTag.COMMIT_SHA: "GITHUB_SHA",
                GitTag.BRANCH: ("GITHUB_HEAD_REF", "GITHUB_REF"),
            },
            computed=_github_actions,
        ),
    ),
    (
        "GITLAB_CI",
        Provider(
            "gitlab",
            {
                CITag.WORKSPACE_PATH: "CI_PROJECT_DIR",
                CITag.PIPELINE_ID: "CI_PIPELINE_ID",
                CITag.PIPELINE_NAME: "CI_PROJECT_PATH",
                CITag.PIPELINE_NUMBER: "CI_PIPELINE_IID",
                CITag.PIPELINE_URL: "CI_PIPELINE_URL",
                CITag.STAGE_NAME: "CI_JOB_STAGE",
                CITag.JOB_NAME: "CI_JOB_NAME",
                CITag.JOB_URL: "CI_JOB_URL",
                CITag.NODE_NAME: "CI_RUNNER_ID",
                CITag.NODE_LABELS: "CI_RUNNER_TAGS",
                GitTag.REPOSITORY_URL: "CI_REPOSITORY_URL",
                GitTag.COMMIT_SHA: "CI_COMMIT_SHA",
                GitTag.BRANCH: "CI_COMMIT_REF_NAME",
                GitTag.TAG: "CI_COMMIT_TAG",
                GitTag.COMMIT_MESSAGE: "CI_COMMIT_MESSAGE",
                GitTag.COMMIT_AUTHOR_DATE: "CI_COMMIT_TIMESTAMP",
            },
            correlation=("CI_PROJECT_URL", "CI_PIPELINE_ID", "CI_JOB_ID"),
            computed=_gitlab,
        ),
    ),
    (
        "JENKINS_URL",
        Provider(
            "jenkins",
            {
                CITag.WORKSPACE_PATH: "WORKSPACE",
                CITag.PIPELINE_ID: "BUILD_TAG",
                CITag.PIPELINE_NUMBER: "BUILD_NUMBER",
                CITag.PIPELINE_URL: "BUILD_URL",
                CITag.NODE_NAME: "NODE_NAME",
                GitTag.REPOSITORY_URL: ("GIT_URL", "GIT_URL_1"),
                GitTag.COMMIT_SHA: "GIT_COMMIT",
                GitTag.BRANCH: "GIT_BRANCH",
            },
            correlation=("DD_CUSTOM_TRACE_ID",),
            computed=_jenkins,
        ),
    ),
    (
        "TEAMCITY_VERSION",
        Provider(
            "teamcity",
            {CITag.JOB_URL: "BUILD_URL", CITag.JOB_NAME: "TEAMCITY_BUILDCONF_NAME"},
        ),
    ),
    (
        "TRAVIS",
        Provider(
            "travisci",
            {
                CITag.WORKSPACE_PATH: "TRAVIS_BUILD_DIR",
                CITag.PIPELINE_ID: "TRAVIS_BUILD_ID",
                CITag.PIPELINE_NAME: "TRAVIS_REPO_SLUG",
                CITag.PIPELINE_NUMBER: "TRAVIS_BUILD_NUMBER",
                CITag.PIPELINE_URL: "TRAVIS_BUILD_WEB_URL",
                CITag.JOB_URL: "TRAVIS_JOB_WEB_URL",
                GitTag.COMMIT_SHA: "TRAVIS_COMMIT",
                GitTag.BRANCH: ("TRAVIS_PULL_REQUEST_BRANCH", "TRAVIS_BRANCH"),
                GitTag.TAG: "TRAVIS_TAG",
                GitTag.COMMIT_MESSAGE: "TRAVIS_COMMIT_MESSAGE",
            },
            computed=_travis,
        ),
    ),
]


def get_provider(env: t.Mapping[str, str]) -> t.Optional[t.Tuple[str, TProviderFunction]]:
    return next(((key, extract) for key, extract in PROVIDERS if key in env), None)


def get_ci_tags(env: t.Mapping[str, str]) -> _TagDict:
    """Extract tags from CI provider environment variables."""
    provider = get_provider(env)
    if provider is None:
        return {}

    key, extract = provider
    try:
        return extract(env)
    except Exception:
        log.debug("Could not extract CI tags for provider %s", key, exc_info=True)
        return {}
