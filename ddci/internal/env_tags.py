import os
import typing as t

from ddci.internal import ci
from ddci.internal import git
from ddci.internal.ci import CITag
from ddci.internal.git import GitTag
from ddci.internal.utils import _filter_sensitive_info


_TagDict = t.Dict[str, t.Optional[str]]


def merge_tags(target: _TagDict, *tag_dicts: t.Mapping[str, t.Optional[str]]) -> None:
    """
    Overwrite tags in the `target` dictionary with tags from the `tag_dicts`.

    Tags in `tag_dicts` that have a None or empty value are ignored. If the same tag appears in multiple `tag_dicts`,
    the last non-empty occurrence wins.
    """
    for tag_dict in tag_dicts:
        for k, v in tag_dict.items():
            if v:  # not None or empty string
                target[k] = v


def get_env_tags(env: t.Optional[t.Mapping[str, str]] = None, cwd: t.Optional[str] = None) -> t.Dict[str, str]:
    """
    Build the CI and git tags describing the current run from an environment snapshot.

    Provider tags come first, then ``DD_GIT_*`` overrides. Refs and the repository URL are normalized, the workspace
    path has ``~`` expanded, and whatever is still missing is read from the local repository at `cwd`. Keys whose
    final value is empty or only whitespace are dropped. This function never raises for missing or broken git data.
    """
    if env is None:
        env = os.environ

    tags: _TagDict = {}
    merge_tags(tags, ci.get_ci_tags(env), git.get_git_tags_from_dd_variables(env))

    normalize_git_tags(tags)

    workspace_path = tags.get(CITag.WORKSPACE_PATH)
    if workspace_path and (workspace_path == "~" or workspace_path.startswith("~/")):
        # DEV: expanduser() reads HOME from os.environ, not from the snapshot.
        tags[CITag.WORKSPACE_PATH] = os.path.expanduser(workspace_path)

    for key, value in git.get_git_tags_from_git_command(cwd).items():
        if not tags.get(key):
            tags[key] = value
    tags[GitTag.REPOSITORY_URL] = _filter_sensitive_info(tags.get(GitTag.REPOSITORY_URL))

    return {k: v for k, v in tags.items() if v is not None and v.strip()}


def normalize_git_tags(tags: _TagDict) -> None:
    # if git.BRANCH is a tag, we associate its value to TAG instead of BRANCH
    branch = tags.get(GitTag.BRANCH)
    if git.is_ref_a_tag(branch):
        tags[GitTag.TAG] = branch
        del tags[GitTag.BRANCH]

    for key in (GitTag.TAG, GitTag.BRANCH):
        if key in tags:
            tags[key] = git.normalize_ref(tags[key])

    if GitTag.REPOSITORY_URL in tags:
        tags[GitTag.REPOSITORY_URL] = _filter_sensitive_info(tags[GitTag.REPOSITORY_URL])
