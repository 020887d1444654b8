"""Detection of the container id sent to the agent in the ``Datadog-Container-ID`` header."""

import re
import typing as t

import attr

from ddci.internal.logger import get_logger


log = get_logger(__name__)

DEFAULT_CGROUP_FILE = "/proc/self/cgroup"

# Kubernetes pod and container UUIDs, with dashes or underscores, or the PCF/Garden form that has no suffix.
_UUID = r"[0-9a-f]{8}[-_][0-9a-f]{4}[-_][0-9a-f]{4}[-_][0-9a-f]{4}[-_][0-9a-f]{12}|([0-9a-f]{8}(-[0-9a-f]{4}){4}$)"
# Docker
_CONTAINER = r"[0-9a-f]{64}"
# ECS / Fargate tasks
_TASK = r"[0-9a-f]{32}-\d+"

_LINE_RE = re.compile(r"^(\d+):([^:]*):(.+)$")
_POD_RE = re.compile(r"pod(%s)(?:\.slice)?$" % _UUID)
_CONTAINER_RE = re.compile(r"(?:.+)?(%s|%s|%s)(?:\.scope)?$" % (_UUID, _CONTAINER, _TASK))


@attr.s(slots=True)
class CGroupInfo:
    id = attr.ib(type=str)
    groups = attr.ib(type=str)
    path = attr.ib(type=str)
    controllers = attr.ib(type=t.List[str], factory=list)
    container_id = attr.ib(type=t.Optional[str], default=None)
    pod_id = attr.ib(type=t.Optional[str], default=None)

    @classmethod
    def from_line(cls, line: str) -> t.Optional["CGroupInfo"]:
        """
        Parse one ``<id>:<controllers>:<path>`` line of a cgroup file.

        The container id is read from the last path segment and the pod id from the one before it, e.g.
        ``/kubepods/besteffort/pod<pod_id>/<container_id>``. Returns ``None`` for lines that are not cgroup entries.
        """
        match = _LINE_RE.match(line.strip())
        if match is None:
            return None

        id_, groups, path = match.groups()
        segments = path.split("/")

        container_id = None
        container_match = _CONTAINER_RE.match(segments.pop())
        if container_match:
            container_id = container_match.group(1)

        pod_id = None
        if segments:
            pod_match = _POD_RE.match(segments.pop())
            if pod_match:
                pod_id = pod_match.group(1)

        return cls(
            id=id_,
            groups=groups,
            path=path,
            controllers=[c.strip() for c in groups.split(",") if c.strip()],
            container_id=container_id,
            pod_id=pod_id,
        )


def get_container_id(cgroup_file: str = DEFAULT_CGROUP_FILE) -> t.Optional[str]:
    """The id of the container this process runs in, or ``None`` outside of a container."""
    try:
        with open(cgroup_file) as fp:
            for line in fp:
                info = CGroupInfo.from_line(line)
                if info is not None and info.container_id:
                    return info.container_id
    except FileNotFoundError:
        pass
    except (OSError, UnicodeDecodeError):
        log.debug("Failed to read cgroup file %r", cgroup_file, exc_info=True)
    return None
