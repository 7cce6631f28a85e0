import re

from .client import ContainerInfo

COMPOSE_PROJECT_LABEL = "com.docker.compose.project"
# TrueNAS apps are deployed as compose projects named "ix-<appname>"
TRUENAS_APP_PREFIX = "ix-"
INSTANCE_SUFFIX_PATTERN = re.compile(r"-\d+$")


def app_name(container: ContainerInfo) -> str:
    """
    compose project if labelled, otherwise the container name
    without the TrueNAS prefix and the trailing instance number ("-1")
    """
    project = container.labels.get(COMPOSE_PROJECT_LABEL)
    if project is not None:
        return project.removeprefix(TRUENAS_APP_PREFIX)

    name = container.name.removeprefix(TRUENAS_APP_PREFIX)
    match = INSTANCE_SUFFIX_PATTERN.search(name)
    if match is not None and match.start() > 0:
        name = name[: match.start()]
    return name


def app_name_from_network(network_name: str) -> str:
    """
    TrueNAS apps create networks named "ix-<appname>_<suffix>"
    other networks do not carry an app name
    """
    if not network_name.startswith(TRUENAS_APP_PREFIX):
        return ""
    name = network_name.removeprefix(TRUENAS_APP_PREFIX)
    underscore_index = name.find("_")
    if underscore_index > 0:
        return name[:underscore_index]
    return name
