"""
Typed representation of the OdooCluster custom resource
"""

# Standard
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple
import re

# Third Party
from kubernetes.utils import parse_quantity

# First Party
import alog

# Local
from .. import config, constants
from ..exceptions import ConfigError, assert_config

log = alog.use_channel("SCHMA")

# The cluster name prefixes Service names so it must be a DNS-1035 label, role
# group names only need to be DNS-1123 labels
_CLUSTER_NAME = re.compile(r"[a-z]([-a-z0-9]*[a-z0-9])?")
_DNS_LABEL = re.compile(r"[a-z0-9]([-a-z0-9]*[a-z0-9])?")

# Services must be DNS-1035 labels and StatefulSet names leave room for the
# revision hash suffix on the pod labels
MAX_SERVICE_NAME_LENGTH = 63
MAX_WORKLOAD_NAME_LENGTH = 52

PULL_POLICIES = ["Always", "IfNotPresent", "Never"]

# Volumes and mount paths every Odoo pod already carries
RESERVED_VOLUME_NAMES = [constants.CONFIG_VOLUME_NAME, constants.DATA_VOLUME_NAME]
RESERVED_MOUNT_PATHS = [constants.CONFIG_MOUNT_PATH, constants.DATA_MOUNT_PATH]

# Scheduling keys a role group may set on its pods
AFFINITY_KEYS = ["nodeAffinity", "podAffinity", "podAntiAffinity"]


class ListenerClass(Enum):
    """How the http endpoint of the web role groups is exposed"""

    CLUSTER_INTERNAL = "cluster-internal"
    EXTERNAL_UNSTABLE = "external-unstable"
    EXTERNAL_STABLE = "external-stable"

    @property
    def service_type(self) -> str:
        return {
            ListenerClass.CLUSTER_INTERNAL: "ClusterIP",
            ListenerClass.EXTERNAL_UNSTABLE: "NodePort",
            ListenerClass.EXTERNAL_STABLE: "LoadBalancer",
        }[self]


@dataclass(frozen=True)
class ResourceKey:
    """Identity of an OdooCluster used to key reconcile requests"""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass(frozen=True)
class ResourceSizing:
    cpu_min: str
    cpu_max: str
    memory_limit: str
    storage_capacity: str


# Default sizing per role when a role group does not declare its own
DEFAULT_SIZING = {
    constants.WEB_ROLE: {"cpu_min": "250m", "cpu_max": "1", "memory_limit": "2Gi"},
    constants.CRON_ROLE: {"cpu_min": "100m", "cpu_max": "500m", "memory_limit": "1Gi"},
}


@dataclass(frozen=True)
class RoleGroup:
    """A named set of instances sharing replicas, sizing and overrides"""

    name: str
    role: str
    replicas: int
    resources: ResourceSizing
    config_overrides: Mapping[str, Any] = field(default_factory=dict)
    affinity: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ImageSpec:
    version: str
    repo: str
    pull_policy: str = "IfNotPresent"
    pull_secrets: Tuple[str, ...] = ()

    @property
    def image(self) -> str:
        return f"{self.repo}:{self.version}"


@dataclass(frozen=True)
class ClusterConfig:
    credentials_secret: Optional[str] = None
    listener_class: ListenerClass = ListenerClass.CLUSTER_INTERNAL
    volumes: Tuple[Mapping[str, Any], ...] = ()
    volume_mounts: Tuple[Mapping[str, Any], ...] = ()


@dataclass(frozen=True)
class ClusterOperation:
    reconciliation_paused: bool = False
    stopped: bool = False


@dataclass(frozen=True)
class DesiredState:
    """The user-authored description of one Odoo cluster"""

    name: str
    namespace: str
    uid: str
    generation: int
    resource_version: Optional[str]
    image: ImageSpec
    role_groups: Tuple[RoleGroup, ...]
    config_overrides: Mapping[str, Any] = field(default_factory=dict)
    cluster_config: ClusterConfig = field(default_factory=ClusterConfig)
    cluster_operation: ClusterOperation = field(default_factory=ClusterOperation)

    @property
    def key(self) -> ResourceKey:
        return ResourceKey(namespace=self.namespace, name=self.name)

    @property
    def version(self) -> str:
        return self.image.version

    def role_group(self, name: str) -> Optional[RoleGroup]:
        for role_group in self.role_groups:
            if role_group.name == name:
                return role_group
        return None


## Parsing #####################################################################


def parse_desired_state(manifest: Mapping[str, Any]) -> DesiredState:
    """Parse an OdooCluster manifest into a DesiredState

    Args:
        manifest:  Mapping[str, Any]
            The full resource as read from the cluster

    Returns:
        desired_state:  DesiredState
            The typed desired state

    Raises:
        ConfigError: if the resource is not a valid OdooCluster
    """
    metadata = manifest.get("metadata") or {}
    spec = manifest.get("spec")
    name = metadata.get("name", "")
    namespace = metadata.get("namespace", "")
    assert_config(isinstance(spec, dict), f"{constants.KIND} {name} has no spec")
    assert_config(
        isinstance(name, str) and _CLUSTER_NAME.fullmatch(name),
        f"Invalid resource name [{name}]",
    )

    role_groups_spec = spec.get("roleGroups")
    assert_config(
        isinstance(role_groups_spec, list) and role_groups_spec,
        "spec.roleGroups must be a non-empty list",
    )
    role_groups = []
    seen_names = set()
    for role_group_spec in role_groups_spec:
        role_group = _parse_role_group(name, role_group_spec)
        assert_config(
            role_group.name not in seen_names,
            f"Duplicate role group name [{role_group.name}]",
        )
        seen_names.add(role_group.name)
        role_groups.append(role_group)

    desired_state = DesiredState(
        name=name,
        namespace=namespace,
        uid=metadata.get("uid", ""),
        generation=int(metadata.get("generation") or 0),
        resource_version=metadata.get("resourceVersion"),
        image=_parse_image(spec.get("image")),
        role_groups=tuple(role_groups),
        config_overrides=_parse_overrides(spec.get("configOverrides"), "spec"),
        cluster_config=_parse_cluster_config(spec.get("clusterConfig") or {}),
        cluster_operation=_parse_cluster_operation(
            spec.get("clusterOperation") or {}
        ),
    )
    log.debug3("Parsed desired state: %s", desired_state)
    return desired_state


def _parse_role_group(cluster_name: str, role_group_spec: Any) -> RoleGroup:
    assert_config(
        isinstance(role_group_spec, dict), f"Invalid role group: {role_group_spec}"
    )
    name = role_group_spec.get("name")
    assert_config(
        isinstance(name, str) and _DNS_LABEL.fullmatch(name),
        f"Invalid role group name [{name}]",
    )
    assert_config(
        len(f"{cluster_name}-{name}-headless") <= MAX_SERVICE_NAME_LENGTH
        and len(f"{cluster_name}-{name}-server") <= MAX_WORKLOAD_NAME_LENGTH,
        f"Role group name [{name}] is too long for cluster [{cluster_name}]",
    )

    role = role_group_spec.get("role", constants.WEB_ROLE)
    assert_config(
        role in constants.ALL_ROLES,
        f"Role group [{name}] has unknown role [{role}]. "
        f"Must be one of {constants.ALL_ROLES}",
    )

    replicas = role_group_spec.get("replicas", 1)
    assert_config(
        isinstance(replicas, int) and not isinstance(replicas, bool) and replicas >= 0,
        f"Role group [{name}] replicas must be a non-negative integer",
    )

    return RoleGroup(
        name=name,
        role=role,
        replicas=replicas,
        resources=_parse_resources(role, role_group_spec.get("resources") or {}),
        config_overrides=_parse_overrides(
            role_group_spec.get("configOverrides"), f"roleGroups[{name}]"
        ),
        affinity=_parse_affinity(name, role_group_spec.get("affinity")),
    )


def _parse_resources(role: str, resources: Dict[str, Any]) -> ResourceSizing:
    defaults = DEFAULT_SIZING[role]
    cpu = resources.get("cpu") or {}
    memory = resources.get("memory") or {}
    storage = resources.get("storage") or {}
    assert_config(
        all(isinstance(section, dict) for section in [cpu, memory, storage]),
        "Role group resources must hold cpu, memory and storage sections",
    )
    sizing = ResourceSizing(
        cpu_min=str(cpu.get("min", defaults["cpu_min"])),
        cpu_max=str(cpu.get("max", defaults["cpu_max"])),
        memory_limit=str(memory.get("limit", defaults["memory_limit"])),
        storage_capacity=str(
            storage.get("capacity", config.default_storage_capacity)
        ),
    )
    cpu_min = _parse_quantity("cpu.min", sizing.cpu_min)
    cpu_max = _parse_quantity("cpu.max", sizing.cpu_max)
    assert_config(
        cpu_min <= cpu_max,
        f"Role group resources cpu.min [{sizing.cpu_min}] is larger than "
        f"cpu.max [{sizing.cpu_max}]",
    )
    _parse_quantity("memory.limit", sizing.memory_limit)
    assert_config(
        _parse_quantity("storage.capacity", sizing.storage_capacity) > 0,
        "Role group resources storage.capacity must be larger than zero",
    )
    return sizing


def _parse_quantity(location: str, value: str) -> Decimal:
    """Parse a kubernetes quantity such as 250m or 2Gi"""
    try:
        quantity = parse_quantity(value)
    except (ValueError, TypeError) as err:
        raise ConfigError(
            f"Role group resources {location} [{value}] is not a valid quantity"
        ) from err
    assert_config(
        quantity >= 0, f"Role group resources {location} [{value}] is negative"
    )
    return quantity


def _parse_affinity(role_group_name: str, affinity: Any) -> Dict[str, Any]:
    if affinity is None:
        return {}
    assert_config(
        isinstance(affinity, dict) and set(affinity) <= set(AFFINITY_KEYS),
        f"roleGroups[{role_group_name}].affinity must be a mapping with keys "
        f"from {AFFINITY_KEYS}",
    )
    return dict(affinity)


def _parse_image(image: Any) -> ImageSpec:
    assert_config(isinstance(image, dict), "spec.image is required")
    version = image.get("productVersion")
    assert_config(
        isinstance(version, (str, int, float)) and str(version),
        "spec.image.productVersion is required",
    )
    pull_secrets = image.get("pullSecrets") or []
    assert_config(
        isinstance(pull_secrets, list), "spec.image.pullSecrets must be a list"
    )
    pull_policy = image.get("pullPolicy", "IfNotPresent")
    assert_config(
        pull_policy in PULL_POLICIES,
        f"Unknown spec.image.pullPolicy [{pull_policy}]. Must be one of "
        f"{PULL_POLICIES}",
    )
    return ImageSpec(
        version=str(version),
        repo=image.get("repo") or config.image_repository,
        pull_policy=pull_policy,
        pull_secrets=tuple(
            secret["name"] if isinstance(secret, dict) else str(secret)
            for secret in pull_secrets
        ),
    )


def _parse_cluster_config(cluster_config: Dict[str, Any]) -> ClusterConfig:
    listener_class = cluster_config.get(
        "listenerClass", ListenerClass.CLUSTER_INTERNAL.value
    )
    try:
        listener_class = ListenerClass(listener_class)
    except ValueError as err:
        raise ConfigError(f"Unknown listenerClass [{listener_class}]") from err
    volumes = _parse_volumes(cluster_config.get("volumes"))
    return ClusterConfig(
        credentials_secret=cluster_config.get("credentialsSecret"),
        listener_class=listener_class,
        volumes=tuple(volumes),
        volume_mounts=tuple(
            _parse_volume_mounts(
                cluster_config.get("volumeMounts"),
                RESERVED_VOLUME_NAMES + [volume["name"] for volume in volumes],
            )
        ),
    )


def _parse_volumes(volumes: Any) -> List[Dict[str, Any]]:
    """Extra pod volumes. Names must be unique and leave the operator's own
    volumes alone.
    """
    if volumes is None:
        return []
    assert_config(
        isinstance(volumes, list), "spec.clusterConfig.volumes must be a list"
    )
    seen_names = set()
    for volume in volumes:
        name = volume.get("name") if isinstance(volume, dict) else None
        assert_config(
            isinstance(name, str) and _DNS_LABEL.fullmatch(name),
            f"Invalid volume in spec.clusterConfig.volumes: {volume}",
        )
        assert_config(
            name not in RESERVED_VOLUME_NAMES and name not in seen_names,
            f"Volume name [{name}] is reserved or used twice",
        )
        seen_names.add(name)
    return [dict(volume) for volume in volumes]


def _parse_volume_mounts(mounts: Any, volume_names: List[str]) -> List[Dict[str, Any]]:
    """Extra container mounts. Each one must name a known volume and stay off
    the operator's mount paths.
    """
    if mounts is None:
        return []
    assert_config(
        isinstance(mounts, list), "spec.clusterConfig.volumeMounts must be a list"
    )
    for mount in mounts:
        assert_config(
            isinstance(mount, dict)
            and isinstance(mount.get("mountPath"), str)
            and mount["mountPath"].startswith("/"),
            f"Invalid mount in spec.clusterConfig.volumeMounts: {mount}",
        )
        assert_config(
            mount.get("name") in volume_names,
            f"Volume mount [{mount['mountPath']}] refers to unknown volume "
            f"[{mount.get('name')}]",
        )
        assert_config(
            mount["mountPath"].rstrip("/") not in RESERVED_MOUNT_PATHS,
            f"Mount path [{mount['mountPath']}] is reserved",
        )
    return [dict(mount) for mount in mounts]


def _parse_cluster_operation(cluster_operation: Dict[str, Any]) -> ClusterOperation:
    return ClusterOperation(
        reconciliation_paused=bool(cluster_operation.get("reconciliationPaused")),
        stopped=bool(cluster_operation.get("stopped")),
    )


def _parse_overrides(overrides: Any, location: str) -> Dict[str, Any]:
    if overrides is None:
        return {}
    assert_config(
        isinstance(overrides, dict),
        f"{location}.configOverrides must be a mapping",
    )
    return dict(overrides)
