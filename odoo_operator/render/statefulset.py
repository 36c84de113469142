"""
Render the workload of a role group
"""

# Standard
from typing import Any, Dict, List

# Local
from .. import constants
from ..properties import MergedConfig
from ..schema import DesiredState, RoleGroup
from .metadata import (
    config_map_name,
    headless_service_name,
    instance_labels,
    object_metadata,
    recommended_labels,
    selector_labels,
    service_account_name,
    workload_name,
)
from .service import http_ports

# The uid of the odoo user in the upstream image
ODOO_FS_GROUP = 101

# Mapping from container env var to the key in the credentials secret. These
# are the variables the upstream image entrypoint turns into db arguments.
CREDENTIALS_ENV = [
    ("HOST", "host", False),
    ("PORT", "port", True),
    ("USER", "user", False),
    ("PASSWORD", "password", False),
]

PROBE_INITIAL_DELAY_SECONDS = 20
PROBE_PERIOD_SECONDS = 5

# Preferred scheduling weights. Pods of a cluster lean towards sharing nodes
# while pods of the same role lean harder towards spreading out.
CLUSTER_AFFINITY_WEIGHT = 20
ROLE_ANTI_AFFINITY_WEIGHT = 70
TOPOLOGY_KEY = "kubernetes.io/hostname"


def _credentials_env(desired: DesiredState) -> List[Dict[str, Any]]:
    secret_name = desired.cluster_config.credentials_secret
    if not secret_name:
        return []
    return [
        {
            "name": env_name,
            "valueFrom": {
                "secretKeyRef": {"name": secret_name, "key": key, "optional": optional}
            },
        }
        for env_name, key, optional in CREDENTIALS_ENV
    ]


def _tcp_probe() -> Dict[str, Any]:
    return {
        "tcpSocket": {"port": "http"},
        "initialDelaySeconds": PROBE_INITIAL_DELAY_SECONDS,
        "periodSeconds": PROBE_PERIOD_SECONDS,
    }


def _preferred_term(weight: int, match_labels: Dict[str, str]) -> Dict[str, Any]:
    return {
        "weight": weight,
        "podAffinityTerm": {
            "labelSelector": {"matchLabels": match_labels},
            "topologyKey": TOPOLOGY_KEY,
        },
    }


def _affinity(desired: DesiredState, role_group: RoleGroup) -> Dict[str, Any]:
    """Default pod placement for a role group. Keys the role group sets itself
    replace the matching defaults.
    """
    role_labels = instance_labels(desired)
    role_labels[constants.COMPONENT_LABEL] = role_group.role
    affinity = {
        "podAffinity": {
            "preferredDuringSchedulingIgnoredDuringExecution": [
                _preferred_term(CLUSTER_AFFINITY_WEIGHT, instance_labels(desired))
            ]
        },
        "podAntiAffinity": {
            "preferredDuringSchedulingIgnoredDuringExecution": [
                _preferred_term(ROLE_ANTI_AFFINITY_WEIGHT, role_labels)
            ]
        },
    }
    affinity.update(role_group.affinity)
    return affinity


def _container(
    desired: DesiredState,
    role_group: RoleGroup,
    merged_config: MergedConfig,
) -> Dict[str, Any]:
    sizing = role_group.resources
    container = {
        "name": constants.CONTAINER_NAME,
        "image": desired.image.image,
        "imagePullPolicy": desired.image.pull_policy,
        "args": [
            "odoo",
            f"--config={constants.CONFIG_MOUNT_PATH}/{constants.CONFIG_FILE_NAME}",
        ],
        "resources": {
            "requests": {"cpu": sizing.cpu_min, "memory": sizing.memory_limit},
            "limits": {"cpu": sizing.cpu_max, "memory": sizing.memory_limit},
        },
        "volumeMounts": [
            {
                "name": constants.CONFIG_VOLUME_NAME,
                "mountPath": constants.CONFIG_MOUNT_PATH,
            },
            {
                "name": constants.DATA_VOLUME_NAME,
                "mountPath": constants.DATA_MOUNT_PATH,
            },
        ]
        + [dict(mount) for mount in desired.cluster_config.volume_mounts],
    }
    env = _credentials_env(desired)
    if env:
        container["env"] = env
    ports = http_ports(role_group, merged_config)
    if ports:
        container["ports"] = [
            {
                "name": port["name"],
                "containerPort": port["port"],
                "protocol": port["protocol"],
            }
            for port in ports
        ]
        if merged_config.get("http_enable", True):
            container["readinessProbe"] = _tcp_probe()
            container["livenessProbe"] = _tcp_probe()
    return container


def build_statefulset(
    desired: DesiredState,
    role_group: RoleGroup,
    merged_config: MergedConfig,
) -> Dict[str, Any]:
    """Build the StatefulSet for a role group.

    The pod template carries the hash of the startup-only keys, so a change to
    any of them rolls the pods while hot-reload keys only touch the ConfigMap.
    A stopped cluster keeps its objects but scales every workload to zero.
    """
    replicas = 0 if desired.cluster_operation.stopped else role_group.replicas
    pod_spec = {
        "containers": [_container(desired, role_group, merged_config)],
        "serviceAccountName": service_account_name(desired),
        "securityContext": {"fsGroup": ODOO_FS_GROUP},
        "affinity": _affinity(desired, role_group),
        "volumes": [
            {
                "name": constants.CONFIG_VOLUME_NAME,
                "configMap": {"name": config_map_name(desired, role_group)},
            }
        ]
        + [dict(volume) for volume in desired.cluster_config.volumes],
    }
    if desired.image.pull_secrets:
        pod_spec["imagePullSecrets"] = [
            {"name": secret} for secret in desired.image.pull_secrets
        ]
    return {
        "apiVersion": "apps/v1",
        "kind": "StatefulSet",
        "metadata": object_metadata(
            desired, role_group, workload_name(desired, role_group)
        ),
        "spec": {
            "replicas": replicas,
            "serviceName": headless_service_name(desired, role_group),
            "podManagementPolicy": "Parallel",
            "updateStrategy": {"type": "RollingUpdate"},
            "selector": {"matchLabels": selector_labels(desired, role_group)},
            "template": {
                "metadata": {
                    "labels": recommended_labels(desired, role_group),
                    "annotations": {
                        constants.STARTUP_CONFIG_HASH_ANNOTATION: merged_config.startup_hash(),
                    },
                },
                "spec": pod_spec,
            },
            "volumeClaimTemplates": [
                {
                    "metadata": {"name": constants.DATA_VOLUME_NAME},
                    "spec": {
                        "accessModes": ["ReadWriteOnce"],
                        "resources": {
                            "requests": {
                                "storage": role_group.resources.storage_capacity
                            }
                        },
                    },
                }
            ],
        },
    }
