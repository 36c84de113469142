"""
Render the network endpoints of a role group
"""

# Standard
from typing import Any, Dict, List

# Local
from .. import constants
from ..properties import MergedConfig
from ..schema import DesiredState, RoleGroup
from .metadata import (
    headless_service_name,
    http_service_name,
    object_metadata,
    selector_labels,
)

DEFAULT_HTTP_PORT = 8069
DEFAULT_GEVENT_PORT = 8072


def http_ports(role_group: RoleGroup, merged_config: MergedConfig) -> List[Dict[str, Any]]:
    """The named ports a role group serves. Only the web role serves http."""
    if role_group.role != constants.WEB_ROLE:
        return []
    return [
        {
            "name": "http",
            "port": merged_config.get("http_port", DEFAULT_HTTP_PORT),
            "protocol": "TCP",
        },
        {
            "name": "longpolling",
            "port": merged_config.get("gevent_port", DEFAULT_GEVENT_PORT),
            "protocol": "TCP",
        },
    ]


def build_headless_service(
    desired: DesiredState,
    role_group: RoleGroup,
    merged_config: MergedConfig,
) -> Dict[str, Any]:
    """Headless service giving each pod of the role group a stable DNS name"""
    spec = {
        "clusterIP": "None",
        "publishNotReadyAddresses": True,
        "selector": selector_labels(desired, role_group),
    }
    ports = http_ports(role_group, merged_config)
    if ports:
        spec["ports"] = ports
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": object_metadata(
            desired, role_group, headless_service_name(desired, role_group)
        ),
        "spec": spec,
    }


def build_http_service(
    desired: DesiredState,
    role_group: RoleGroup,
    merged_config: MergedConfig,
) -> Dict[str, Any]:
    """Client facing service for a web role group. The type follows the
    listener class of the cluster.
    """
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": object_metadata(
            desired, role_group, http_service_name(desired, role_group)
        ),
        "spec": {
            "type": desired.cluster_config.listener_class.service_type,
            "selector": selector_labels(desired, role_group),
            "ports": [
                dict(port, targetPort=port["name"])
                for port in http_ports(role_group, merged_config)
            ],
        },
    }
