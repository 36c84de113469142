"""
Render the service account the Odoo pods run as and its binding to the
operator's ClusterRole
"""

# Standard
from typing import Any, Dict

# Local
from .. import config
from ..schema import DesiredState
from .metadata import object_metadata, role_binding_name, service_account_name


def build_service_account(desired: DesiredState) -> Dict[str, Any]:
    return {
        "apiVersion": "v1",
        "kind": "ServiceAccount",
        "metadata": object_metadata(desired, None, service_account_name(desired)),
    }


def build_role_binding(desired: DesiredState) -> Dict[str, Any]:
    """Bind the cluster's service account to the configured ClusterRole inside
    the cluster's namespace
    """
    return {
        "apiVersion": "rbac.authorization.k8s.io/v1",
        "kind": "RoleBinding",
        "metadata": object_metadata(desired, None, role_binding_name(desired)),
        "roleRef": {
            "apiGroup": "rbac.authorization.k8s.io",
            "kind": "ClusterRole",
            "name": config.cluster_role_name,
        },
        "subjects": [
            {
                "kind": "ServiceAccount",
                "name": service_account_name(desired),
                "namespace": desired.namespace,
            }
        ],
    }
