"""
The CustomResourceDefinition for OdooCluster
"""

# Standard
from typing import Any, Dict

# Local
from .. import constants
from .desired_state import AFFINITY_KEYS, PULL_POLICIES, ListenerClass


def _overrides_schema(description: str) -> Dict[str, Any]:
    return {
        "type": "object",
        "description": description,
        "x-kubernetes-preserve-unknown-fields": True,
    }


def _free_form_list(description: str) -> Dict[str, Any]:
    return {
        "type": "array",
        "description": description,
        "items": {"type": "object", "x-kubernetes-preserve-unknown-fields": True},
    }


def _role_group_schema() -> Dict[str, Any]:
    return {
        "type": "object",
        "required": ["name"],
        "properties": {
            "name": {"type": "string", "pattern": "^[a-z0-9]([-a-z0-9]*[a-z0-9])?$"},
            "role": {
                "type": "string",
                "enum": constants.ALL_ROLES,
                "default": constants.WEB_ROLE,
            },
            "replicas": {"type": "integer", "minimum": 0, "default": 1},
            "resources": {
                "type": "object",
                "properties": {
                    "cpu": {
                        "type": "object",
                        "properties": {
                            "min": {"x-kubernetes-int-or-string": True},
                            "max": {"x-kubernetes-int-or-string": True},
                        },
                    },
                    "memory": {
                        "type": "object",
                        "properties": {"limit": {"x-kubernetes-int-or-string": True}},
                    },
                    "storage": {
                        "type": "object",
                        "properties": {
                            "capacity": {"x-kubernetes-int-or-string": True}
                        },
                    },
                },
            },
            "configOverrides": _overrides_schema(
                "odoo.conf options for this role group only"
            ),
            "affinity": {
                "type": "object",
                "description": "Pod scheduling rules replacing the defaults",
                "properties": {
                    key: _overrides_schema(f"{key} of the pod template")
                    for key in AFFINITY_KEYS
                },
            },
        },
    }


def build_crd() -> Dict[str, Any]:
    """Build the CustomResourceDefinition manifest for OdooCluster"""
    spec_schema = {
        "type": "object",
        "required": ["image", "roleGroups"],
        "properties": {
            "image": {
                "type": "object",
                "required": ["productVersion"],
                "properties": {
                    "productVersion": {"type": "string"},
                    "repo": {"type": "string"},
                    "pullPolicy": {
                        "type": "string",
                        "enum": PULL_POLICIES,
                    },
                    "pullSecrets": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "properties": {"name": {"type": "string"}},
                        },
                    },
                },
            },
            "clusterConfig": {
                "type": "object",
                "properties": {
                    "credentialsSecret": {"type": "string"},
                    "listenerClass": {
                        "type": "string",
                        "enum": [listener.value for listener in ListenerClass],
                    },
                    "volumes": _free_form_list("Extra volumes for every Odoo pod"),
                    "volumeMounts": _free_form_list(
                        "Extra mounts for the Odoo container"
                    ),
                },
            },
            "clusterOperation": {
                "type": "object",
                "properties": {
                    "reconciliationPaused": {"type": "boolean", "default": False},
                    "stopped": {"type": "boolean", "default": False},
                },
            },
            "configOverrides": _overrides_schema(
                "odoo.conf options for every role group"
            ),
            "roleGroups": {"type": "array", "items": _role_group_schema()},
        },
    }
    return {
        "apiVersion": "apiextensions.k8s.io/v1",
        "kind": "CustomResourceDefinition",
        "metadata": {"name": f"{constants.PLURAL}.{constants.API_GROUP}"},
        "spec": {
            "group": constants.API_GROUP,
            "names": {
                "kind": constants.KIND,
                "plural": constants.PLURAL,
                "singular": constants.SINGULAR,
                "shortNames": ["odoo"],
            },
            "scope": "Namespaced",
            "versions": [
                {
                    "name": constants.API_VERSION_NAME,
                    "served": True,
                    "storage": True,
                    "subresources": {"status": {}},
                    "additionalPrinterColumns": [
                        {
                            "name": "Version",
                            "type": "string",
                            "jsonPath": ".spec.image.productVersion",
                        },
                        {
                            "name": "Phase",
                            "type": "string",
                            "jsonPath": ".status.phase",
                        },
                    ],
                    "schema": {
                        "openAPIV3Schema": {
                            "type": "object",
                            "properties": {
                                "spec": spec_schema,
                                "status": {
                                    "type": "object",
                                    "x-kubernetes-preserve-unknown-fields": True,
                                },
                            },
                        }
                    },
                }
            ],
        },
    }
