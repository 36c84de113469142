"""
Names, labels and object metadata shared by every rendered object
"""

# Standard
from typing import Any, Dict, Optional

# Local
from .. import constants
from ..deploy_manager.owner_references import make_owner_reference
from ..schema import DesiredState, RoleGroup


def config_map_name(desired: DesiredState, role_group: RoleGroup) -> str:
    return f"{desired.name}-{role_group.name}-config"


def workload_name(desired: DesiredState, role_group: RoleGroup) -> str:
    return f"{desired.name}-{role_group.name}-server"


def headless_service_name(desired: DesiredState, role_group: RoleGroup) -> str:
    return f"{desired.name}-{role_group.name}-headless"


def http_service_name(desired: DesiredState, role_group: RoleGroup) -> str:
    return f"{desired.name}-{role_group.name}-http"


def service_account_name(desired: DesiredState) -> str:
    return f"{desired.name}-serviceaccount"


def role_binding_name(desired: DesiredState) -> str:
    return f"{desired.name}-rolebinding"


def instance_labels(desired: DesiredState) -> Dict[str, str]:
    """Labels shared by every object of one OdooCluster. Used to find the
    objects the operator owns.
    """
    return {
        constants.NAME_LABEL: constants.APP_NAME,
        constants.INSTANCE_LABEL: desired.name,
        constants.MANAGED_BY_LABEL: constants.OPERATOR_NAME,
    }


def selector_labels(desired: DesiredState, role_group: RoleGroup) -> Dict[str, str]:
    """Labels that select the pods of a role group. These never include the
    version since workload selectors are immutable.
    """
    labels = instance_labels(desired)
    labels[constants.COMPONENT_LABEL] = role_group.role
    labels[constants.ROLE_GROUP_LABEL] = role_group.name
    return labels


def recommended_labels(desired: DesiredState, role_group: RoleGroup) -> Dict[str, str]:
    labels = selector_labels(desired, role_group)
    labels[constants.VERSION_LABEL] = desired.version
    return labels


def object_metadata(
    desired: DesiredState,
    role_group: Optional[RoleGroup],
    name: str,
) -> Dict[str, Any]:
    """Build the metadata block for an object owned by the OdooCluster. Objects
    shared by the whole cluster pass no role group and only carry the instance
    labels and the version.
    """
    if role_group is None:
        labels = instance_labels(desired)
        labels[constants.VERSION_LABEL] = desired.version
    else:
        labels = recommended_labels(desired, role_group)
    return {
        "name": name,
        "namespace": desired.namespace,
        "labels": labels,
        "ownerReferences": [
            make_owner_reference(
                api_version=constants.API_VERSION,
                kind=constants.KIND,
                name=desired.name,
                uid=desired.uid,
            )
        ],
    }
