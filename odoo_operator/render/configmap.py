"""
Render the config artifact of a role group
"""

# Standard
from typing import Any, Dict

# Local
from .. import constants
from ..properties import MergedConfig
from ..schema import DesiredState, RoleGroup
from .metadata import config_map_name, object_metadata


def build_configmap(
    desired: DesiredState,
    role_group: RoleGroup,
    merged_config: MergedConfig,
) -> Dict[str, Any]:
    """The ConfigMap holds odoo.conf for the role group. The startup hash is
    kept on it so a later pass can tell whether restart-only keys changed.
    """
    metadata = object_metadata(desired, role_group, config_map_name(desired, role_group))
    metadata["annotations"] = {
        constants.STARTUP_CONFIG_HASH_ANNOTATION: merged_config.startup_hash(),
    }
    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": metadata,
        "data": {constants.CONFIG_FILE_NAME: merged_config.serialize()},
    }
