"""
Module to validate values in a loaded config
"""

# Standard
from typing import Dict, List, Optional

# First Party
import aconfig
import alog

# Local
from .. import constants
from ..properties.types import ValueType, construct_value_type
from ..utils import nested_get

log = alog.use_channel("CONFG")


def get_invalid_params(
    config: aconfig.Config,
    validation_config: aconfig.Config,
) -> List[str]:
    """Get a list of any params that are invalid

    Args:
        config:  aconfig.Config
            The parsed config with any override values
        validation_config:  aconfig.Config
            The parallel config holding validation setup

    Returns:
        invalid_params:  List[str]
            A list of all string keys for parameters that fail validation
    """
    invalid_params = []
    for val_key, validator in _parse_validation_config(validation_config).items():
        if not validator.validate(nested_get(config, val_key)):
            log.warning("Found invalid config key [%s]", val_key)
            invalid_params.append(val_key)
    return invalid_params


def _parse_validation_config(
    validation_config: aconfig.Config,
    prefix_parts: Optional[List[str]] = None,
) -> Dict[str, ValueType]:
    """Recursively parse the given validation file into a dict of nested keys
    pointing to ValueType instances. A dict holding a "type" key describes a
    parameter, any other dict is a nested section.
    """
    output_dict = {}
    prefix_parts = prefix_parts or []
    for key, val in validation_config.items():
        assert isinstance(key, str), "Only string keys allowed!"
        assert isinstance(val, dict), f"Invalid validation entry for {key}"
        key_parts = prefix_parts + [key]
        if "type" in val:
            nested_key = constants.NESTED_DICT_DELIM.join(key_parts)
            log.debug3("Adding validator for [%s]", nested_key)
            output_dict[nested_key] = construct_value_type(val)
        else:
            output_dict.update(_parse_validation_config(val, key_parts))
    return output_dict
