"""
Common utilities shared across the operator
"""

# Standard
from datetime import timedelta
from typing import Any, Optional
import hashlib
import json
import re

# Third Party
from kubernetes.utils import parse_quantity

# Local
from . import constants

__MISSING__ = "__MISSING__"


def nested_get(dct: dict, key: str, dflt=None) -> Any:
    """Helper to get values from a dict using 'foo.bar' key notation

    Args:
        dct:  dict
            The dict from which the key will be read
        key:  str
            Key that may contain '.' notation indicating dict nesting

    Returns:
        val:  Any
            Whatever is found at the given key or dflt if the key is not found.
            This includes missing intermediate dicts.
    """
    parts = key.split(constants.NESTED_DICT_DELIM)
    for i, part in enumerate(parts[:-1]):
        dct = dct.get(part, __MISSING__)
        if dct is __MISSING__:
            return dflt
        if not isinstance(dct, dict):
            raise TypeError(
                f"Intermediate key {constants.NESTED_DICT_DELIM.join(parts[:i])} is not a dict"
            )
    return dct.get(parts[-1], dflt)


## Time Functions ##############################################################

_time_delta_regex = re.compile(
    r"^((?P<hours>\d+?)h)?((?P<minutes>\d+?)m)?((?P<seconds>\d*\.?\d+?)s)?$"
)


def parse_time_delta(time_str: str) -> Optional[timedelta]:
    """Parse a string into a timedelta. Accepts values in the following
    formats: 1h, 5m, 10s, 1h30m, 2.5s

    Args:
        time_str: str
            The string representation of a timedelta

    Returns:
        result: Optional[timedelta]
            The parsed timedelta if one could be found
    """
    parts = _time_delta_regex.match(time_str.strip())
    if not parts or all(part is None for part in parts.groupdict().values()):
        return None
    time_params = {}
    for name, param in parts.groupdict().items():
        if param:
            time_params[name] = float(param)
    return timedelta(**time_params)


## Manifest Functions ##########################################################


def obj_to_hash(obj: Any) -> str:
    """Get the sha256 hex digest of the canonical json form of an object. Keys
    are sorted so that equal dicts always hash the same.
    """
    content = json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def is_subset(expected: Any, actual: Any) -> bool:
    """Determine whether everything in expected is also present in actual.
    Dicts may carry extra keys in actual (fields defaulted by the server), lists
    must match in length and compare element-wise.
    """
    if isinstance(expected, dict):
        return isinstance(actual, dict) and all(
            key in actual and is_subset(val, actual[key])
            for key, val in expected.items()
        )
    if isinstance(expected, list):
        return (
            isinstance(actual, list)
            and len(expected) == len(actual)
            and all(is_subset(exp, act) for exp, act in zip(expected, actual))
        )
    if expected == actual:
        return True
    # Resource quantities are canonicalized by the server (1000m -> 1)
    if isinstance(expected, str) and isinstance(actual, str):
        try:
            return parse_quantity(expected) == parse_quantity(actual)
        except ValueError:
            return False
    return False
