"""
The property spec engine: load the declared configuration keys and validate
user overrides against them
"""

# Local
from .merge import ConfigEntry, MergedConfig, validate_and_merge
from .spec import (
    DEFAULT_PROPERTY_SPEC_PATH,
    Mutability,
    PropertySpec,
    PropertySpecTable,
    load_property_specs,
    parse_property_specs,
)
from .types import PROPERTY_VALUE_TYPES, ValueType, construct_value_type
