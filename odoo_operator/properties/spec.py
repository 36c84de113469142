"""
The property spec describes every configuration key an Odoo instance accepts
through the operator. It is loaded once at startup and never changes for the
lifetime of the process.
"""

# Standard
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple
import os

# Third Party
import yaml

# First Party
import alog

# Local
from ..exceptions import PropertySpecError, assert_property_spec
from .types import PROPERTY_VALUE_TYPES, ValueType, construct_value_type

log = alog.use_channel("PSPEC")

# The property spec document shipped with the operator
DEFAULT_PROPERTY_SPEC_PATH = os.path.join(
    os.path.dirname(__file__), "properties.yaml"
)

# Keys of a property entry that describe the property rather than its rule
_ENTRY_KEYS = ["key", "type", "default", "mutability", "roles", "roleDefaults"]
_DOC_KEYS = ["description"]


class Mutability(Enum):
    """When a change to a property takes effect"""

    # The application only reads the value when it starts
    STARTUP = "startup"

    # The application picks up the value from the mounted config artifact
    HOT_RELOAD = "hot-reload"


@dataclass(frozen=True)
class PropertySpec:
    """One configurable application setting"""

    key: str
    type_name: str
    value_type: ValueType = field(compare=False, repr=False)
    default: Any
    mutability: Mutability
    roles: Tuple[str, ...] = ()
    role_defaults: Mapping[str, Any] = field(default_factory=dict, compare=False)
    rule: Dict[str, Any] = field(default_factory=dict, compare=False)

    def applies_to(self, role: Optional[str]) -> bool:
        """A property with no roles listed applies to every role"""
        return not self.roles or role is None or role in self.roles

    def default_for(self, role: Optional[str]) -> Any:
        """Get the typed default value for the given role"""
        if role is not None and role in self.role_defaults:
            return self.role_defaults[role]
        return self.default


class PropertySpecTable(Mapping):
    """Read-only mapping from property key to PropertySpec"""

    def __init__(self, specs: List[PropertySpec]):
        self._specs = {spec.key: spec for spec in specs}

    def __getitem__(self, key: str) -> PropertySpec:
        return self._specs[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._specs)

    def __len__(self) -> int:
        return len(self._specs)

    def __repr__(self) -> str:
        return f"PropertySpecTable({sorted(self._specs)})"


## Loading #####################################################################


def load_property_specs(path: Optional[str] = None) -> PropertySpecTable:
    """Load the property spec document from disk

    Args:
        path:  Optional[str]
            The path to the document. If None, the document shipped with the
            operator is used.

    Returns:
        specs:  PropertySpecTable
            The validated, immutable table of properties

    Raises:
        PropertySpecError: if the document is missing or malformed
    """
    path = path or DEFAULT_PROPERTY_SPEC_PATH
    log.info("Loading property spec from [%s]", path)
    if not os.path.isfile(path):
        raise PropertySpecError(f"Property spec document not found: {path}")
    try:
        with open(path, encoding="utf-8") as handle:
            document = yaml.safe_load(handle)
    except yaml.YAMLError as err:
        raise PropertySpecError(
            f"Property spec document is not valid yaml: {err}"
        ) from err
    specs = parse_property_specs(document)
    log.debug("Loaded %d properties", len(specs))
    return specs


def parse_property_specs(document: Any) -> PropertySpecTable:
    """Parse and validate an already loaded property spec document"""
    assert_property_spec(
        isinstance(document, dict) and isinstance(document.get("properties"), list),
        "Property spec document must hold a 'properties' list",
    )
    specs = []
    seen_keys = set()
    for entry in document["properties"]:
        spec = _parse_entry(entry)
        assert_property_spec(
            spec.key not in seen_keys, f"Duplicate property key [{spec.key}]"
        )
        seen_keys.add(spec.key)
        specs.append(spec)
    return PropertySpecTable(specs)


def _parse_entry(entry: Any) -> PropertySpec:
    """Parse a single entry and make sure its defaults satisfy its own rule"""
    assert_property_spec(
        isinstance(entry, dict) and isinstance(entry.get("key"), str),
        f"Invalid property entry: {entry}",
    )
    key = entry["key"]
    type_name = entry.get("type")
    assert_property_spec(
        type_name in PROPERTY_VALUE_TYPES,
        f"Property [{key}] has unsupported type [{type_name}]",
    )
    assert_property_spec("default" in entry, f"Property [{key}] has no default")

    rule = {
        name: val
        for name, val in entry.items()
        if name not in _ENTRY_KEYS and name not in _DOC_KEYS
    }
    try:
        value_type = construct_value_type({"type": type_name, **rule})
        mutability = Mutability(entry.get("mutability", Mutability.STARTUP.value))
    except ValueError as err:
        raise PropertySpecError(f"Property [{key}] is invalid: {err}") from err

    roles = entry.get("roles") or []
    role_defaults = entry.get("roleDefaults") or {}
    assert_property_spec(
        isinstance(roles, list) and isinstance(role_defaults, dict),
        f"Property [{key}] has malformed roles",
    )

    default = _checked_default(key, value_type, entry["default"])
    role_defaults = {
        role: _checked_default(key, value_type, val)
        for role, val in role_defaults.items()
    }
    log.debug3("Parsed property [%s] of type [%s]", key, type_name)
    return PropertySpec(
        key=key,
        type_name=type_name,
        value_type=value_type,
        default=default,
        mutability=mutability,
        roles=tuple(roles),
        role_defaults=role_defaults,
        rule=rule,
    )


def _checked_default(key: str, value_type: ValueType, raw: Any) -> Any:
    try:
        value = value_type.coerce(raw)
    except ValueError as err:
        raise PropertySpecError(
            f"Default for [{key}] does not parse: {err}"
        ) from err
    violated = value_type.check(value)
    assert_property_spec(
        violated is None, f"Default for [{key}] violates its own rule: {violated}"
    )
    return value
