"""
Merge the layers of user-provided overrides onto the property spec defaults
and validate the result
"""

# Standard
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple

# First Party
import alog

# Local
from ..exceptions import OutOfRangeError, TypeMismatchError, UnknownKeyError
from ..utils import obj_to_hash
from .spec import Mutability, PropertySpecTable

log = alog.use_channel("MERGE")

# The section header of the rendered odoo.conf
CONFIG_SECTION = "options"


@dataclass(frozen=True)
class ConfigEntry:
    """A single validated key in a MergedConfig"""

    key: str
    value: Any
    text: str
    mutability: Mutability


@dataclass(frozen=True)
class MergedConfig:
    """The fully validated, precedence-resolved configuration for one role
    group. Entries are always sorted by key.
    """

    entries: Tuple[ConfigEntry, ...]

    @property
    def values(self) -> Dict[str, Any]:
        return {entry.key: entry.value for entry in self.entries}

    def get(self, key: str, dflt: Any = None) -> Any:
        for entry in self.entries:
            if entry.key == key:
                return entry.value
        return dflt

    def mutability_of(self, key: str) -> Optional[Mutability]:
        for entry in self.entries:
            if entry.key == key:
                return entry.mutability
        return None

    def serialize(self) -> str:
        """Render the config as an odoo.conf document with sorted keys"""
        lines = [f"[{CONFIG_SECTION}]"]
        lines.extend(f"{entry.key} = {entry.text}" for entry in self.entries)
        return "\n".join(lines) + "\n"

    def startup_hash(self) -> str:
        """Hash of the keys that only take effect on restart"""
        return obj_to_hash(
            {
                entry.key: entry.text
                for entry in self.entries
                if entry.mutability == Mutability.STARTUP
            }
        )

    def changed_keys(self, other: Optional["MergedConfig"]) -> List[str]:
        """Get the sorted list of keys whose rendered value differs"""
        mine = {entry.key: entry.text for entry in self.entries}
        theirs = {} if other is None else {e.key: e.text for e in other.entries}
        return sorted(
            key
            for key in set(mine) | set(theirs)
            if mine.get(key) != theirs.get(key)
        )


def validate_and_merge(
    specs: PropertySpecTable,
    global_overrides: Optional[Mapping[str, Any]],
    role_overrides: Optional[Mapping[str, Any]],
    role: Optional[str] = None,
) -> MergedConfig:
    """Validate the user overrides against the property spec and merge them
    with the defaults. The precedence is role group override, then global
    override, then the spec default for the role.

    Args:
        specs:  PropertySpecTable
            The loaded property spec
        global_overrides:  Optional[Mapping[str, Any]]
            Raw values that apply to every role group
        role_overrides:  Optional[Mapping[str, Any]]
            Raw values that apply to this role group only
        role:  Optional[str]
            The role of the role group. Keys that do not apply to this role
            are left out of the result.

    Returns:
        merged:  MergedConfig
            The merged configuration

    Raises:
        UnknownKeyError: an override names a key that is not in the spec, or a
            role override names a key that does not apply to the role
        TypeMismatchError: an override cannot be parsed as the declared type
        OutOfRangeError: an override parses but violates the rule
    """
    global_overrides = global_overrides or {}
    role_overrides = role_overrides or {}

    # Reject unknown keys before anything else so typos always fail closed
    for key in global_overrides:
        if key not in specs:
            raise UnknownKeyError(key)
    for key in role_overrides:
        if key not in specs or not specs[key].applies_to(role):
            raise UnknownKeyError(key)

    # Layer the raw values. Role overrides are applied last so they win.
    raw_values = {
        key: spec.default_for(role)
        for key, spec in specs.items()
        if spec.applies_to(role)
    }
    raw_values.update(
        {key: val for key, val in global_overrides.items() if key in raw_values}
    )
    raw_values.update(role_overrides)
    log.debug3("Raw merged values for role [%s]: %s", role, raw_values)

    entries = []
    for key in sorted(raw_values):
        spec = specs[key]
        raw = raw_values[key]
        try:
            value = spec.value_type.coerce(raw)
        except ValueError as err:
            log.debug2("Failed to coerce [%s]: %s", key, err)
            raise TypeMismatchError(key, spec.type_name) from err
        violated = spec.value_type.check(value)
        if violated is not None:
            raise OutOfRangeError(key, raw, violated)
        entries.append(
            ConfigEntry(
                key=key,
                value=value,
                text=spec.value_type.serialize(value),
                mutability=spec.mutability,
            )
        )
    return MergedConfig(entries=tuple(entries))
