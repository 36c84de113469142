"""
The closed set of value types supported for configuration values. Each type
knows how to coerce a raw (often textual) value and how to check the coerced
value against its rule.
"""

# Standard
from datetime import timedelta
from typing import Any, Dict, List, Optional, Union
import abc
import builtins
import re

# First Party
import alog

# Local
from ..utils import parse_time_delta

log = alog.use_channel("VTYPE")

_TRUE_VALUES = ["true", "yes", "on", "1"]
_FALSE_VALUES = ["false", "no", "off", "0"]

# Line breaks and other control characters would end the key = value line
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


## Base Class ##################################################################

# NOTE: Pylint dislikes classes with few public members, but they're useful
#   here to define the inheritance structure
#
# pylint: disable=too-few-public-methods


class ValueType(abc.ABC):
    """A ValueType coerces raw values into a typed value and validates the
    result against an optional rule
    """

    TYPE_KEY = None

    def __init__(self, optional: bool = False):
        """
        Args:
            optional:  bool
                Whether or not None is an acceptable value
        """
        self.optional = optional

    def validate(self, value: Any) -> bool:
        """Run the full coerce and check for a value, reporting only whether it
        is valid
        """
        if self.optional and value is None:
            return True
        try:
            coerced = self.coerce(value)
        except ValueError as err:
            log.warning("Invalid type <%s>: %s", type(value), err)
            return False
        if self.check(coerced) is not None:
            log.warning("Invalid value [%s]", value)
            return False
        return True

    @abc.abstractmethod
    def coerce(self, raw: Any) -> Any:
        """Parse the raw value into this type

        Raises:
            ValueError: if the raw value cannot be represented as this type
        """

    def check(self, value: Any) -> Optional[str]:
        """Check the coerced value against this type's rule

        Returns:
            violated_rule:  Optional[str]
                None if the value is valid, otherwise the description of the
                violated rule
        """
        return None

    def serialize(self, value: Any) -> str:
        """Render a coerced value as text"""
        return str(value)


## Types #######################################################################


class _NumberType(ValueType):
    """A numeric value with optional inclusive bounds"""

    TYPE_KEY = "number"

    def __init__(
        self,
        *,
        min: Optional[Union[int, float]] = None,  # pylint: disable=redefined-builtin
        max: Optional[Union[int, float]] = None,  # pylint: disable=redefined-builtin
        **kwargs,
    ):
        """The builtin min/max names are used here so that the arguments have
        the appropriate intuitive names in yaml files
        """
        super().__init__(**kwargs)
        self._min = min
        self._max = max

    def coerce(self, raw: Any) -> Union[int, float]:
        if isinstance(raw, bool):
            raise ValueError(f"bool is not a {self.TYPE_KEY}")
        if isinstance(raw, (int, float)):
            return raw
        if isinstance(raw, str):
            return float(raw.strip())
        raise ValueError(f"Cannot parse {type(raw)} as {self.TYPE_KEY}")

    def check(self, value: Union[int, float]) -> Optional[str]:
        if (self._min is None or value >= self._min) and (
            self._max is None or value <= self._max
        ):
            return None
        return self.rule

    @property
    def rule(self) -> str:
        lower = "-inf" if self._min is None else self._min
        upper = "inf" if self._max is None else self._max
        return f"range [{lower}, {upper}]"


class _IntType(_NumberType):
    """A whole number value with optional inclusive bounds"""

    TYPE_KEY = "int"

    def coerce(self, raw: Any) -> int:
        if isinstance(raw, bool):
            raise ValueError("bool is not an int")
        if isinstance(raw, int):
            return raw
        if isinstance(raw, float) and raw.is_integer():
            return int(raw)
        if isinstance(raw, str):
            return int(raw.strip(), 10)
        raise ValueError(f"Cannot parse {raw!r} as int")


class _StringType(ValueType):
    """A string value with optional length bounds and pattern"""

    TYPE_KEY = "string"

    def __init__(
        self,
        *,
        min_len: Optional[int] = None,
        max_len: Optional[int] = None,
        pattern: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self._min_len = min_len
        self._max_len = max_len
        self._pattern = re.compile(pattern) if pattern is not None else None

    def coerce(self, raw: Any) -> str:
        if isinstance(raw, str):
            return raw
        if isinstance(raw, (int, float)) and not isinstance(raw, bool):
            return str(raw)
        raise ValueError(f"Cannot parse {type(raw)} as string")

    def check(self, value: str) -> Optional[str]:
        if _CONTROL_CHARS.search(value):
            return "no control characters"
        if self._min_len is not None and len(value) < self._min_len:
            return f"min length {self._min_len}"
        if self._max_len is not None and len(value) > self._max_len:
            return f"max length {self._max_len}"
        if self._pattern is not None and not self._pattern.fullmatch(value):
            return f"pattern {self._pattern.pattern}"
        return None


class _BoolType(ValueType):
    """A boolean flag. Textual values follow the usual yes/no spellings"""

    TYPE_KEY = "bool"

    def coerce(self, raw: Any) -> bool:
        if isinstance(raw, bool):
            return raw
        if isinstance(raw, str):
            lowered = raw.strip().lower()
            if lowered in _TRUE_VALUES:
                return True
            if lowered in _FALSE_VALUES:
                return False
        raise ValueError(f"Cannot parse {raw!r} as bool")

    def serialize(self, value: bool) -> str:
        return "True" if value else "False"


class _EnumType(ValueType):
    """A value from a fixed set"""

    TYPE_KEY = "enum"

    def __init__(self, *, values: List[Any], **kwargs):
        super().__init__(**kwargs)
        assert (
            isinstance(values, list) and values
        ), "Must specify at least one enum value!"
        self.values = values

    def coerce(self, raw: Any) -> Any:
        # Enum values may be strings or numbers so keep what was parsed, but
        # collections are never members
        if isinstance(raw, (dict, list)):
            raise ValueError(f"Cannot parse {type(raw)} as enum")
        for value in self.values:
            if str(value) == str(raw):
                return value
        return raw

    def check(self, value: Any) -> Optional[str]:
        if value in self.values:
            return None
        return f"one of {self.values}"


class _DurationType(ValueType):
    """A span of time. Accepts timedelta objects, a number of seconds, or text
    like 30s, 5m, 1h30m
    """

    TYPE_KEY = "duration"

    def __init__(
        self,
        *,
        min: Optional[Union[str, int]] = None,  # pylint: disable=redefined-builtin
        max: Optional[Union[str, int]] = None,  # pylint: disable=redefined-builtin
        **kwargs,
    ):
        super().__init__(**kwargs)
        self._min = None if min is None else self.coerce(min)
        self._max = None if max is None else self.coerce(max)

    def coerce(self, raw: Any) -> timedelta:
        if isinstance(raw, timedelta):
            return raw
        if isinstance(raw, bool):
            raise ValueError("bool is not a duration")
        try:
            if isinstance(raw, (int, float)):
                return timedelta(seconds=raw)
            if isinstance(raw, str):
                if raw.strip().isdigit():
                    return timedelta(seconds=int(raw.strip()))
                parsed = parse_time_delta(raw)
                if parsed is not None:
                    return parsed
        except OverflowError as err:
            raise ValueError(f"Duration {raw!r} is out of range") from err
        raise ValueError(f"Cannot parse {raw!r} as duration")

    def check(self, value: timedelta) -> Optional[str]:
        if (self._min is None or value >= self._min) and (
            self._max is None or value <= self._max
        ):
            return None
        lower = "0s" if self._min is None else f"{int(self._min.total_seconds())}s"
        upper = "inf" if self._max is None else f"{int(self._max.total_seconds())}s"
        return f"range [{lower}, {upper}]"

    def serialize(self, value: timedelta) -> str:
        return str(int(value.total_seconds()))


class _ListType(ValueType):
    """A list with optional constraints around the type and count of elements"""

    TYPE_KEY = "list"

    def __init__(
        self,
        *,
        min_len: Optional[int] = None,
        max_len: Optional[int] = None,
        item_type: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self._min_len = min_len
        self._max_len = max_len
        self._item_type = None
        if item_type is not None:
            assert hasattr(builtins, item_type), f"Unsupported item_type: {item_type}"
            self._item_type = getattr(builtins, item_type)

    def coerce(self, raw: Any) -> list:
        if isinstance(raw, (list, tuple)):
            return list(raw)
        raise ValueError(f"Cannot parse {type(raw)} as list")

    def check(self, value: list) -> Optional[str]:
        if (
            (self._min_len is None or len(value) >= self._min_len)
            and (self._max_len is None or len(value) <= self._max_len)
            and (
                self._item_type is None
                or all(isinstance(item, self._item_type) for item in value)
            )
        ):
            return None
        return f"list of {self._min_len or 0}..{self._max_len or 'inf'} items"


# pylint: enable=too-few-public-methods

## Factory #####################################################################


def _create_factory_map(type_class, factory_map=None):
    """Helper to recursively create the factory map"""
    factory_map = factory_map or {}
    if not type_class.__abstractmethods__:
        factory_map[type_class.TYPE_KEY] = type_class
    for subclass in type_class.__subclasses__():
        factory_map = _create_factory_map(subclass, factory_map)
    return factory_map


# Global map from type keys to value type classes
_factory_map = _create_factory_map(ValueType)

# The value types a property in the property spec may declare
PROPERTY_VALUE_TYPES = [
    _StringType.TYPE_KEY,
    _IntType.TYPE_KEY,
    _BoolType.TYPE_KEY,
    _EnumType.TYPE_KEY,
    _DurationType.TYPE_KEY,
]


def construct_value_type(type_args: Dict[str, Any]) -> ValueType:
    """Construct a ValueType from the given args parsed out of a yaml document

    Args:
        type_args:  Dict[str, Any]
            The key/value pairs for this type, including "type"

    Returns:
        value_type:  ValueType
            The constructed ValueType

    Raises:
        ValueError: if the type key is missing or unknown, or the remaining
            args do not fit the type
    """
    type_args = dict(type_args)
    type_key = type_args.pop("type", None)
    if not (isinstance(type_key, str) and type_key in _factory_map):
        raise ValueError(f"Unknown value type: {type_key}")
    try:
        return _factory_map[type_key](**type_args)
    except (TypeError, AssertionError, re.error) as err:
        raise ValueError(f"Invalid arguments for {type_key}: {err}") from err
