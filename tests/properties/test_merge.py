"""
Tests for validating and merging config overrides
"""

# Third Party
import pytest

# Local
from odoo_operator import constants
from odoo_operator.exceptions import (
    ConfigError,
    OutOfRangeError,
    TypeMismatchError,
    UnknownKeyError,
)
from odoo_operator.properties import Mutability, validate_and_merge
from odoo_operator.test_helpers.helpers import make_property_specs


@pytest.fixture
def specs():
    return make_property_specs()


def test_defaults_only(specs):
    """Make sure defaults are used when nothing is overridden"""
    merged = validate_and_merge(specs, None, None, role=constants.WEB_ROLE)
    assert merged.get("max_connections") == 100
    assert merged.get("workers") == 2
    assert merged.get("http_port") == 8069


def test_role_defaults(specs):
    """Make sure role defaults replace the global default and role specific
    keys are left out for other roles
    """
    merged = validate_and_merge(specs, {}, {}, role=constants.CRON_ROLE)
    assert merged.get("workers") == 0
    assert "http_port" not in merged.values


def test_precedence(specs):
    """Make sure a role group override beats a global override"""
    merged = validate_and_merge(
        specs,
        {"max_connections": 200, "workers": 4},
        {"max_connections": 300},
        role=constants.WEB_ROLE,
    )
    assert merged.get("max_connections") == 300
    assert merged.get("workers") == 4


def test_global_key_for_other_role_is_skipped(specs):
    """Make sure a global key that only applies to web is skipped for cron"""
    merged = validate_and_merge(specs, {"http_port": 9000}, {}, role=constants.CRON_ROLE)
    assert "http_port" not in merged.values


def test_unknown_global_key(specs):
    """Make sure unknown keys fail closed"""
    with pytest.raises(UnknownKeyError) as exc_info:
        validate_and_merge(specs, {"max_conections": 1}, {}, role=constants.WEB_ROLE)
    assert exc_info.value.key == "max_conections"


def test_role_key_for_other_role(specs):
    """Make sure a role override with a key for another role is unknown"""
    with pytest.raises(UnknownKeyError):
        validate_and_merge(specs, {}, {"http_port": 9000}, role=constants.CRON_ROLE)


def test_type_mismatch(specs):
    """Make sure a value that does not parse is a TypeMismatchError"""
    with pytest.raises(TypeMismatchError) as exc_info:
        validate_and_merge(specs, {"max_connections": "abc"}, {}, role=constants.WEB_ROLE)
    assert exc_info.value.key == "max_connections"
    assert exc_info.value.expected_type == "int"
    assert isinstance(exc_info.value, ConfigError)


def test_out_of_range(specs):
    """Make sure a value that violates its rule is an OutOfRangeError"""
    with pytest.raises(OutOfRangeError) as exc_info:
        validate_and_merge(specs, {}, {"workers": 65}, role=constants.WEB_ROLE)
    assert exc_info.value.rule == "range [0, 64]"


def test_line_break_in_string_value(specs):
    """Make sure a string value cannot smuggle extra lines into odoo.conf"""
    with pytest.raises(OutOfRangeError) as exc_info:
        validate_and_merge(
            specs,
            {"dbfilter": ".*\nadmin_passwd = changed"},
            {},
            role=constants.WEB_ROLE,
        )
    assert exc_info.value.key == "dbfilter"
    assert exc_info.value.rule == "no control characters"


def test_duration_too_large(specs):
    """Make sure a duration beyond what a timedelta holds is a type mismatch"""
    with pytest.raises(TypeMismatchError) as exc_info:
        validate_and_merge(
            specs, {"limit_time_real": "99999999999h"}, {}, role=constants.WEB_ROLE
        )
    assert exc_info.value.key == "limit_time_real"


def test_serialize_is_sorted(specs):
    """Make sure the rendered config is sorted and stable"""
    merged = validate_and_merge(
        specs, {"list_db": "yes", "limit_time_real": "3m"}, {}, role=constants.WEB_ROLE
    )
    text = merged.serialize()
    lines = text.splitlines()
    assert lines[0] == "[options]"
    assert lines[1:] == sorted(lines[1:])
    assert "list_db = True" in lines
    assert "limit_time_real = 180" in lines
    assert text == validate_and_merge(
        specs, {"limit_time_real": "3m", "list_db": "yes"}, {}, role=constants.WEB_ROLE
    ).serialize()


def test_startup_hash_ignores_hot_reload_keys(specs):
    """Make sure only startup keys change the startup hash"""
    base = validate_and_merge(specs, {}, {}, role=constants.WEB_ROLE)
    hot = validate_and_merge(specs, {"log_level": "debug"}, {}, role=constants.WEB_ROLE)
    cold = validate_and_merge(specs, {"workers": 3}, {}, role=constants.WEB_ROLE)
    assert base.mutability_of("log_level") == Mutability.HOT_RELOAD
    assert base.startup_hash() == hot.startup_hash()
    assert base.startup_hash() != cold.startup_hash()
    assert base.changed_keys(hot) == ["log_level"]
    assert base.changed_keys(None) == sorted(base.values)
