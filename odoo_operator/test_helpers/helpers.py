"""
This module holds common helper functions for making testing easy
"""

# Standard
from contextlib import contextmanager
from typing import List, Optional
from unittest import mock
import copy
import inspect
import os

# First Party
import alog

# Local
from odoo_operator import constants
from odoo_operator.config import library_config as config_detail_dict
from odoo_operator.deploy_manager import DryRunDeployManager
from odoo_operator.properties import PropertySpecTable, parse_property_specs

log = alog.use_channel("TEST")


def configure_logging():
    alog.configure(
        os.environ.get("LOG_LEVEL", "off"),
        os.environ.get("LOG_FILTERS", ""),
        formatter="json"
        if os.environ.get("LOG_JSON", "").lower() == "true"
        else "pretty",
        thread_id=os.environ.get("LOG_THREAD_ID", "").lower() == "true",
    )


configure_logging()

TEST_INSTANCE_NAME = "demo"
TEST_INSTANCE_UID = "12345678-1234-1234-1234-123456789012"
TEST_NAMESPACE = "test"
SOME_OTHER_NAMESPACE = "somewhere"
TEST_PRODUCT_VERSION = "17.0"
TEST_CREDENTIALS_SECRET = "demo-db-credentials"


## Resources ###################################################################


def setup_cr(
    name=TEST_INSTANCE_NAME,
    namespace=TEST_NAMESPACE,
    role_groups=None,
    config_overrides=None,
    product_version=TEST_PRODUCT_VERSION,
    generation=1,
    **spec_overrides,
) -> dict:
    """Build an OdooCluster manifest with one web role group by default"""
    role_groups = (
        role_groups
        if role_groups is not None
        else [{"name": "default", "role": constants.WEB_ROLE, "replicas": 1}]
    )
    spec = {
        "image": {"productVersion": product_version},
        "clusterConfig": {"credentialsSecret": TEST_CREDENTIALS_SECRET},
        "roleGroups": copy.deepcopy(role_groups),
    }
    if config_overrides is not None:
        spec["configOverrides"] = copy.deepcopy(config_overrides)
    spec.update(copy.deepcopy(spec_overrides))
    return {
        "apiVersion": constants.API_VERSION,
        "kind": constants.KIND,
        "metadata": {
            "name": name,
            "namespace": namespace,
            "uid": TEST_INSTANCE_UID,
            "generation": generation,
        },
        "spec": spec,
    }


def make_property_specs(extra_properties: Optional[List[dict]] = None) -> PropertySpecTable:
    """Build a small property table covering every mutability and type"""
    properties = [
        {
            "key": "max_connections",
            "type": "int",
            "default": 100,
            "min": 1,
            "max": 10000,
            "mutability": "startup",
        },
        {
            "key": "workers",
            "type": "int",
            "default": 2,
            "min": 0,
            "max": 64,
            "mutability": "startup",
            "roleDefaults": {constants.CRON_ROLE: 0},
        },
        {
            "key": "http_port",
            "type": "int",
            "default": 8069,
            "min": 1024,
            "max": 65535,
            "mutability": "startup",
            "roles": [constants.WEB_ROLE],
        },
        {
            "key": "log_level",
            "type": "enum",
            "default": "info",
            "values": ["debug", "info", "warn", "error", "critical"],
            "mutability": "hot-reload",
        },
        {
            "key": "limit_time_real",
            "type": "duration",
            "default": "120s",
            "min": "1s",
            "max": "2h",
            "mutability": "startup",
        },
        {
            "key": "dbfilter",
            "type": "string",
            "default": ".*",
            "max_len": 256,
            "mutability": "startup",
        },
        {
            "key": "list_db",
            "type": "bool",
            "default": False,
            "mutability": "hot-reload",
        },
    ]
    properties.extend(extra_properties or [])
    return parse_property_specs({"properties": properties})


@contextmanager
def library_config(**config_overrides):
    """This context manager sets library config values temporarily and reverts
    them on completion
    """
    # Override the configs and hang onto the old values
    old_vals = {}
    for key, val in config_overrides.items():
        if key in config_detail_dict:
            old_vals[key] = config_detail_dict[key]
        config_detail_dict[key] = val

    # Yield to the context
    try:
        yield
    finally:
        # Revert to the old values
        for key in config_overrides:
            if key in old_vals:
                config_detail_dict[key] = old_vals[key]
            else:
                del config_detail_dict[key]


## Fault injection #############################################################


def get_failable_method(fail_flag, method):
    """Wrap a method so that it raises, calls out, or passes through based on
    the fail flag"""
    log.debug4(
        "Setting up failable mock of [%s] with fail flag: %s", str(method), fail_flag
    )

    def failable_method(*args, **kwargs):
        if isinstance(fail_flag, Exception) or (
            inspect.isclass(fail_flag) and issubclass(fail_flag, Exception)
        ):
            log.debug4("Raising in failable mock")
            raise fail_flag
        if callable(fail_flag):
            log.debug4("Calling callable fail flag")
            fail_flag(*args, **kwargs)
        log.debug4("Passing through (%s, **%s)", args, kwargs)
        return method(*args, **kwargs)

    return failable_method


class FailOnce:
    """Helper callable that raises on the N'th call and passes otherwise"""

    def __init__(self, fail_val: Exception, fail_number: int = 1):
        self.call_count = 0
        self.fail_number = fail_number
        self.fail_val = fail_val

    def __call__(self, *_, **__):
        self.call_count += 1
        if self.call_count == self.fail_number:
            log.debug("Failing on call %d with %s", self.call_count, self.fail_val)
            raise self.fail_val
        log.debug("Not failing on call %d", self.call_count)


class FailAlways:
    """Helper callable that raises on every call and counts them"""

    def __init__(self, fail_val: Exception):
        self.call_count = 0
        self.fail_val = fail_val

    def __call__(self, *_, **__):
        self.call_count += 1
        raise self.fail_val


class MockDeployManager(DryRunDeployManager):
    """The MockDeployManager wraps a standard DryRunDeployManager and adds
    configuration options to simulate failures in each of its operations.
    Every operation is a mock.Mock so tests can count calls.
    """

    def __init__(
        self,
        apply_fail=False,
        delete_fail=False,
        get_state_fail=False,
        filter_fail=False,
        set_status_fail=False,
        watch_fail=False,
        auto_enable=True,
        resources=None,
        **kwargs,
    ):
        super().__init__(resources, **kwargs)
        self.apply_fail = apply_fail
        self.delete_fail = delete_fail
        self.get_state_fail = get_state_fail
        self.filter_fail = filter_fail
        self.set_status_fail = set_status_fail
        self.watch_fail = watch_fail

        # If auto-enabling, turn the mocks on now
        if auto_enable:
            self.enable_mocks()

    #######################
    ## Helpers for Tests ##
    #######################

    def enable_mocks(self):
        """Turn the mocks on"""
        self.apply = mock.Mock(
            side_effect=get_failable_method(self.apply_fail, super().apply)
        )
        self.delete = mock.Mock(
            side_effect=get_failable_method(self.delete_fail, super().delete)
        )
        self.get_object_current_state = mock.Mock(
            side_effect=get_failable_method(
                self.get_state_fail, super().get_object_current_state
            )
        )
        self.filter_objects_current_state = mock.Mock(
            side_effect=get_failable_method(
                self.filter_fail, super().filter_objects_current_state
            )
        )
        self.set_status = mock.Mock(
            side_effect=get_failable_method(self.set_status_fail, super().set_status)
        )
        self.watch_objects = mock.Mock(
            side_effect=get_failable_method(self.watch_fail, super().watch_objects)
        )

    def reset_mocks(self):
        """Clear the call history of every mocked operation"""
        for method in [
            self.apply,
            self.delete,
            self.get_object_current_state,
            self.filter_objects_current_state,
            self.set_status,
            self.watch_objects,
        ]:
            method.reset_mock()

    def mutating_calls(self) -> int:
        """Number of apply and delete calls since the last reset"""
        return self.apply.call_count + self.delete.call_count

    def get_obj(self, kind, name, namespace=TEST_NAMESPACE, api_version=None):
        return DryRunDeployManager.get_object_current_state(
            self, kind, name, namespace, api_version
        )

    def has_obj(self, *args, **kwargs):
        return self.get_obj(*args, **kwargs) is not None

    def mark_workloads_ready(self, namespace=TEST_NAMESPACE):
        """Simulate the platform rolling out every StatefulSet"""
        for workload in DryRunDeployManager.filter_objects_current_state(
            self, "StatefulSet", namespace, "apps/v1"
        ):
            replicas = workload["spec"].get("replicas", 0)
            DryRunDeployManager.set_status(
                self,
                kind="StatefulSet",
                name=workload["metadata"]["name"],
                namespace=namespace,
                status={
                    "observedGeneration": workload["metadata"].get("generation"),
                    "replicas": replicas,
                    "readyReplicas": replicas,
                    "updatedReplicas": replicas,
                },
                api_version="apps/v1",
            )
