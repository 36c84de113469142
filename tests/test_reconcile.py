"""
Tests for the Reconciler
"""

# Standard
from datetime import timedelta
from unittest import mock

# Third Party
import pytest

# Local
from odoo_operator import constants, status
from odoo_operator.deploy_manager import DryRunDeployManager
from odoo_operator.exceptions import PlatformError, PlatformErrorReason
from odoo_operator.reconcile import Reconciler, ReconciliationResult
from odoo_operator.schema import Phase, ResourceKey
from odoo_operator.test_helpers.helpers import (
    TEST_INSTANCE_NAME,
    TEST_NAMESPACE,
    FailOnce,
    MockDeployManager,
    library_config,
    make_property_specs,
    setup_cr,
)

## Helpers #####################################################################

KEY = ResourceKey(namespace=TEST_NAMESPACE, name=TEST_INSTANCE_NAME)
CONFIG_MAP = f"{TEST_INSTANCE_NAME}-default-config"
WORKLOAD = f"{TEST_INSTANCE_NAME}-default-server"

WEB_AND_CRON = [
    {"name": "default", "role": constants.WEB_ROLE, "replicas": 1},
    {"name": "jobs", "role": constants.CRON_ROLE, "replicas": 1},
]


def setup_reconciler(cr=None, **kwargs):
    """Build a reconciler over a mock cluster holding the given resource"""
    resources = [cr] if cr is not None else []
    dm = MockDeployManager(resources=resources, **kwargs)
    reconciler = Reconciler(dm, make_property_specs(), sleep=mock.Mock())
    return dm, reconciler


def reach_ready(dm, reconciler):
    """Run passes until the cluster is ready"""
    result = reconciler.reconcile(KEY)
    dm.mark_workloads_ready()
    result = reconciler.reconcile(KEY)
    assert result.phase == Phase.READY
    return result


def update_cr(dm, cr):
    """Write a new version of the resource the way a user would"""
    dm.apply(cr)
    dm.reset_mocks()


def cr_status(dm):
    return dm.get_obj(constants.KIND, TEST_INSTANCE_NAME).get("status", {})


def pod_template_hash(dm, name=WORKLOAD):
    workload = dm.get_obj("StatefulSet", name)
    return workload["spec"]["template"]["metadata"]["annotations"][
        constants.STARTUP_CONFIG_HASH_ANNOTATION
    ]


## Lifecycle ###################################################################


def test_new_cluster_becomes_ready():
    """Make sure a new cluster goes from Pending through Progressing to Ready"""
    dm, reconciler = setup_reconciler(setup_cr())

    result = reconciler.reconcile(KEY)
    first_status = dm.set_status.call_args_list[0].kwargs["status"]
    assert first_status[status.PHASE] == Phase.PENDING.value
    assert result.phase == Phase.PROGRESSING
    assert result.requeue
    assert result.requeue_after == timedelta(seconds=10)
    assert cr_status(dm)[status.PHASE] == Phase.PROGRESSING.value
    for kind, name in [
        ("ConfigMap", CONFIG_MAP),
        ("StatefulSet", WORKLOAD),
        ("Service", f"{TEST_INSTANCE_NAME}-default-headless"),
        ("Service", f"{TEST_INSTANCE_NAME}-default-http"),
    ]:
        assert dm.has_obj(kind, name)

    dm.mark_workloads_ready()
    result = reconciler.reconcile(KEY)
    assert result.phase == Phase.READY
    assert not result.requeue
    assert result.exception is None
    current = cr_status(dm)
    assert current[status.PHASE] == Phase.READY.value
    assert current[status.OBSERVED_GENERATION] == 1
    assert current[status.ROLE_GROUPS] == {
        "default": {"replicas": 1, "readyReplicas": 1}
    }
    assert (
        status.get_condition(status.READY_CONDITION, current)["status"] == "True"
    )


def test_apply_order():
    """Make sure the ConfigMap is applied before the StatefulSet"""
    dm, reconciler = setup_reconciler(setup_cr())
    reconciler.reconcile(KEY)
    kinds = [call.args[0]["kind"] for call in dm.apply.call_args_list]
    assert kinds.index("ConfigMap") < kinds.index("StatefulSet")
    assert kinds.index("StatefulSet") < kinds.index("Service")


def test_reconcile_is_idempotent():
    """Make sure a pass over a converged cluster writes nothing"""
    dm, reconciler = setup_reconciler(setup_cr())
    reach_ready(dm, reconciler)
    dm.reset_mocks()

    result = reconciler.reconcile(KEY)
    assert result.phase == Phase.READY
    assert dm.mutating_calls() == 0
    dm.set_status.assert_not_called()


def test_drift_is_repaired():
    """Make sure a hand edit of an owned object is reverted"""
    dm, reconciler = setup_reconciler(setup_cr())
    reach_ready(dm, reconciler)
    configmap = dm.get_obj("ConfigMap", CONFIG_MAP)
    configmap["data"][constants.CONFIG_FILE_NAME] = "[options]\nhacked = 1\n"
    del configmap["metadata"]["resourceVersion"]
    update_cr(dm, configmap)

    result = reconciler.reconcile(KEY)
    assert result.phase == Phase.PROGRESSING
    assert dm.apply.call_count == 1
    assert "hacked" not in dm.get_obj("ConfigMap", CONFIG_MAP)["data"][
        constants.CONFIG_FILE_NAME
    ]


## Configuration changes #######################################################


def test_invalid_value_fails_without_writes():
    """Make sure an invalid override fails the cluster and leaves the
    existing objects untouched
    """
    dm, reconciler = setup_reconciler(setup_cr())
    reach_ready(dm, reconciler)
    workload_before = dm.get_obj("StatefulSet", WORKLOAD)
    update_cr(dm, setup_cr(config_overrides={"max_connections": "abc"}))

    result = reconciler.reconcile(KEY)
    assert result.phase == Phase.FAILED
    assert not result.requeue
    assert result.exception is not None
    assert dm.mutating_calls() == 0
    assert dm.get_obj("StatefulSet", WORKLOAD) == workload_before

    current = cr_status(dm)
    assert current[status.PHASE] == Phase.FAILED.value
    assert "max_connections" in current[status.LAST_ERROR]
    ready = status.get_condition(status.READY_CONDITION, current)
    assert ready["reason"] == status.ReadyReason.CONFIG_ERROR.value


def test_unknown_key_fails_closed():
    """Make sure an unknown key never reaches the cluster"""
    dm, reconciler = setup_reconciler(setup_cr(config_overrides={"not_a_key": 1}))
    result = reconciler.reconcile(KEY)
    assert result.phase == Phase.FAILED
    dm.apply.assert_not_called()
    assert not dm.has_obj("ConfigMap", CONFIG_MAP)
    assert "not_a_key" in cr_status(dm)[status.LAST_ERROR]


@pytest.mark.parametrize(
    "overrides",
    [
        {"dbfilter": ".*\nadmin_passwd = changed"},
        {"limit_time_real": "99999999999h"},
    ],
)
def test_unrenderable_value_fails_without_writes(overrides):
    """Make sure a value that cannot be written to odoo.conf fails the cluster
    as a config error without a requeue
    """
    dm, reconciler = setup_reconciler(setup_cr())
    reach_ready(dm, reconciler)
    update_cr(dm, setup_cr(config_overrides=overrides))

    result = reconciler.reconcile(KEY)
    assert result.phase == Phase.FAILED
    assert not result.requeue
    assert dm.mutating_calls() == 0
    assert "admin_passwd" not in dm.get_obj("ConfigMap", CONFIG_MAP)["data"][
        constants.CONFIG_FILE_NAME
    ]
    ready = status.get_condition(status.READY_CONDITION, cr_status(dm))
    assert ready["reason"] == status.ReadyReason.CONFIG_ERROR.value


def test_invalid_resource_fails():
    """Make sure a structurally invalid resource is reported as a config
    error
    """
    dm, reconciler = setup_reconciler(setup_cr(role_groups=[]))
    result = reconciler.reconcile(KEY)
    assert result.phase == Phase.FAILED
    assert not result.requeue
    dm.apply.assert_not_called()


def test_startup_change_restarts_workload():
    """Make sure a startup-only key updates the config and rolls the pods"""
    dm, reconciler = setup_reconciler(setup_cr())
    reach_ready(dm, reconciler)
    hash_before = pod_template_hash(dm)
    update_cr(dm, setup_cr(config_overrides={"workers": 4}))

    result = reconciler.reconcile(KEY)
    assert result.restarted_workloads == [WORKLOAD]
    assert result.phase == Phase.PROGRESSING
    assert "workers = 4" in dm.get_obj("ConfigMap", CONFIG_MAP)["data"][
        constants.CONFIG_FILE_NAME
    ]
    assert pod_template_hash(dm) != hash_before

    dm.mark_workloads_ready()
    assert reconciler.reconcile(KEY).phase == Phase.READY


def test_hot_reload_change_only_updates_config():
    """Make sure a hot-reload key only touches the ConfigMap and the cluster
    is reported Progressing until a pass confirms it
    """
    dm, reconciler = setup_reconciler(setup_cr())
    reach_ready(dm, reconciler)
    hash_before = pod_template_hash(dm)
    update_cr(dm, setup_cr(config_overrides={"log_level": "debug"}))

    result = reconciler.reconcile(KEY)
    assert result.restarted_workloads == []
    assert result.phase == Phase.PROGRESSING
    assert result.requeue
    assert dm.apply.call_count == 1
    assert dm.apply.call_args.args[0]["kind"] == "ConfigMap"
    assert pod_template_hash(dm) == hash_before

    result = reconciler.reconcile(KEY)
    assert result.phase == Phase.READY
    assert not result.requeue
    assert dm.apply.call_count == 1


def test_removed_role_group_is_pruned():
    """Make sure objects of a removed role group are deleted"""
    dm, reconciler = setup_reconciler(setup_cr(role_groups=WEB_AND_CRON))
    reach_ready(dm, reconciler)
    assert dm.has_obj("StatefulSet", f"{TEST_INSTANCE_NAME}-jobs-server")
    update_cr(dm, setup_cr(role_groups=WEB_AND_CRON[:1]))

    result = reconciler.reconcile(KEY)
    assert result.phase == Phase.READY
    assert dm.delete.call_count == 3
    for kind, name in [
        ("ConfigMap", f"{TEST_INSTANCE_NAME}-jobs-config"),
        ("StatefulSet", f"{TEST_INSTANCE_NAME}-jobs-server"),
        ("Service", f"{TEST_INSTANCE_NAME}-jobs-headless"),
    ]:
        assert not dm.has_obj(kind, name)
    assert dm.has_obj("StatefulSet", WORKLOAD)
    assert set(cr_status(dm)[status.ROLE_GROUPS]) == {"default"}


def test_prune_leaves_unowned_objects():
    """Make sure objects without the instance labels are never pruned"""
    unowned = {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {"name": "unrelated", "namespace": TEST_NAMESPACE},
        "data": {},
    }
    dm, reconciler = setup_reconciler(setup_cr())
    dm.apply(unowned)
    reach_ready(dm, reconciler)
    dm.delete.assert_not_called()
    assert dm.has_obj("ConfigMap", "unrelated")


@pytest.mark.parametrize(
    "owner_references",
    [
        None,
        [
            {
                "apiVersion": constants.API_VERSION,
                "kind": constants.KIND,
                "name": TEST_INSTANCE_NAME,
                "uid": "some-other-uid",
            }
        ],
    ],
)
def test_prune_leaves_labeled_objects_of_other_owners(owner_references):
    """Make sure an object carrying the instance labels is only pruned when
    this cluster owns it
    """
    dm, reconciler = setup_reconciler(setup_cr())
    reach_ready(dm, reconciler)
    labels = dict(dm.get_obj("ConfigMap", CONFIG_MAP)["metadata"]["labels"])
    metadata = {"name": "user-notes", "namespace": TEST_NAMESPACE, "labels": labels}
    if owner_references is not None:
        metadata["ownerReferences"] = owner_references
    update_cr(dm, {"apiVersion": "v1", "kind": "ConfigMap", "metadata": metadata})

    result = reconciler.reconcile(KEY)
    assert result.phase == Phase.READY
    dm.delete.assert_not_called()
    assert dm.has_obj("ConfigMap", "user-notes")


## Cluster operation ###########################################################


def test_paused_cluster_is_left_alone():
    """Make sure a paused cluster is reported and nothing is applied"""
    dm, reconciler = setup_reconciler(
        setup_cr(clusterOperation={"reconciliationPaused": True})
    )
    result = reconciler.reconcile(KEY)
    assert not result.requeue
    assert result.phase == Phase.PENDING
    dm.apply.assert_not_called()
    paused = status.get_condition(status.PAUSED_CONDITION, cr_status(dm))
    assert paused["status"] == "True"


def test_paused_cluster_keeps_phase():
    """Make sure pausing a ready cluster keeps its phase"""
    dm, reconciler = setup_reconciler(setup_cr())
    reach_ready(dm, reconciler)
    update_cr(dm, setup_cr(clusterOperation={"reconciliationPaused": True}))
    result = reconciler.reconcile(KEY)
    assert result.phase == Phase.READY
    assert dm.mutating_calls() == 0


def test_stopped_cluster_scales_to_zero():
    """Make sure a stopped cluster keeps its objects with no replicas"""
    dm, reconciler = setup_reconciler(setup_cr())
    reach_ready(dm, reconciler)
    update_cr(dm, setup_cr(clusterOperation={"stopped": True}))

    result = reconciler.reconcile(KEY)
    assert result.phase == Phase.PROGRESSING
    assert dm.get_obj("StatefulSet", WORKLOAD)["spec"]["replicas"] == 0
    assert dm.has_obj("ConfigMap", CONFIG_MAP)

    dm.mark_workloads_ready()
    result = reconciler.reconcile(KEY)
    assert result.phase == Phase.READY
    current = cr_status(dm)
    assert status.get_condition(status.STOPPED_CONDITION, current)["status"] == "True"
    assert current[status.ROLE_GROUPS]["default"]["replicas"] == 0


## Concurrency and failures ####################################################


def test_apply_conflict_is_retried():
    """Make sure a conflict on apply is retried against the latest version"""
    dm, reconciler = setup_reconciler(
        setup_cr(),
        apply_fail=FailOnce(PlatformError("conflict", PlatformErrorReason.CONFLICT)),
    )
    result = reconciler.reconcile(KEY)
    assert result.phase == Phase.PROGRESSING
    assert result.exception is None
    assert status.LAST_ERROR not in cr_status(dm)
    assert reconciler._sleep.call_count == 1
    assert dm.has_obj("ConfigMap", CONFIG_MAP)


def test_spec_change_during_pass_requeues_now():
    """Make sure a status for an outdated generation is not written and the
    key is requeued at once
    """
    changed = []

    def change_spec_once(*_, **__):
        if not changed:
            changed.append(True)
            DryRunDeployManager.apply(dm, setup_cr(config_overrides={"workers": 3}))

    dm, reconciler = setup_reconciler(setup_cr(), apply_fail=change_spec_once)
    result = reconciler.reconcile(KEY)
    assert result.requeue
    assert result.requeue_after == timedelta()
    assert cr_status(dm)[status.PHASE] == Phase.PENDING.value


def test_retries_exhausted():
    """Make sure persistent platform errors fail the pass and requeue"""
    dm, reconciler = setup_reconciler(
        setup_cr(),
        apply_fail=PlatformError("unavailable", PlatformErrorReason.UNAVAILABLE),
    )
    with library_config(platform_retry_attempts=3):
        result = reconciler.reconcile(KEY)
    assert result.phase == Phase.FAILED
    assert result.requeue
    assert result.requeue_after == timedelta(seconds=5)
    assert dm.apply.call_count == 3
    assert reconciler._sleep.call_count == 2
    ready = status.get_condition(status.READY_CONDITION, cr_status(dm))
    assert ready["reason"] == status.ReadyReason.PLATFORM_ERROR.value


def test_backoff_is_bounded():
    """Make sure the backoff doubles and is capped"""
    dm, reconciler = setup_reconciler(
        setup_cr(),
        apply_fail=PlatformError("throttled", PlatformErrorReason.THROTTLED),
    )
    with library_config(
        platform_retry_attempts=5,
        retry_backoff_base_seconds=1,
        retry_backoff_max_seconds=3,
    ):
        reconciler.reconcile(KEY)
    delays = [call.args[0] for call in reconciler._sleep.call_args_list]
    assert delays == [1, 2, 3, 3]


def test_permanent_platform_error_not_retried():
    """Make sure non-transient platform errors fail without a retry"""
    dm, reconciler = setup_reconciler(
        setup_cr(),
        apply_fail=PlatformError("forbidden", PlatformErrorReason.FORBIDDEN),
    )
    result = reconciler.reconcile(KEY)
    assert result.phase == Phase.FAILED
    assert dm.apply.call_count == 1
    reconciler._sleep.assert_not_called()


def test_fetch_failure_requeues():
    """Make sure a failed read of the resource requeues without a status"""
    dm, reconciler = setup_reconciler(
        setup_cr(),
        get_state_fail=PlatformError("timeout", PlatformErrorReason.TIMEOUT),
    )
    with library_config(platform_retry_attempts=2):
        result = reconciler.reconcile(KEY)
    assert result.requeue
    assert result.phase is None
    assert isinstance(result.exception, PlatformError)
    dm.set_status.assert_not_called()


## Missing resources ###########################################################


def test_deleted_resource_is_noop():
    """Make sure a resource that no longer exists is dropped"""
    dm, reconciler = setup_reconciler()
    result = reconciler.reconcile(KEY)
    assert result == ReconciliationResult(requeue=False)
    assert dm.mutating_calls() == 0


def test_terminating_resource_is_noop():
    """Make sure a resource being deleted is not reconciled"""
    cr = setup_cr()
    cr["metadata"]["deletionTimestamp"] = "2024-01-01T00:00:00Z"
    dm, reconciler = setup_reconciler(cr)
    result = reconciler.reconcile(KEY)
    assert not result.requeue
    assert result.phase is None
    dm.set_status.assert_not_called()


## safe_reconcile ##############################################################


def test_safe_reconcile_catches_unexpected_errors():
    """Make sure unexpected errors become a requeue"""
    dm, reconciler = setup_reconciler(setup_cr(), filter_fail=ValueError("boom"))
    result = reconciler.safe_reconcile(KEY)
    assert result.requeue
    assert isinstance(result.exception, ValueError)
    assert result.requeue_after == timedelta(seconds=5)


@pytest.mark.parametrize("period", ["1s", "30s"])
def test_safe_reconcile_error_period(period):
    """Make sure the error requeue delay follows config"""
    dm, reconciler = setup_reconciler(setup_cr(), filter_fail=KeyError("boom"))
    with library_config(error_requeue_period=period):
        result = reconciler.safe_reconcile(KEY)
    assert result.requeue_after.total_seconds() == int(period[:-1])
