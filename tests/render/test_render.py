"""
Tests for rendering the objects of an OdooCluster
"""

# Third Party
import pytest

# Local
from odoo_operator import constants
from odoo_operator.exceptions import InvariantError
from odoo_operator.properties import validate_and_merge
from odoo_operator.render import owned_object_selector, render
from odoo_operator.schema import ManifestKind, get_content_hash, parse_desired_state
from odoo_operator.test_helpers.helpers import (
    TEST_CREDENTIALS_SECRET,
    TEST_INSTANCE_NAME,
    TEST_NAMESPACE,
    library_config,
    make_property_specs,
    setup_cr,
)

## Helpers #####################################################################

WEB_AND_CRON = [
    {"name": "default", "role": constants.WEB_ROLE, "replicas": 2},
    {"name": "jobs", "role": constants.CRON_ROLE, "replicas": 1},
]


def render_cr(cr, specs=None):
    specs = specs or make_property_specs()
    desired = parse_desired_state(cr)
    configs = {
        role_group.name: validate_and_merge(
            specs,
            desired.config_overrides,
            role_group.config_overrides,
            role_group.role,
        )
        for role_group in desired.role_groups
    }
    return desired, render(desired, configs)


def by_name(manifests):
    return {manifest.name: manifest for manifest in manifests}


## Tests #######################################################################


def test_render_is_deterministic():
    """Make sure rendering the same inputs twice is byte identical"""
    _, first = render_cr(setup_cr(role_groups=WEB_AND_CRON))
    _, second = render_cr(setup_cr(role_groups=WEB_AND_CRON))
    assert [m.body for m in first] == [m.body for m in second]
    assert [m.content_hash for m in first] == [m.content_hash for m in second]


def test_render_object_names():
    """Make sure every role group gets its objects, only web gets http and
    the cluster gets one service account and binding
    """
    _, manifests = render_cr(setup_cr(role_groups=WEB_AND_CRON))
    names = set(by_name(manifests))
    assert names == {
        f"{TEST_INSTANCE_NAME}-serviceaccount",
        f"{TEST_INSTANCE_NAME}-rolebinding",
        f"{TEST_INSTANCE_NAME}-default-config",
        f"{TEST_INSTANCE_NAME}-default-server",
        f"{TEST_INSTANCE_NAME}-default-headless",
        f"{TEST_INSTANCE_NAME}-default-http",
        f"{TEST_INSTANCE_NAME}-jobs-config",
        f"{TEST_INSTANCE_NAME}-jobs-server",
        f"{TEST_INSTANCE_NAME}-jobs-headless",
    }
    for manifest in manifests:
        assert manifest.namespace == TEST_NAMESPACE
        assert manifest.identity == (
            f"{TEST_NAMESPACE}/{manifest.object_kind}/{manifest.name}"
        )


def test_render_apply_order():
    """Make sure config is applied before workloads and workloads before
    networking
    """
    _, manifests = render_cr(setup_cr(role_groups=WEB_AND_CRON))
    kinds = [manifest.kind for manifest in manifests]
    assert kinds == sorted(kinds, key=lambda kind: kind.value)
    assert kinds[0] == ManifestKind.CONFIG
    assert manifests[0].object_kind == "ConfigMap"


def test_render_content_hash_annotation():
    """Make sure every object carries the hash of its content"""
    _, manifests = render_cr(setup_cr())
    for manifest in manifests:
        assert get_content_hash(manifest.body) == manifest.content_hash


def test_render_content_hash_tracks_changes():
    """Make sure a config change only changes the affected hashes"""
    _, before = render_cr(setup_cr())
    _, after = render_cr(setup_cr(config_overrides={"log_level": "debug"}))
    before, after = by_name(before), by_name(after)
    config_name = f"{TEST_INSTANCE_NAME}-default-config"
    http_name = f"{TEST_INSTANCE_NAME}-default-http"
    assert before[config_name].content_hash != after[config_name].content_hash
    assert before[http_name].content_hash == after[http_name].content_hash


def test_render_configmap_contents():
    """Make sure the ConfigMap holds the sorted odoo.conf"""
    _, manifests = render_cr(setup_cr(config_overrides={"workers": 4}))
    configmap = by_name(manifests)[f"{TEST_INSTANCE_NAME}-default-config"].body
    content = configmap["data"][constants.CONFIG_FILE_NAME]
    lines = content.strip().split("\n")
    assert lines[0] == "[options]"
    assert lines[1:] == sorted(lines[1:])
    assert "workers = 4" in lines
    assert constants.STARTUP_CONFIG_HASH_ANNOTATION in configmap["metadata"][
        "annotations"
    ]


def test_render_startup_hash_on_pod_template():
    """Make sure only startup keys change the pod template annotation"""

    def pod_annotation(cr):
        _, manifests = render_cr(cr)
        workload = by_name(manifests)[f"{TEST_INSTANCE_NAME}-default-server"].body
        return workload["spec"]["template"]["metadata"]["annotations"][
            constants.STARTUP_CONFIG_HASH_ANNOTATION
        ]

    base = pod_annotation(setup_cr())
    assert pod_annotation(setup_cr(config_overrides={"list_db": True})) == base
    assert pod_annotation(setup_cr(config_overrides={"workers": 5})) != base


def test_render_statefulset():
    """Make sure the workload wires up config, data, credentials and sizing"""
    _, manifests = render_cr(setup_cr(role_groups=WEB_AND_CRON))
    workload = by_name(manifests)[f"{TEST_INSTANCE_NAME}-default-server"].body
    spec = workload["spec"]
    assert spec["replicas"] == 2
    assert spec["serviceName"] == f"{TEST_INSTANCE_NAME}-default-headless"
    pod_spec = spec["template"]["spec"]
    assert pod_spec["volumes"][0]["configMap"]["name"] == (
        f"{TEST_INSTANCE_NAME}-default-config"
    )
    container = pod_spec["containers"][0]
    assert {
        env["valueFrom"]["secretKeyRef"]["name"] for env in container["env"]
    } == {TEST_CREDENTIALS_SECRET}
    assert container["resources"]["limits"]["memory"] == "2Gi"
    assert "readinessProbe" in container
    assert spec["volumeClaimTemplates"][0]["spec"]["resources"]["requests"][
        "storage"
    ]


def test_render_cron_has_no_ports():
    """Make sure the cron role serves no http and has no probes"""
    _, manifests = render_cr(setup_cr(role_groups=WEB_AND_CRON))
    workload = by_name(manifests)[f"{TEST_INSTANCE_NAME}-jobs-server"].body
    container = workload["spec"]["template"]["spec"]["containers"][0]
    assert "ports" not in container
    assert "readinessProbe" not in container
    headless = by_name(manifests)[f"{TEST_INSTANCE_NAME}-jobs-headless"].body
    assert "ports" not in headless["spec"]


def test_render_stopped_scales_to_zero():
    """Make sure a stopped cluster keeps its objects with zero replicas"""
    _, running = render_cr(setup_cr(role_groups=WEB_AND_CRON))
    _, stopped = render_cr(
        setup_cr(role_groups=WEB_AND_CRON, clusterOperation={"stopped": True})
    )
    assert set(by_name(running)) == set(by_name(stopped))
    for manifest in stopped:
        if manifest.kind == ManifestKind.WORKLOAD:
            assert manifest.body["spec"]["replicas"] == 0


@pytest.mark.parametrize(
    ["listener_class", "service_type"],
    [
        ("cluster-internal", "ClusterIP"),
        ("external-unstable", "NodePort"),
        ("external-stable", "LoadBalancer"),
    ],
)
def test_render_listener_service_type(listener_class, service_type):
    """Make sure the http service type follows the listener class"""
    _, manifests = render_cr(setup_cr(clusterConfig={"listenerClass": listener_class}))
    service = by_name(manifests)[f"{TEST_INSTANCE_NAME}-default-http"].body
    assert service["spec"]["type"] == service_type
    assert service["spec"]["ports"][0]["targetPort"] == "http"


def test_render_owner_and_labels():
    """Make sure every object is owned by the cluster and carries the
    instance labels
    """
    desired, manifests = render_cr(setup_cr())
    selector = owned_object_selector(desired)
    for manifest in manifests:
        metadata = manifest.body["metadata"]
        owner = metadata["ownerReferences"][0]
        assert owner["kind"] == constants.KIND
        assert owner["name"] == TEST_INSTANCE_NAME
        for term in selector.split(","):
            key, val = term.split("=")
            assert metadata["labels"][key] == val


## Cluster wide objects ########################################################


def test_render_service_account_and_binding():
    """Make sure the pods run as the cluster service account bound to the
    configured ClusterRole
    """
    with library_config(cluster_role_name="odoo-test-role"):
        _, manifests = render_cr(setup_cr(role_groups=WEB_AND_CRON))
    objects = by_name(manifests)
    account = objects[f"{TEST_INSTANCE_NAME}-serviceaccount"]
    binding = objects[f"{TEST_INSTANCE_NAME}-rolebinding"]
    assert account.kind == ManifestKind.CONFIG
    assert account.role_group == ""
    assert constants.ROLE_GROUP_LABEL not in account.body["metadata"]["labels"]
    assert binding.body["roleRef"] == {
        "apiGroup": "rbac.authorization.k8s.io",
        "kind": "ClusterRole",
        "name": "odoo-test-role",
    }
    assert binding.body["subjects"] == [
        {
            "kind": "ServiceAccount",
            "name": f"{TEST_INSTANCE_NAME}-serviceaccount",
            "namespace": TEST_NAMESPACE,
        }
    ]
    for name in ["default", "jobs"]:
        workload = objects[f"{TEST_INSTANCE_NAME}-{name}-server"].body
        assert workload["spec"]["template"]["spec"]["serviceAccountName"] == (
            f"{TEST_INSTANCE_NAME}-serviceaccount"
        )
    order = [manifest.name for manifest in manifests]
    assert order.index(account.name) < order.index(
        f"{TEST_INSTANCE_NAME}-default-server"
    )


## Scheduling and volumes ######################################################


def test_render_default_affinity():
    """Make sure pods prefer their cluster and spread away from their role"""
    _, manifests = render_cr(setup_cr(role_groups=WEB_AND_CRON))
    workload = by_name(manifests)[f"{TEST_INSTANCE_NAME}-jobs-server"].body
    affinity = workload["spec"]["template"]["spec"]["affinity"]
    (together,) = affinity["podAffinity"][
        "preferredDuringSchedulingIgnoredDuringExecution"
    ]
    (apart,) = affinity["podAntiAffinity"][
        "preferredDuringSchedulingIgnoredDuringExecution"
    ]
    assert together["weight"] == 20
    assert apart["weight"] == 70
    assert together["podAffinityTerm"]["topologyKey"] == "kubernetes.io/hostname"
    assert apart["podAffinityTerm"]["labelSelector"]["matchLabels"] == {
        constants.NAME_LABEL: constants.APP_NAME,
        constants.INSTANCE_LABEL: TEST_INSTANCE_NAME,
        constants.MANAGED_BY_LABEL: constants.OPERATOR_NAME,
        constants.COMPONENT_LABEL: constants.CRON_ROLE,
    }


def test_render_role_group_affinity_replaces_defaults():
    """Make sure a role group affinity key replaces only that default"""
    node_affinity = {
        "requiredDuringSchedulingIgnoredDuringExecution": {
            "nodeSelectorTerms": [
                {
                    "matchExpressions": [
                        {"key": "pool", "operator": "In", "values": ["odoo"]}
                    ]
                }
            ]
        }
    }
    pod_anti_affinity = {"preferredDuringSchedulingIgnoredDuringExecution": []}
    role_groups = [
        {
            "name": "default",
            "affinity": {
                "nodeAffinity": node_affinity,
                "podAntiAffinity": pod_anti_affinity,
            },
        }
    ]
    _, manifests = render_cr(setup_cr(role_groups=role_groups))
    workload = by_name(manifests)[f"{TEST_INSTANCE_NAME}-default-server"].body
    affinity = workload["spec"]["template"]["spec"]["affinity"]
    assert affinity["nodeAffinity"] == node_affinity
    assert affinity["podAntiAffinity"] == pod_anti_affinity
    assert affinity["podAffinity"]["preferredDuringSchedulingIgnoredDuringExecution"]


def test_render_extra_volumes():
    """Make sure extra volumes and mounts are added after the operator's own"""
    volume = {"name": "addons", "configMap": {"name": "custom-addons"}}
    mount = {"name": "addons", "mountPath": "/mnt/extra-addons", "readOnly": True}
    _, manifests = render_cr(
        setup_cr(clusterConfig={"volumes": [volume], "volumeMounts": [mount]})
    )
    workload = by_name(manifests)[f"{TEST_INSTANCE_NAME}-default-server"].body
    pod_spec = workload["spec"]["template"]["spec"]
    assert [vol["name"] for vol in pod_spec["volumes"]] == [
        constants.CONFIG_VOLUME_NAME,
        "addons",
    ]
    assert pod_spec["volumes"][1] == volume
    mounts = pod_spec["containers"][0]["volumeMounts"]
    assert [item["mountPath"] for item in mounts] == [
        constants.CONFIG_MOUNT_PATH,
        constants.DATA_MOUNT_PATH,
        "/mnt/extra-addons",
    ]


## Invariants ##################################################################


def test_render_missing_config():
    """Make sure rendering without a merged config breaks an invariant"""
    desired = parse_desired_state(setup_cr())
    with pytest.raises(InvariantError):
        render(desired, {})
