"""Tests for the DryRunDeployManager

NOTE: The majority of the functionality is exercised by the reconcile and
    watch manager tests, so the tests here only cover elements that are
    particularly delicate and/or not covered elsewhere.
"""
# Standard
from threading import Timer
from unittest.mock import Mock

# Third Party
from kubernetes.watch import Watch
import pytest

# Local
from odoo_operator.deploy_manager import (
    DryRunDeployManager,
    KubeEventType,
    KubeWatchEvent,
)
from odoo_operator.exceptions import PlatformError, PlatformErrorReason
from odoo_operator.test_helpers.helpers import SOME_OTHER_NAMESPACE, TEST_NAMESPACE

## Helpers #####################################################################


def make_obj(
    api_version="foo.bar/v1",
    kind="Foo",
    name="foobar",
    namespace=SOME_OTHER_NAMESPACE,
    spec=None,
    labels=None,
):
    return {
        "apiVersion": api_version,
        "kind": kind,
        "metadata": {
            "name": name,
            "namespace": namespace,
            "labels": labels or {"app": "foobar", "run": "frontend"},
        },
        "spec": spec or {"a": 1},
    }


## Tests #######################################################################


def test_apply_and_get():
    """Make sure applied objects can be read back with server fields set"""
    dm = DryRunDeployManager()
    applied = dm.apply(make_obj())
    current = dm.get_object_current_state("Foo", "foobar", SOME_OTHER_NAMESPACE)
    assert current == applied
    assert current["metadata"]["resourceVersion"]
    assert current["metadata"]["uid"]
    assert current["metadata"]["generation"] == 1


def test_get_missing_and_wrong_version():
    """Make sure missing objects and mismatched api versions read as None"""
    dm = DryRunDeployManager([make_obj()])
    assert dm.get_object_current_state("Foo", "other", SOME_OTHER_NAMESPACE) is None
    assert dm.get_object_current_state("Foo", "foobar", TEST_NAMESPACE) is None
    assert (
        dm.get_object_current_state(
            "Foo", "foobar", SOME_OTHER_NAMESPACE, api_version="foo.bar/v2"
        )
        is None
    )


def test_generation_tracks_spec_changes():
    """Make sure generation only moves when the spec changes and the status
    survives an apply
    """
    dm = DryRunDeployManager([make_obj()])
    current = dm.get_object_current_state("Foo", "foobar", SOME_OTHER_NAMESPACE)
    dm.set_status("Foo", "foobar", SOME_OTHER_NAMESPACE, {"phase": "Ready"})

    obj = make_obj()
    obj["metadata"]["labels"]["extra"] = "yes"
    same_spec = dm.apply(obj)
    assert same_spec["metadata"]["generation"] == 1
    assert same_spec["status"] == {"phase": "Ready"}
    assert same_spec["metadata"]["uid"] == current["metadata"]["uid"]

    new_spec = dm.apply(make_obj(spec={"a": 2}))
    assert new_spec["metadata"]["generation"] == 2


def test_resource_version_conflict():
    """Make sure writes with an out of date resourceVersion conflict"""
    dm = DryRunDeployManager([make_obj()])
    current = dm.get_object_current_state("Foo", "foobar", SOME_OTHER_NAMESPACE)
    stale_version = current["metadata"]["resourceVersion"]
    dm.apply(make_obj(spec={"a": 2}))

    stale = make_obj(spec={"a": 3})
    stale["metadata"]["resourceVersion"] = stale_version
    with pytest.raises(PlatformError) as exc_info:
        dm.apply(stale)
    assert exc_info.value.reason == PlatformErrorReason.CONFLICT

    with pytest.raises(PlatformError):
        dm.set_status(
            "Foo",
            "foobar",
            SOME_OTHER_NAMESPACE,
            {"phase": "Ready"},
            resource_version=stale_version,
        )


def test_relaxed_resource_version():
    """Make sure conflicts can be turned off"""
    dm = DryRunDeployManager([make_obj()], strict_resource_version=False)
    stale = make_obj(spec={"a": 3})
    stale["metadata"]["resourceVersion"] = "not-a-version"
    assert dm.apply(stale)["spec"] == {"a": 3}


def test_set_status_missing_object():
    """Make sure setting the status of a missing object is a NOT_FOUND error"""
    dm = DryRunDeployManager()
    with pytest.raises(PlatformError) as exc_info:
        dm.set_status("Foo", "foobar", SOME_OTHER_NAMESPACE, {})
    assert exc_info.value.reason == PlatformErrorReason.NOT_FOUND


def test_delete():
    """Make sure delete removes objects and reports whether it did"""
    dm = DryRunDeployManager([make_obj()])
    assert dm.delete("Foo", "foobar", SOME_OTHER_NAMESPACE)
    assert dm.get_object_current_state("Foo", "foobar", SOME_OTHER_NAMESPACE) is None
    assert not dm.delete("Foo", "foobar", SOME_OTHER_NAMESPACE)
    assert dm.get_cluster_content() == {}


def test_filter_by_selector_and_namespace():
    """Make sure filtering honors the label selector and namespace"""
    dm = DryRunDeployManager(
        [
            make_obj(name="a", labels={"app": "one"}),
            make_obj(name="b", labels={"app": "two"}),
            make_obj(name="c", labels={"app": "one"}, namespace=TEST_NAMESPACE),
        ]
    )
    assert {
        obj["metadata"]["name"]
        for obj in dm.filter_objects_current_state("Foo", label_selector="app=one")
    } == {"a", "c"}
    assert [
        obj["metadata"]["name"]
        for obj in dm.filter_objects_current_state(
            "Foo", namespace=TEST_NAMESPACE, label_selector="app=one"
        )
    ] == ["c"]
    assert dm.filter_objects_current_state("Bar") == []


def test_watches_triggered():
    """Make sure registered watches and finalizers are called for the right
    kind
    """
    dm = DryRunDeployManager()
    on_write = Mock()
    on_other_write = Mock()
    on_delete = Mock()
    dm.register_watch("foo.bar/v1", "Foo", on_write)
    dm.register_watch("foo.bar/v1", "Bar", on_other_write)
    dm.register_finalizer("foo.bar/v1", "Foo", on_delete)

    dm.apply(make_obj())
    on_write.assert_called_once()
    on_other_write.assert_not_called()

    dm.delete("Foo", "foobar", SOME_OTHER_NAMESPACE)
    on_delete.assert_called_once()


@pytest.mark.timeout(5)
def test_watch_objects_stream():
    """Make sure watch_objects yields existing objects then later changes and
    stops with the watch
    """
    dm = DryRunDeployManager([make_obj(name="existing")])
    watch = Watch()
    stream = dm.watch_objects(
        "Foo", "foo.bar/v1", namespace=SOME_OTHER_NAMESPACE, watch_manager=watch
    )

    first = next(stream)
    assert isinstance(first, KubeWatchEvent)
    assert first.type == KubeEventType.ADDED
    assert first.resource.name == "existing"

    dm.apply(make_obj(name="existing", spec={"a": 2}))
    assert next(stream).type == KubeEventType.MODIFIED

    dm.delete("Foo", "existing", SOME_OTHER_NAMESPACE)
    assert next(stream).type == KubeEventType.DELETED

    Timer(0.2, watch.stop).start()
    assert list(stream) == []


@pytest.mark.timeout(5)
def test_watch_objects_selector():
    """Make sure watch_objects filters events by label selector"""
    dm = DryRunDeployManager()
    stream = dm.watch_objects("Foo", "foo.bar/v1", label_selector="app=one", timeout=1)
    dm.apply(make_obj(name="skipped", labels={"app": "two"}))
    dm.apply(make_obj(name="seen", labels={"app": "one"}))
    events = list(stream)
    assert [event.resource.name for event in events] == ["seen"]
