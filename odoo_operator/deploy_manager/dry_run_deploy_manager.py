"""
The DryRunDeployManager implements the DeployManager interface but does not
actually interact with the cluster and instead holds the state of the cluster in
a local map.
"""

# Standard
from datetime import datetime, timedelta
from functools import partial
from queue import Empty, Queue
from threading import RLock
from typing import Callable, Dict, Iterator, List, Optional, Tuple
import copy
import itertools
import uuid

# Third Party
from kubernetes.watch import Watch

# First Party
import alog

# Local
from ..exceptions import PlatformError, PlatformErrorReason
from ..managed_object import ManagedObject
from .base import DeployManagerBase
from .kube_event import KubeEventType, KubeWatchEvent

log = alog.use_channel("DRY-RUN")


class DryRunDeployManager(DeployManagerBase):
    """
    Deploy manager which doesn't actually deploy!
    """

    def __init__(
        self,
        resources: Optional[List[dict]] = None,
        strict_resource_version: bool = True,
    ):
        """
        Args:
            resources:  Optional[List[dict]]
                Objects that exist in the cluster from the start
            strict_resource_version:  bool
                If true, writes that carry an out of date resourceVersion fail
                with a conflict the way the real platform does
        """
        self._cluster_content = {}
        self._lock = RLock()
        self._resource_versions = itertools.count(1)
        self.strict_resource_version = strict_resource_version

        # Dicts of registered watches and deletion watches
        self._watches = {}
        self._finalizers = {}

        for resource in resources or []:
            self._store(copy.deepcopy(resource), call_watches=False)

    ## Interface ###############################################################

    def get_object_current_state(
        self,
        kind: str,
        name: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
    ) -> Optional[dict]:
        log.debug2(
            "DRY RUN get_object_current_state of [%s/%s] in [%s]", kind, name, namespace
        )
        with self._lock:
            kind_entries = self._cluster_content.get(namespace, {}).get(kind, {})
            matches = [
                entries[name]
                for api_ver, entries in kind_entries.items()
                if name in entries and (api_version is None or api_ver == api_version)
            ]
            if len(matches) == 1:
                return copy.deepcopy(matches[0])
        return None

    def filter_objects_current_state(
        self,
        kind: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
        label_selector: Optional[str] = None,
    ) -> List[dict]:
        log.debug2(
            "DRY RUN filter_objects_current_state of [%s] in [%s]", kind, namespace
        )
        selector = _parse_selector(label_selector)
        matches = []
        with self._lock:
            namespaces = (
                [namespace] if namespace else list(self._cluster_content.keys())
            )
            for ns_name in namespaces:
                kind_entries = self._cluster_content.get(ns_name, {}).get(kind, {})
                for api_ver, entries in kind_entries.items():
                    if api_version is not None and api_ver != api_version:
                        continue
                    for resource in entries.values():
                        labels = resource.get("metadata", {}).get("labels") or {}
                        if all(labels.get(key) == val for key, val in selector):
                            matches.append(copy.deepcopy(resource))
        return matches

    def apply(self, resource_definition: dict) -> dict:
        log.debug(
            "DRY RUN apply [%s/%s]",
            resource_definition.get("kind"),
            resource_definition.get("metadata", {}).get("name"),
        )
        return self._store(copy.deepcopy(resource_definition))

    def delete(
        self,
        kind: str,
        name: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
    ) -> bool:
        log.debug("DRY RUN delete [%s/%s] in [%s]", kind, name, namespace)
        current = self.get_object_current_state(kind, name, namespace, api_version)
        if current is None:
            return False
        with self._lock:
            self._delete_key(namespace, kind, current["apiVersion"], name)
        for key, callback in self._get_registered_watches(
            current["apiVersion"], kind, namespace, name, finalizer=True
        ):
            log.debug2("Calling registered finalizer [%s] for [%s]", callback, key)
            callback(current)
        return True

    def set_status(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        name: str,
        namespace: Optional[str],
        status: dict,
        api_version: Optional[str] = None,
        resource_version: Optional[str] = None,
    ) -> dict:
        log.debug2(
            "DRY RUN set_status of [%s.%s/%s] in %s: %s",
            api_version,
            kind,
            name,
            namespace,
            status,
        )
        with self._lock:
            current = self.get_object_current_state(kind, name, namespace, api_version)
            if current is None:
                raise PlatformError(
                    f"{kind}/{name} not found", PlatformErrorReason.NOT_FOUND
                )
            self._check_resource_version(current, resource_version)
            current["status"] = status
            current["metadata"]["resourceVersion"] = self._next_resource_version()
            self._put(current)
        self._call_watches(current)
        return copy.deepcopy(current)

    def watch_objects(  # pylint: disable=too-many-arguments,unused-argument
        self,
        kind: str,
        api_version: Optional[str] = None,
        namespace: Optional[str] = None,
        label_selector: Optional[str] = None,
        resource_version: Optional[str] = None,
        watch_manager: Optional[Watch] = None,
        timeout: Optional[int] = None,
    ) -> Iterator[KubeWatchEvent]:
        """Watch the DryRunDeployManager for resource changes by registering
        callbacks"""

        event_queue = Queue()
        selector = _parse_selector(label_selector)

        def matches(manifest: dict) -> bool:
            labels = manifest.get("metadata", {}).get("labels") or {}
            return all(labels.get(key) == val for key, val in selector)

        def add_event(seen: set, manifest: dict):
            if not matches(manifest):
                return
            resource = ManagedObject(copy.deepcopy(manifest))
            event_type = KubeEventType.ADDED
            if (resource.namespace, resource.name) in seen:
                event_type = KubeEventType.MODIFIED
            seen.add((resource.namespace, resource.name))
            event_queue.put(KubeWatchEvent(type=event_type, resource=resource))

        def delete_event(seen: set, manifest: dict):
            if not matches(manifest):
                return
            resource = ManagedObject(copy.deepcopy(manifest))
            seen.discard((resource.namespace, resource.name))
            event_queue.put(
                KubeWatchEvent(type=KubeEventType.DELETED, resource=resource)
            )

        # Register callbacks before listing so no change is missed
        seen = set()
        self.register_watch(
            api_version=api_version,
            kind=kind,
            namespace=namespace,
            callback=partial(add_event, seen),
        )
        self.register_finalizer(
            api_version=api_version,
            kind=kind,
            namespace=namespace,
            callback=partial(delete_event, seen),
        )

        # Get initial resources
        for manifest in self.filter_objects_current_state(
            kind=kind,
            api_version=api_version,
            namespace=namespace,
            label_selector=label_selector,
        ):
            add_event(seen, manifest)

        end_time = datetime.max
        if timeout:
            end_time = datetime.now() + timedelta(seconds=timeout)

        # Yield any events from the callback queue
        while datetime.now() < end_time:
            if watch_manager is not None and watch_manager._stop:  # pylint: disable=protected-access
                log.debug("Dry run watch stopped for %s/%s", kind, api_version)
                return
            try:
                event = event_queue.get(timeout=0.1)
                log.debug2("Yielding event %s", event)
                yield event
            except Empty:
                pass

    ## Dry Run Methods #########################################################

    def register_watch(
        self,
        api_version: Optional[str],
        kind: str,
        callback: Callable[[dict], None],
        namespace: Optional[str] = "",
        name: Optional[str] = "",
    ):
        """Register a callback to watch for write events on a given
        api_version/kind
        """
        watch_key = self._watch_key(
            api_version=api_version, kind=kind, namespace=namespace, name=name
        )
        log.debug("Registering watch for %s", watch_key)
        with self._lock:
            self._watches.setdefault(watch_key, []).append(callback)

    def register_finalizer(
        self,
        api_version: Optional[str],
        kind: str,
        callback: Callable[[dict], None],
        namespace: Optional[str] = "",
        name: Optional[str] = "",
    ):
        """Register a callback to call on deletion events on a given
        api_version/kind
        """
        watch_key = self._watch_key(
            api_version=api_version, kind=kind, namespace=namespace, name=name
        )
        log.debug("Registering finalizer for %s", watch_key)
        with self._lock:
            self._finalizers.setdefault(watch_key, []).append(callback)

    def get_cluster_content(self) -> Dict[str, dict]:
        """Get a copy of every stored object keyed by namespace, kind,
        apiVersion and name
        """
        with self._lock:
            return copy.deepcopy(self._cluster_content)

    ## Implementation Details ##################################################

    @staticmethod
    def _watch_key(api_version="", kind="", namespace="", name=""):
        return ":".join([api_version or "", kind or "", namespace or "", name or ""])

    def _get_registered_watches(  # pylint: disable=too-many-arguments
        self,
        api_version: str = "",
        kind: str = "",
        namespace: str = "",
        name: str = "",
        finalizer: bool = False,
    ) -> List[Tuple[str, Callable]]:
        candidate_keys = {
            self._watch_key(api_version=ver, kind=kind, namespace=ns, name=obj_name)
            for ver in [api_version, ""]
            for ns, obj_name in [(namespace, name), (namespace, ""), ("", "")]
        }
        callback_map = self._finalizers if finalizer else self._watches
        with self._lock:
            return [
                (key, callback)
                for key, callback_list in callback_map.items()
                if key in candidate_keys
                for callback in callback_list
            ]

    def _next_resource_version(self) -> str:
        return str(next(self._resource_versions))

    def _check_resource_version(self, current: dict, resource_version: Optional[str]):
        current_version = current.get("metadata", {}).get("resourceVersion")
        if (
            self.strict_resource_version
            and resource_version
            and current_version
            and resource_version != current_version
        ):
            log.debug("DRY RUN conflict: %s != %s", resource_version, current_version)
            raise PlatformError(
                f"resourceVersion {resource_version} is out of date",
                PlatformErrorReason.CONFLICT,
            )

    def _put(self, resource: dict):
        metadata = resource["metadata"]
        (
            self._cluster_content.setdefault(metadata.get("namespace"), {})
            .setdefault(resource["kind"], {})
            .setdefault(resource["apiVersion"], {})
        )[metadata["name"]] = resource

    def _delete_key(self, namespace, kind, api_version, name):
        del self._cluster_content[namespace][kind][api_version][name]
        if not self._cluster_content[namespace][kind][api_version]:
            del self._cluster_content[namespace][kind][api_version]
        if not self._cluster_content[namespace][kind]:
            del self._cluster_content[namespace][kind]
        if not self._cluster_content[namespace]:
            del self._cluster_content[namespace]

    def _store(self, resource: dict, call_watches: bool = True) -> dict:
        """Create or replace an object, keeping the server managed fields of
        the current version
        """
        metadata = resource.setdefault("metadata", {})
        with self._lock:
            current = self.get_object_current_state(
                resource["kind"],
                metadata["name"],
                metadata.get("namespace"),
                resource["apiVersion"],
            )
            if current is not None:
                self._check_resource_version(current, metadata.get("resourceVersion"))
                current_metadata = current["metadata"]
                metadata["uid"] = current_metadata.get("uid")
                metadata["creationTimestamp"] = current_metadata.get(
                    "creationTimestamp"
                )
                generation = current_metadata.get("generation", 1)
                if current.get("spec") != resource.get("spec"):
                    generation += 1
                metadata["generation"] = generation
                if "status" in current:
                    resource["status"] = current["status"]
            else:
                metadata.setdefault("uid", str(uuid.uuid4()))
                metadata.setdefault("creationTimestamp", datetime.now().isoformat())
                metadata.setdefault("generation", 1)
            metadata["resourceVersion"] = self._next_resource_version()
            self._put(resource)
        if call_watches:
            self._call_watches(resource)
        return copy.deepcopy(resource)

    def _call_watches(self, resource: dict):
        metadata = resource["metadata"]
        for key, callback in self._get_registered_watches(
            resource["apiVersion"],
            resource["kind"],
            metadata.get("namespace"),
            metadata["name"],
        ):
            log.debug3("Calling registered watch [%s] for [%s]", callback, key)
            callback(copy.deepcopy(resource))


def _parse_selector(label_selector: Optional[str]) -> List[Tuple[str, str]]:
    """Parse an equality based label selector like 'a=b,c=d'"""
    if not label_selector:
        return []
    selector = []
    for term in label_selector.split(","):
        key, _, val = term.partition("=")
        selector.append((key.strip(), val.strip()))
    return selector
