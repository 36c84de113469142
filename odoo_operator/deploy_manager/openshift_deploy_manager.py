"""
This DeployManager is responsible for delegating cluster operations to the
openshift library. It is the one that will be used when the operator is running
in the cluster or outside the cluster making live changes.
"""
# Standard
from contextlib import contextmanager
from typing import Iterator, List, Optional
import threading

# Third Party
from kubernetes.client.exceptions import ApiException
from kubernetes.watch import Watch
from openshift.dynamic import DynamicClient
from openshift.dynamic.exceptions import ResourceNotFoundError, ResourceNotUniqueError
from openshift.dynamic.resource import Resource
import kubernetes
import urllib3

# First Party
import alog

# Local
from .. import constants
from ..exceptions import PlatformError, PlatformErrorReason
from ..managed_object import ManagedObject
from .base import DeployManagerBase
from .kube_event import KubeEventType, KubeWatchEvent

log = alog.use_channel("OSFTD")

# See this document for value reasonings
# https://github.com/kubernetes-client/python/blob/master/examples/watch/timeout-settings.md
SERVER_WATCH_TIMEOUT = 3600
CLIENT_WATCH_TIMEOUT = 30

# Mapping from http status to the class of platform error
_STATUS_REASONS = {
    400: PlatformErrorReason.INVALID,
    401: PlatformErrorReason.FORBIDDEN,
    403: PlatformErrorReason.FORBIDDEN,
    404: PlatformErrorReason.NOT_FOUND,
    408: PlatformErrorReason.TIMEOUT,
    409: PlatformErrorReason.CONFLICT,
    422: PlatformErrorReason.INVALID,
    429: PlatformErrorReason.THROTTLED,
    504: PlatformErrorReason.TIMEOUT,
}


def translate_error(err: Exception) -> PlatformError:
    """Convert a client library exception into a PlatformError"""
    if isinstance(err, ApiException):
        reason = _STATUS_REASONS.get(err.status)
        if reason is None:
            reason = (
                PlatformErrorReason.UNAVAILABLE
                if (err.status or 500) >= 500
                else PlatformErrorReason.INVALID
            )
        return PlatformError(f"{err.status} {err.reason}", reason)
    if isinstance(err, (ResourceNotFoundError, ResourceNotUniqueError)):
        return PlatformError(str(err), PlatformErrorReason.NOT_FOUND)
    if isinstance(err, urllib3.exceptions.TimeoutError):
        return PlatformError(str(err), PlatformErrorReason.TIMEOUT)
    return PlatformError(str(err), PlatformErrorReason.UNAVAILABLE)


@contextmanager
def platform_errors(operation: str):
    """Context manager that re-raises client errors as PlatformErrors"""
    try:
        yield
    except (
        ApiException,
        ResourceNotFoundError,
        ResourceNotUniqueError,
        urllib3.exceptions.HTTPError,
    ) as err:
        platform_error = translate_error(err)
        log.debug2("%s failed with %s: %s", operation, platform_error.reason, err)
        raise platform_error from err


class OpenshiftDeployManager(DeployManagerBase):
    """This DeployManager uses the openshift DynamicClient to interact with the
    cluster
    """

    def __init__(self):
        log.debug("Initializing openshift client")
        self._client = None

        # Keep a threading lock for performing status updates. This is necessary
        # to avoid running into 409 Conflict errors if concurrent threads are
        # trying to perform status updates
        self._status_lock = threading.Lock()

    @property
    def client(self):
        """Lazy property access to the client"""
        if self._client is None:
            with platform_errors("client setup"):
                self._client = self._setup_client()
        return self._client

    ## Interface ###############################################################

    def get_object_current_state(
        self,
        kind: str,
        name: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
    ) -> Optional[dict]:
        resource_handle = self._get_resource_handle(kind, api_version)
        try:
            with platform_errors(f"get {kind}/{name}"):
                return resource_handle.get(name=name, namespace=namespace).to_dict()
        except PlatformError as err:
            if err.reason == PlatformErrorReason.NOT_FOUND:
                log.debug(
                    "No object named [%s/%s] found in namespace [%s]",
                    kind,
                    name,
                    namespace,
                )
                return None
            raise

    def filter_objects_current_state(
        self,
        kind: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
        label_selector: Optional[str] = None,
    ) -> List[dict]:
        resource_handle = self._get_resource_handle(kind, api_version)
        with platform_errors(f"list {kind}"):
            resource_list = resource_handle.get(
                namespace=namespace, label_selector=label_selector
            ).to_dict()

        # List items do not carry their own type information
        items = resource_list.get("items") or []
        for item in items:
            item.setdefault("apiVersion", resource_handle.group_version)
            item.setdefault("kind", kind)
        return items

    def apply(self, resource_definition: dict) -> dict:
        kind = resource_definition["kind"]
        api_version = resource_definition["apiVersion"]
        metadata = resource_definition["metadata"]
        name = metadata["name"]
        namespace = metadata.get("namespace")
        resource_handle = self._get_resource_handle(kind, api_version)

        log.debug2(
            "Attempting to apply [%s/%s/%s] in %s",
            api_version,
            kind,
            name,
            namespace,
        )
        # The operator is the only manager of these objects so field ownership
        # conflicts are forced. A 409 therefore means the resourceVersion moved.
        with platform_errors(f"apply {kind}/{name}"):
            return resource_handle.server_side_apply(
                resource_definition,
                name=name,
                namespace=namespace,
                field_manager=constants.FIELD_MANAGER,
                force_conflicts=True,
            ).to_dict()

    def delete(
        self,
        kind: str,
        name: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
    ) -> bool:
        log.debug2(
            "Attempting to delete [%s/%s/%s] from %s", api_version, kind, name, namespace
        )
        try:
            resource_handle = self._get_resource_handle(kind, api_version)
            with platform_errors(f"delete {kind}/{name}"):
                resource_handle.delete(name=name, namespace=namespace)
            return True

        # If the kind or instance is not found, that's a success without change
        except PlatformError as err:
            if err.reason != PlatformErrorReason.NOT_FOUND:
                raise
            log.debug2(
                "Valid error caught when deleting [%s/%s]: %s", kind, name, err
            )
            return False

    def set_status(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        name: str,
        namespace: Optional[str],
        status: dict,
        api_version: Optional[str] = None,
        resource_version: Optional[str] = None,
    ) -> dict:
        resource_handle = self._get_resource_handle(kind, api_version)
        with self._status_lock, platform_errors(f"set status {kind}/{name}"):
            resource = resource_handle.get(name=name, namespace=namespace).to_dict()
            if resource_version is not None:
                resource["metadata"]["resourceVersion"] = resource_version
            resource["status"] = status
            updated = resource_handle.status.replace(body=resource).to_dict()
            log.debug2(
                "Successfully set the status for [%s/%s] in %s", kind, name, namespace
            )
            return updated

    def watch_objects(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        api_version: Optional[str] = None,
        namespace: Optional[str] = None,
        label_selector: Optional[str] = None,
        resource_version: Optional[str] = None,
        watch_manager: Optional[Watch] = None,
    ) -> Iterator[KubeWatchEvent]:
        watch_manager = watch_manager if watch_manager else Watch()
        resource_handle = self._get_resource_handle(kind, api_version)
        resource_version = resource_version if resource_version else 0

        while True:
            try:
                for event_obj in watch_manager.stream(
                    resource_handle.get,
                    resource_version=resource_version,
                    namespace=namespace or None,
                    label_selector=label_selector,
                    serialize=False,
                    timeout_seconds=SERVER_WATCH_TIMEOUT,
                    _request_timeout=CLIENT_WATCH_TIMEOUT,
                ):
                    event_type = KubeEventType(event_obj["type"])
                    event_resource = ManagedObject(event_obj["object"])
                    resource_version = event_resource.resource_version
                    yield KubeWatchEvent(event_type, event_resource)
            except ApiException as exception:
                if exception.status != 410:
                    raise translate_error(exception) from exception
                log.debug2(
                    "Resource age expired, restarting watch %s/%s", kind, api_version
                )
                resource_version = None
            except urllib3.exceptions.ReadTimeoutError:
                log.debug4(
                    "Watch socket closed, restarting watch %s/%s", kind, api_version
                )
            except urllib3.exceptions.ProtocolError:
                log.debug2(
                    "Invalid chunk from server, restarting watch %s/%s",
                    kind,
                    api_version,
                )
            except urllib3.exceptions.HTTPError as err:
                raise translate_error(err) from err

            # This is hidden attribute so probably not best to check
            if watch_manager._stop:  # pylint: disable=protected-access
                log.debug("Internal watch stopped for %s/%s", kind, api_version)
                return

    ## Implementation Helpers ##################################################

    @staticmethod
    def _setup_client():
        """Create a DynamicClient that will work based on where the operator is
        running
        """
        # Try in-cluster config
        try:
            log.debug2("Running with in-cluster config")
            kube_config = kubernetes.client.Configuration()
            kubernetes.config.load_incluster_config(client_configuration=kube_config)
            api_client = kubernetes.client.ApiClient(kube_config)
            return DynamicClient(api_client)

        # Fall back to out-of-cluster config
        except kubernetes.config.ConfigException:
            log.debug2("Running with out-of-cluster config")
            return DynamicClient(kubernetes.config.new_client_from_config())

    def _get_resource_handle(
        self,
        kind: str,
        api_version: Optional[str],
    ) -> Resource:
        """Get the openshift resource handle for a specified kind and api_version"""
        with platform_errors(f"discover {api_version}/{kind}"):
            resource_handle = self.client.resources.get(
                kind=kind, api_version=api_version
            )
        return resource_handle
