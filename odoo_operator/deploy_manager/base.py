"""
This defines the base class for all DeployManager types.
"""

# Standard
from typing import Iterator, List, Optional
import abc

# Third Party
from kubernetes.watch import Watch

# Local
from .kube_event import KubeWatchEvent


class DeployManagerBase(abc.ABC):
    """
    Base class for deploy managers which will be responsible for carrying out
    the actual operations against the cluster. Every failed operation raises a
    PlatformError whose reason tells the caller whether to retry.
    """

    @abc.abstractmethod
    def get_object_current_state(
        self,
        kind: str,
        name: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
    ) -> Optional[dict]:
        """Get the current state of an object in the cluster

        Args:
            kind:  str
                The kind of the object to fetch
            name:  str
                The full name of the object to fetch
            namespace:  Optional[str]
                The namespace to search for the object
            api_version:  Optional[str]
                The api_version of the resource kind to fetch

        Returns:
            current_state:  Optional[dict]
                The dict representation of the current object's configuration,
                or None if not present
        """

    @abc.abstractmethod
    def filter_objects_current_state(
        self,
        kind: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
        label_selector: Optional[str] = None,
    ) -> List[dict]:
        """Get the current state of every object of a kind matching the
        selector
        """

    @abc.abstractmethod
    def apply(self, resource_definition: dict) -> dict:
        """Create or update a single object. If the definition carries a
        metadata.resourceVersion, the write only succeeds if the live object
        still has that version.

        Args:
            resource_definition:  dict
                The object to apply

        Returns:
            applied:  dict
                The object as stored by the cluster
        """

    @abc.abstractmethod
    def delete(
        self,
        kind: str,
        name: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
    ) -> bool:
        """Delete a single object. An object that does not exist is a success.

        Returns:
            changed:  bool
                True if an object was deleted
        """

    @abc.abstractmethod
    def set_status(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        name: str,
        namespace: Optional[str],
        status: dict,
        api_version: Optional[str] = None,
        resource_version: Optional[str] = None,
    ) -> dict:
        """Replace the status subresource of an object

        Args:
            kind:  str
                The kind of the object
            name:  str
                The name of the object
            namespace:  Optional[str]
                The namespace of the object
            status:  dict
                The full status to write
            api_version:  Optional[str]
                The api_version of the object
            resource_version:  Optional[str]
                If given, the write conflicts if the live object has moved on

        Returns:
            updated:  dict
                The object after the status write
        """

    @abc.abstractmethod
    def watch_objects(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        api_version: Optional[str] = None,
        namespace: Optional[str] = None,
        label_selector: Optional[str] = None,
        resource_version: Optional[str] = None,
        watch_manager: Optional[Watch] = None,
    ) -> Iterator[KubeWatchEvent]:
        """Watch objects of a kind and yield an event for every change. Calling
        stop() on the given watch_manager ends the stream."""
