"""
Helpers for the owner references that bind child objects to their
OdooCluster. Deleting the OdooCluster lets the platform garbage collect every
child.
"""

# Standard
from typing import Optional

# Local
from ..managed_object import ManagedObject


def make_owner_reference(api_version: str, kind: str, name: str, uid: str) -> dict:
    """Build the ownerReferences entry pointing at the given owner"""
    return {
        "apiVersion": api_version,
        "kind": kind,
        "name": name,
        "uid": uid,
        "controller": True,
        "blockOwnerDeletion": True,
    }


def get_owner_name(resource: ManagedObject, owner_kind: str) -> Optional[str]:
    """Get the name of the owner of the given kind, if the resource has one"""
    for owner_ref in resource.owner_references:
        if owner_ref.get("kind") == owner_kind:
            return owner_ref.get("name")
    return None


def is_owned_by(resource: ManagedObject, owner_kind: str, owner_uid: str) -> bool:
    """Whether the resource carries an owner reference to the given object"""
    return any(
        owner_ref.get("kind") == owner_kind and owner_ref.get("uid") == owner_uid
        for owner_ref in resource.owner_references
    )
