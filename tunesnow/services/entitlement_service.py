from __future__ import annotations

"""Entitlement policy for streaming.

The streaming service asks one question, `is_entitled(principal, track_id)`,
before touching the object store. Policies must be fast and side-effect
free.

A custom policy can be plugged in with the environment variable
`ENTITLEMENT_POLICY_IMPL`, a dotted path like::

    myorg.billing.entitlements:SubscriptionPolicy

The class is constructed with the catalog repository as its only argument.
"""

import uuid

from tunesnow.core.config import settings
from tunesnow.core.security import Principal
from tunesnow.repositories.catalog import CatalogRepositoryProtocol


class EntitlementPolicy:
    async def is_entitled(self, principal: Principal, track_id: uuid.UUID) -> bool:
        raise NotImplementedError


class DefaultEntitlementPolicy(EntitlementPolicy):
    """Public tracks for every authenticated principal; private ones for their uploader and admins."""

    def __init__(self, catalog: CatalogRepositoryProtocol) -> None:
        self._catalog = catalog

    async def is_entitled(self, principal: Principal, track_id: uuid.UUID) -> bool:
        track = await self._catalog.get_track(track_id)
        if track is None:
            return False
        if not track.is_private:
            return True
        return principal.is_admin or (track.uploaded_by is not None and track.uploaded_by == principal.id)


def _import_string(path: str):
    module_path, _, class_name = path.partition(":")
    if not module_path or not class_name:
        raise ValueError("ENTITLEMENT_POLICY_IMPL must be 'module.sub:ClassName'")
    module = __import__(module_path, fromlist=[class_name])
    return getattr(module, class_name)


def build_entitlement_policy(catalog: CatalogRepositoryProtocol) -> EntitlementPolicy:
    """Configured policy, defaulting to `DefaultEntitlementPolicy`."""
    impl_path = settings.ENTITLEMENT_POLICY_IMPL
    if impl_path:
        cls = _import_string(impl_path)
        return cls(catalog)
    return DefaultEntitlementPolicy(catalog)


__all__ = ["EntitlementPolicy", "DefaultEntitlementPolicy", "build_entitlement_policy"]
