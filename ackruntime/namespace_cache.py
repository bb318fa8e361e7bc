"""Cache of the ACK-related annotations of Kubernetes namespaces."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional

from ackruntime.carm import Informer

ANNOTATION_DEFAULT_REGION = "services.k8s.aws/default-region"
ANNOTATION_OWNER_ACCOUNT_ID = "services.k8s.aws/owner-account-id"
ANNOTATION_TEAM_ID = "services.k8s.aws/team-id"
ANNOTATION_ENDPOINT_URL = "services.k8s.aws/endpoint-url"
ANNOTATION_DELETION_POLICY = "services.k8s.aws/deletion-policy"


@dataclass
class Namespace:
    """A Kubernetes namespace: its name and annotations."""

    name: str
    annotations: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class _NamespaceInfo:
    default_region: str = ""
    owner_account_id: str = ""
    team_id: str = ""
    endpoint_url: str = ""
    deletion_policies: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_annotations(cls, annotations: dict[str, str]) -> "_NamespaceInfo":
        suffix = "." + ANNOTATION_DELETION_POLICY
        policies = {
            key[: -len(suffix)]: value
            for key, value in annotations.items()
            if key.endswith(suffix)
        }
        return cls(
            default_region=annotations.get(ANNOTATION_DEFAULT_REGION, ""),
            owner_account_id=annotations.get(ANNOTATION_OWNER_ACCOUNT_ID, ""),
            team_id=annotations.get(ANNOTATION_TEAM_ID, ""),
            endpoint_url=annotations.get(ANNOTATION_ENDPOINT_URL, ""),
            deletion_policies=policies,
        )


class NamespaceCache:
    """Thread-safe cache of namespace annotations that ACK cares about."""

    def __init__(
        self,
        log: Optional[logging.Logger] = None,
        watch_scope: Iterable[str] = (),
        ignored: Iterable[str] = (),
    ) -> None:
        base = log if log is not None else logging.getLogger(__name__)
        self._log = base.getChild("cache.namespace")
        self._lock = threading.Lock()
        self._infos: dict[str, _NamespaceInfo] = {}
        self.watch_scope: tuple[str, ...] = tuple(watch_scope or ())
        self.ignored: tuple[str, ...] = tuple(ignored or ())
        self._has_synced: Optional[Callable[[], bool]] = None

    def approved_namespace(self, namespace: str) -> bool:
        """True if the namespace is not ignored and is within the watch scope."""
        if namespace in self.ignored:
            return False
        return not self.watch_scope or namespace in self.watch_scope

    def run(self, informer: Informer) -> None:
        """Register with a namespace informer and start it."""
        self._log.debug(
            "starting namespace cache, watch scope %s, ignored %s",
            list(self.watch_scope),
            list(self.ignored),
        )
        informer.add_event_handler(self.on_add, self.on_update, self.on_delete)
        informer.start()
        self._has_synced = informer.has_synced

    def on_add(self, obj: Namespace) -> None:
        """Handle creation of a namespace."""
        if self.approved_namespace(obj.name):
            self._set_info(obj)
            self._log.debug("created namespace %s", obj.name)

    def on_update(self, old: Any, new: Namespace) -> None:
        """Handle an update of a namespace."""
        if self.approved_namespace(new.name):
            self._set_info(new)
            self._log.debug("updated namespace %s", new.name)

    def on_delete(self, obj: Namespace) -> None:
        """Handle deletion of a namespace."""
        if self.approved_namespace(obj.name):
            with self._lock:
                self._infos.pop(obj.name, None)
            self._log.debug("deleted namespace %s", obj.name)

    def _get(self, namespace: str) -> Optional[_NamespaceInfo]:
        with self._lock:
            return self._infos.get(namespace)

    def _set_info(self, ns: Namespace) -> None:
        info = _NamespaceInfo.from_annotations(dict(ns.annotations or {}))
        with self._lock:
            self._infos[ns.name] = info

    def _lookup(self, namespace: str, attr: str) -> Optional[str]:
        info = self._get(namespace)
        if info is None:
            return None
        return getattr(info, attr) or None

    def get_default_region(self, namespace: str) -> Optional[str]:
        """The namespace's default region, or None if unset."""
        return self._lookup(namespace, "default_region")

    def get_owner_account_id(self, namespace: str) -> Optional[str]:
        """The namespace's owner account ID, or None if unset."""
        return self._lookup(namespace, "owner_account_id")

    def get_team_id(self, namespace: str) -> Optional[str]:
        """The namespace's team ID, or None if unset."""
        return self._lookup(namespace, "team_id")

    def get_endpoint_url(self, namespace: str) -> Optional[str]:
        """The namespace's endpoint URL, or None if unset."""
        return self._lookup(namespace, "endpoint_url")

    def get_deletion_policy(self, namespace: str, service: str) -> Optional[str]:
        """The namespace's deletion policy for ``service``, or None if unset."""
        info = self._get(namespace)
        if info is None:
            return None
        return info.deletion_policies.get(service.lower()) or None

    def has_synced(self) -> bool:
        """Whether the underlying informer has delivered its initial list."""
        return self._has_synced is not None and bool(self._has_synced())