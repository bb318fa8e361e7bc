"""Cache of the cross-account resource management (CARM) config maps."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol

ACK_ROLE_ACCOUNT_MAP = "ack-role-account-map"
"""Name of the config map mapping AWS account IDs to role ARNs."""

ACK_ROLE_TEAM_MAP = "ack-role-team-map"
"""Name of the config map mapping team IDs to role ARNs."""


class Informer(Protocol):
    """Source of add/update/delete events for watched objects.

    ``start`` must not block: the informer delivers events on its own.
    """

    def add_event_handler(
        self,
        on_add: Callable[[Any], None],
        on_update: Callable[[Any, Any], None],
        on_delete: Callable[[Any], None],
    ) -> None: ...

    def start(self) -> None: ...

    def stop(self) -> None: ...

    def has_synced(self) -> bool: ...


@dataclass
class ConfigMap:
    """A Kubernetes config map: its name, namespace and string data."""

    name: str
    namespace: str = ""
    data: dict[str, str] = field(default_factory=dict)


class CARMError(LookupError):
    """A role could not be looked up in a CARM config map."""

    message = "CARM lookup failed"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.message)


class CARMConfigMapNotFoundError(CARMError):
    """The CARM config map does not exist."""

    message = "CARM configmap not found"


class KeyNotFoundError(CARMError):
    """The key is not present in the CARM config map."""

    message = "key not found in CARM configmap"


class EmptyValueError(CARMError):
    """The key is present but its role value is empty."""

    message = "role value is empty in CARM configmap"


class CARMMap:
    """Thread-safe cache of one CARM config map's data."""

    def __init__(self, log: Optional[logging.Logger] = None) -> None:
        base = log if log is not None else logging.getLogger(__name__)
        self._log = base.getChild("cache.carm")
        self._lock = threading.Lock()
        self._data: dict[str, str] = {}
        self._config_map_created = False
        self._has_synced: Optional[Callable[[], bool]] = None

    @staticmethod
    def _matches(obj: Any, name: str) -> bool:
        return isinstance(obj, ConfigMap) and obj.name == name

    def run(self, name: str, informer: Informer) -> None:
        """Watch config maps called ``name`` through ``informer`` and start it."""
        self._log.debug("starting shared informer for CARM cache, target config map %s", name)
        informer.add_event_handler(
            lambda obj: self.on_add(name, obj),
            lambda old, new: self.on_update(name, old, new),
            lambda obj: self.on_delete(name, obj),
        )
        informer.start()
        self._has_synced = informer.has_synced

    def on_add(self, name: str, obj: Any) -> None:
        """Handle creation of a config map."""
        if self._matches(obj, name):
            self._update_data(True, dict(obj.data or {}))
            self._log.debug("created account config map %s", obj.name)

    def on_update(self, name: str, old: Any, new: Any) -> None:
        """Handle an update of a config map."""
        if self._matches(new, name):
            self._update_data(True, dict(new.data or {}))
            self._log.debug("updated account config map %s", new.name)

    def on_delete(self, name: str, obj: Any) -> None:
        """Handle deletion of a config map."""
        if self._matches(obj, name):
            self._update_data(False, {})
            self._log.debug("deleted account config map %s", obj.name)

    def get_value(self, key: str) -> str:
        """Return the role stored under ``key``; raise a CARMError otherwise."""
        with self._lock:
            if not self._config_map_created:
                raise CARMConfigMapNotFoundError()
            try:
                value = self._data[key]
            except KeyError:
                raise KeyNotFoundError() from None
            if value == "":
                raise EmptyValueError()
            return value

    def has_synced(self) -> bool:
        """Whether the underlying informer has delivered its initial list."""
        return self._has_synced is not None and bool(self._has_synced())

    def _update_data(self, exists: bool, data: dict[str, str]) -> None:
        with self._lock:
            self._data = data
            self._config_map_created = exists