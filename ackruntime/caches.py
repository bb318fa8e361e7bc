"""The set of caches a controller keeps: accounts, teams and namespaces."""

from __future__ import annotations

import logging
import os
import threading
import time
from dataclasses import dataclass, field
from typing import Mapping, Optional, Protocol

from ackruntime.carm import ACK_ROLE_ACCOUNT_MAP, ACK_ROLE_TEAM_MAP, CARMMap, Informer
from ackruntime.namespace_cache import NamespaceCache

ENV_ACK_SYSTEM_NAMESPACE = "ACK_SYSTEM_NAMESPACE"
ENV_DEPRECATED_K8S_NAMESPACE = "K8S_NAMESPACE"
DEFAULT_ACK_SYSTEM_NAMESPACE = "ack-system"

_POLL_INTERVAL = 0.1


def ack_system_namespace(environ: Optional[Mapping[str, str]] = None) -> str:
    """The namespace holding ACK system config maps, read from the environment."""
    env = os.environ if environ is None else environ
    return (
        env.get(ENV_ACK_SYSTEM_NAMESPACE)
        or env.get(ENV_DEPRECATED_K8S_NAMESPACE)
        or DEFAULT_ACK_SYSTEM_NAMESPACE
    )


class InformerFactory(Protocol):
    """Creates informers for config maps in a namespace and for namespaces."""

    def config_maps(self, namespace: str) -> Informer: ...

    def namespaces(self) -> Informer: ...


@dataclass
class CacheConfig:
    """Namespaces to watch (empty means all) and namespaces to ignore."""

    watch_scope: list[str] = field(default_factory=list)
    ignored: list[str] = field(default_factory=list)


@dataclass
class Caches:
    """The caches a controller consults; any of them may be absent."""

    accounts: Optional[CARMMap] = None
    teams: Optional[CARMMap] = None
    namespaces: Optional[NamespaceCache] = None
    system_namespace: str = field(default_factory=ack_system_namespace)
    _informers: list[Informer] = field(default_factory=list, init=False, repr=False)
    _stopped: threading.Event = field(default_factory=threading.Event, init=False, repr=False)

    def run(self, informers: InformerFactory) -> None:
        """Start every present cache with informers from ``informers``."""
        if self.accounts is not None:
            informer = informers.config_maps(self.system_namespace)
            self._informers.append(informer)
            self.accounts.run(ACK_ROLE_ACCOUNT_MAP, informer)
        if self.teams is not None:
            informer = informers.config_maps(self.system_namespace)
            self._informers.append(informer)
            self.teams.run(ACK_ROLE_TEAM_MAP, informer)
        if self.namespaces is not None:
            informer = informers.namespaces()
            self._informers.append(informer)
            self.namespaces.run(informer)

    def wait_for_caches_to_sync(self, timeout: Optional[float] = None) -> bool:
        """Wait until every present cache has synced; False on timeout or stop."""
        deadline = None if timeout is None else time.monotonic() + timeout
        pending = [c for c in (self.namespaces, self.accounts, self.teams) if c is not None]
        while True:
            pending = [c for c in pending if not c.has_synced()]
            if not pending:
                return True
            if self._stopped.is_set():
                return False
            if deadline is not None and time.monotonic() >= deadline:
                return False
            time.sleep(_POLL_INTERVAL)

    def stop(self) -> None:
        """Stop every informer started by ``run``."""
        self._stopped.set()
        for informer in self._informers:
            informer.stop()


def new_caches(
    log: Optional[logging.Logger] = None,
    config: Optional[CacheConfig] = None,
    team_level_carm: bool = False,
) -> Caches:
    """Build the account and namespace caches, and the team cache if enabled."""
    config = config or CacheConfig()
    return Caches(
        accounts=CARMMap(log),
        teams=CARMMap(log) if team_level_carm else None,
        namespaces=NamespaceCache(log, config.watch_scope, config.ignored),
    )