"""Reconciliation of adopted resources: bringing existing AWS resources under management."""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Type, TypeVar

from ackruntime.caches import Caches
from ackruntime.carm import ACK_ROLE_ACCOUNT_MAP, ACK_ROLE_TEAM_MAP, CARMMap
from ackruntime.resource_log import (
    StructuredLogger,
    debug_adopted_resource,
    info_adopted_resource,
)

ADOPTION_FINALIZER = "finalizers.services.k8s.aws/AdoptedResource"
"""Finalizer placed on adopted resources that are under management."""

ANNOTATION_REGION = "services.k8s.aws/region"

CONDITION_TYPE_ADOPTED = "ACK.Adopted"
CONDITION_TYPE_RECOVERABLE = "ACK.Recoverable"
CONDITION_TYPE_TERMINAL = "ACK.Terminal"
CONDITION_TRUE = "True"
CONDITION_FALSE = "False"

FEATURE_TEAM_LEVEL_CARM = "TeamLevelCARM"
FEATURE_SERVICE_LEVEL_CARM = "ServiceLevelCARM"

ROLE_ARN_NOT_AVAILABLE_REQUEUE_DELAY = 15.0
"""Seconds to wait before retrying when no role ARN is available yet."""

_E = TypeVar("_E", bound=BaseException)


@dataclass
class Result:
    """Outcome of one reconciliation: whether and when to try again."""

    requeue: bool = False
    requeue_after: float = 0.0


@dataclass(frozen=True)
class Request:
    """Identifies the namespaced object to reconcile."""

    namespace: str
    name: str


@dataclass
class Condition:
    """A status condition of a custom resource."""

    type: str
    status: str = ""
    message: Optional[str] = None


@dataclass
class ObjectMeta:
    """Kubernetes object metadata."""

    name: str = ""
    namespace: str = ""
    generate_name: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    finalizers: list[str] = field(default_factory=list)
    owner_references: list[Any] = field(default_factory=list)
    generation: int = 0
    deletion_timestamp: Optional[Any] = None


@dataclass
class AdoptedResource:
    """A request to adopt an existing AWS resource into the cluster."""

    @dataclass
    class Target:
        """The Kubernetes kind to create and optional metadata for it."""

        group: str = ""
        kind: str = ""
        metadata: Optional[ObjectMeta] = None

    @dataclass
    class Spec:
        """AWS identifiers of the resource and its Kubernetes target."""

        aws: Any = None
        kubernetes: Optional["AdoptedResource.Target"] = None

    @dataclass
    class Status:
        """Conditions describing the adoption."""

        conditions: list[Condition] = field(default_factory=list)

    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    spec: "AdoptedResource.Spec" = field(default_factory=Spec)
    status: "AdoptedResource.Status" = field(default_factory=Status)


class NotFoundError(LookupError):
    """The requested Kubernetes object does not exist."""


class TerminalError(Exception):
    """The resource is in a state that retrying cannot fix."""

    def __init__(self, message: str = "resource is in terminal condition") -> None:
        super().__init__(message)


class _WrappingError(Exception):
    def __init__(self, err: BaseException) -> None:
        super().__init__(str(err))
        self.err = err
        self.__cause__ = err


class RequeueNeeded(_WrappingError):
    """The reconciliation should be retried soon."""


class RequeueNeededAfter(_WrappingError):
    """The reconciliation should be retried after ``duration`` seconds."""

    def __init__(self, err: BaseException, duration: float) -> None:
        super().__init__(err)
        self.duration = duration


class NoRequeue(_WrappingError):
    """The error should be reported but not retried."""


def _find_error(err: Optional[BaseException], cls: Type[_E]) -> Optional[_E]:
    seen: set[int] = set()
    while err is not None and id(err) not in seen:
        if isinstance(err, cls):
            return err
        seen.add(id(err))
        if err.__cause__ is not None:
            err = err.__cause__
        elif not err.__suppress_context__:
            err = err.__context__
        else:
            err = None
    return None


def _add_finalizer(meta: ObjectMeta, finalizer: str) -> None:
    if finalizer not in meta.finalizers:
        meta.finalizers.append(finalizer)


def _remove_finalizer(meta: ObjectMeta, finalizer: str) -> None:
    meta.finalizers = [f for f in meta.finalizers if f != finalizer]


def _config_value(config: Any, name: str, default: Any = "") -> Any:
    if config is None:
        return default
    value = getattr(config, name, default)
    return default if value is None else value


def _feature_enabled(config: Any, name: str) -> bool:
    gates = _config_value(config, "feature_gates", None)
    if gates is None:
        return False
    is_enabled = getattr(gates, "is_enabled", None)
    if callable(is_enabled):
        return bool(is_enabled(name))
    return name in gates


def _arn_account_id(arn: str) -> str:
    if not arn.startswith("arn:"):
        raise ValueError("arn: invalid prefix")
    sections = arn.split(":", 5)
    if len(sections) != 6:
        raise ValueError("arn: not enough sections")
    return sections[4]


def _group_kind_string(group: str, kind: str) -> str:
    return f"{kind}.{group}" if group else kind


class AdoptionReconciler:
    """Reconciles AdoptedResource objects targeting this controller's service."""

    def __init__(
        self,
        service_controller: Any,
        log: Any = None,
        config: Any = None,
        metrics: Any = None,
        caches: Optional[Caches] = None,
        kube_client: Any = None,
        api_reader: Any = None,
    ) -> None:
        base = log if isinstance(log, StructuredLogger) else StructuredLogger(log)
        self._sc = service_controller
        self._log = base.with_name("adopted-reconciler")
        self._config = config
        self._metrics = metrics
        self._caches = caches if caches is not None else Caches()
        self._kc = kube_client
        self._api_reader = api_reader

    def reconcile(self, request: Request) -> Result:
        """Reconcile the AdoptedResource named by ``request``."""
        try:
            self._reconcile(request)
        except Exception as err:
            return self.handle_reconcile_error(err)
        return self.handle_reconcile_error(None)

    def _reconcile(self, request: Request) -> None:
        try:
            res = self._api_reader.get(request.namespace, request.name, AdoptedResource())
        except NotFoundError:
            return

        target = res.spec.kubernetes
        if target is None:
            raise ValueError("adopted resource does not name a target Kubernetes kind")

        factories = self._sc.resource_manager_factories()
        first = next(iter(factories.values()), None)
        if first is None:
            raise LookupError("resource manager factory not found")
        if target.group != first.resource_descriptor().group_version_kind().group:
            debug_adopted_resource(
                self._log, res, "target resource API group is not of this service. no-op"
            )
            return

        rmf = factories.get(_group_kind_string(target.group, target.kind))
        if rmf is None:
            raise LookupError("resource manager factory not found")
        if not rmf.is_adoptable():
            raise ValueError("resource is not adoptable")

        account_id, need_carm_lookup = self._owner_account_id(res)
        role_arn = ""
        team_id = self._team_id(res)
        if team_id and _feature_enabled(self._config, FEATURE_TEAM_LEVEL_CARM):
            try:
                role_arn = self._role_arn(team_id, ACK_ROLE_TEAM_MAP)
            except LookupError as err:
                info_adopted_resource(
                    self._log, res,
                    f"Unable to start adoption reconcilliation {account_id}: {err}",
                )
                raise RequeueNeededAfter(err, ROLE_ARN_NOT_AVAILABLE_REQUEUE_DELAY) from err
            try:
                account_id = _arn_account_id(role_arn)
            except ValueError as err:
                raise ValueError(
                    f"parsing role ARN {role_arn!r} from {ACK_ROLE_TEAM_MAP!r} configmap: {err}"
                ) from err
        elif need_carm_lookup:
            try:
                role_arn = self._role_arn(account_id, ACK_ROLE_ACCOUNT_MAP)
            except LookupError as err:
                info_adopted_resource(
                    self._log, res,
                    f"Unable to start adoption reconcilliation {account_id}: {err}",
                )
                raise RequeueNeededAfter(err, ROLE_ARN_NOT_AVAILABLE_REQUEUE_DELAY) from err

        region = self._region(res)
        target_descriptor = rmf.resource_descriptor()
        endpoint_url = self._endpoint_url(res)
        gvk = target_descriptor.group_version_kind()

        session = self._sc.new_session(region, endpoint_url, role_arn, gvk)
        info_adopted_resource(self._log, res, "starting adoption reconciliation")

        manager = rmf.manager_for(
            self._config, self._log, self._metrics, self, session, account_id, region, role_arn
        )

        if res.metadata.deletion_timestamp is not None:
            self._mark_unmanaged(res)
            return
        if self._is_adopted(res):
            return
        self.sync(target_descriptor, manager, res)

    def sync(self, target_descriptor: Any, manager: Any, desired: AdoptedResource) -> None:
        """Read the AWS resource, create its Kubernetes object and mark it adopted."""
        readable = target_descriptor.resource_from_runtime_object(
            target_descriptor.empty_runtime_object()
        )
        try:
            readable.set_identifiers(desired.spec.aws)
            described = manager.read_one(readable)
        except Exception as err:
            self._on_error(desired, err)
            raise

        current = described.meta_object()
        target_meta = ObjectMeta(
            labels=dict(current.labels or {}),
            annotations=dict(current.annotations or {}),
            finalizers=list(current.finalizers or []),
            owner_references=list(current.owner_references or []),
            generate_name=current.generate_name or "",
        )

        kubernetes = desired.spec.kubernetes
        wanted = kubernetes.metadata if kubernetes is not None else None
        if wanted is not None:
            if wanted.name:
                target_meta.name = wanted.name
            if wanted.namespace:
                target_meta.namespace = wanted.namespace
            if wanted.annotations:
                target_meta.annotations = dict(wanted.annotations)
            if wanted.labels:
                target_meta.labels = dict(wanted.labels)
            if wanted.owner_references:
                target_meta.owner_references = list(wanted.owner_references)
            if wanted.generate_name:
                target_meta.generate_name = wanted.generate_name

        if not target_meta.name:
            target_meta.name = desired.metadata.name
        if not target_meta.namespace:
            target_meta.namespace = desired.metadata.namespace

        described.set_object_meta(target_meta)
        target_descriptor.mark_managed(described)
        target_descriptor.mark_adopted(described)

        meta = described.meta_object()
        try:
            self._api_reader.get(meta.namespace, meta.name, described.runtime_object())
        except NotFoundError:
            # The create call empties the status, so keep a copy to restore.
            described_copy = described.deep_copy()
            try:
                self._kc.create(described.runtime_object())
                described.set_status(described_copy)
                self._kc.status_update(described.runtime_object())
            except Exception as err:
                self._on_error(desired, err)
                raise
        except Exception as err:
            self._on_error(desired, err)
            raise

        try:
            self._mark_managed(desired)
        except Exception as err:
            self._on_error(desired, err)
            raise

        self._patch_adopted_condition(desired, None)

    def handle_reconcile_error(self, err: Optional[BaseException]) -> Result:
        """Turn a reconcile error into a Result, re-raising errors that are not handled."""
        if err is None or isinstance(err, TerminalError):
            return Result()

        after = _find_error(err, RequeueNeededAfter)
        if after is not None:
            self._log.debug(
                "requeue needed after error", "error", after.err, "after", after.duration
            )
            return Result(requeue_after=after.duration)

        needed = _find_error(err, RequeueNeeded)
        if needed is not None:
            self._log.debug("requeue needed error", "error", needed.err)
            return Result(requeue=True)

        raise err

    def _on_error(self, res: AdoptedResource, err: BaseException) -> None:
        try:
            self._patch_adopted_condition(res, err)
        except Exception as patch_err:
            self._log.debug("failed to patch adopted condition", "error", patch_err)

    def _patch_adopted_condition(
        self, res: AdoptedResource, err: Optional[BaseException]
    ) -> None:
        base = copy.deepcopy(res)
        condition = next(
            (c for c in res.status.conditions if c.type == CONDITION_TYPE_ADOPTED), None
        )
        if condition is None:
            condition = Condition(type=CONDITION_TYPE_ADOPTED)
            res.status.conditions.append(condition)
        if err is not None:
            condition.status = CONDITION_FALSE
            condition.message = str(err)
        else:
            condition.status = CONDITION_TRUE
            condition.message = None
        self._kc.status_patch(res, base)

    @staticmethod
    def _is_adopted(res: AdoptedResource) -> bool:
        for condition in res.status.conditions:
            if condition.type == CONDITION_TYPE_ADOPTED:
                return condition.status == CONDITION_TRUE
        return False

    def _mark_managed(self, res: AdoptedResource) -> None:
        base = copy.deepcopy(res)
        _add_finalizer(res.metadata, ADOPTION_FINALIZER)
        self._patch_metadata_and_spec(res, base)

    def _mark_unmanaged(self, res: AdoptedResource) -> None:
        base = copy.deepcopy(res)
        _remove_finalizer(res.metadata, ADOPTION_FINALIZER)
        self._patch_metadata_and_spec(res, base)

    def _patch_metadata_and_spec(self, res: AdoptedResource, base: AdoptedResource) -> None:
        # The patch call overwrites the status with the server's copy; keep ours.
        status = copy.deepcopy(res.status)
        try:
            self._kc.patch(res, base)
        finally:
            res.status = status

    def _namespace_value(self, getter: str, namespace: str) -> Optional[str]:
        namespaces = self._caches.namespaces
        if namespaces is None:
            return None
        return getattr(namespaces, getter)(namespace)

    def _owner_account_id(self, res: AdoptedResource) -> tuple[str, bool]:
        account_id = self._namespace_value("get_owner_account_id", res.metadata.namespace)
        if account_id:
            return account_id, True
        return _config_value(self._config, "account_id"), False

    def _team_id(self, res: AdoptedResource) -> str:
        return self._namespace_value("get_team_id", res.metadata.namespace) or ""

    def _endpoint_url(self, res: AdoptedResource) -> str:
        url = self._namespace_value("get_endpoint_url", res.metadata.namespace)
        return url or _config_value(self._config, "endpoint_url")

    def _region(self, res: AdoptedResource) -> str:
        region = res.metadata.annotations.get(ANNOTATION_REGION)
        if region is not None:
            return region
        default = self._namespace_value("get_default_region", res.metadata.namespace)
        if default:
            return default
        return _config_value(self._config, "region")

    def _role_arn(self, ident: str, cache_name: str) -> str:
        cache: Optional[CARMMap]
        if cache_name == ACK_ROLE_TEAM_MAP:
            cache = self._caches.teams
        elif cache_name == ACK_ROLE_ACCOUNT_MAP:
            cache = self._caches.accounts
        else:
            raise ValueError(f"invalid cache name: {cache_name}")
        if cache is None:
            raise LookupError(
                f"retrieving role ARN for account/team ID {ident!r} from "
                f"{cache_name!r} configmap: cache is not running"
            )

        if _feature_enabled(self._config, FEATURE_SERVICE_LEVEL_CARM):
            service_id = f"{self._sc.metadata().service_alias}.{ident}"
            try:
                return cache.get_value(service_id)
            except LookupError:
                pass

        try:
            return cache.get_value(ident)
        except LookupError as err:
            raise LookupError(
                f"retrieving role ARN for account/team ID {ident!r} from "
                f"{cache_name!r} configmap: {err}"
            ) from err


logging.getLogger(__name__).addHandler(logging.NullHandler())