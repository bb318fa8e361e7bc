# ackruntime

Building blocks for a controller that keeps Kubernetes custom resources and
the cloud resources behind them in step. The package uses only the standard
library. It talks to the cluster through client, reader and informer objects
that you pass in, so any Kubernetes client can be wrapped to fit.

## Modules

### `ackruntime.carm`: role-mapping ConfigMap cache

`CARMMap` caches the data of one role-mapping ConfigMap. The map sends an
account or team ID to the role that should be assumed. The ConfigMap's events
reach the cache through three handlers: `on_add(name, obj)`,
`on_update(name, old, new)` and `on_delete(name, obj)`. Each handler acts only
on a `ConfigMap` whose `name` matches. Deleting the ConfigMap empties the
cache.

`get_value(key)` returns the mapped value. It raises when there is no value
to return:

- `CARMConfigMapNotFoundError` when the ConfigMap has not been seen yet, or
  has been deleted;
- `KeyNotFoundError` when the key is missing;
- `EmptyValueError` when the key maps to an empty string.

All three derive from `CARMError`, which is a `LookupError`.

`run(name, informer)` registers the three handlers with an informer and
starts it. An informer is any object with these methods:

- `add_event_handler(on_add, on_update, on_delete)`;
- `start()`, which must not block;
- `stop()`;
- `has_synced()`.

`CARMMap.has_synced()` reports what the informer reports.

The constants `ACK_ROLE_ACCOUNT_MAP` (`"ack-role-account-map"`) and
`ACK_ROLE_TEAM_MAP` (`"ack-role-team-map"`) are the ConfigMap names.

### `ackruntime.namespace_cache`: namespace annotation cache

`NamespaceCache(log, watch_scope, ignored)` keeps the controller-relevant
annotations of each approved namespace. A namespace is approved when it is
not in `ignored` and is in `watch_scope`. An empty watch scope means every
namespace. `approved_namespace(name)` applies that rule.

Namespace events arrive through `on_add`, `on_update` and `on_delete` as
`Namespace(name, annotations)` objects. `run(informer)` connects the cache to
an informer and starts it. The lookups return the annotation value, or `None`
when the namespace is unknown or the annotation is missing or empty:

- `get_default_region(namespace)` reads `services.k8s.aws/default-region`;
- `get_owner_account_id(namespace)` reads `services.k8s.aws/owner-account-id`;
- `get_team_id(namespace)` reads `services.k8s.aws/team-id`;
- `get_endpoint_url(namespace)` reads `services.k8s.aws/endpoint-url`;
- `get_deletion_policy(namespace, service)` reads
  `<service>.services.k8s.aws/deletion-policy`. The service name is matched
  in lower case.

### `ackruntime.caches`: the caches together

`Caches` holds `accounts`, `teams` and `namespaces`, any of which may be
`None`, and the `system_namespace` where the role ConfigMaps live.

`new_caches(log, config, team_level_carm)` builds the account map and the
namespace cache from a `CacheConfig(watch_scope, ignored)`. It builds the team
map only when `team_level_carm` is true.

- `Caches.run(informers)` starts each present cache. It takes a factory with
  `config_maps(namespace)` and `namespaces()` methods, each of which returns
  an informer.
- `Caches.wait_for_caches_to_sync(timeout)` polls until every present cache
  has synced. It returns `False` on timeout or after `stop()`.
- `Caches.stop()` stops every informer that `run` started.

`ack_system_namespace(environ)` reads `ACK_SYSTEM_NAMESPACE`, then
`K8S_NAMESPACE`, and falls back to `ack-system`. When `environ` is not given
it reads `os.environ`.

### `ackruntime.resource_log`: structured logging

`StructuredLogger(logger, values)` wraps a `logging.Logger` and carries
key/value pairs. `info` and `debug` write each message as
`msg key=value ...`, and attach the pairs to the record as `ack_values`.
`with_values` and `with_name` return new loggers, and `debug_enabled` reports
whether debug messages are written.

`ResourceLogger(log, res, *values)` adds `generation` to every message. The
generation is taken from `res.meta_object()`, or from `res.metadata`.

- `enter(name)` logs `> name` at debug level, with one more `>` for each level
  of nesting.
- `exit(name, err)` logs `< name` at debug level, with `error` added when
  `err` is given.
- `trace(name)` calls `enter` and returns a callable that calls `exit`.

Helpers add standard fields for each kind of object:

- plain resources: `adapt_resource`, `debug_resource` and `info_resource`;
- adopted resources: `adapt_adopted_resource`, `debug_adopted_resource` and
  `info_adopted_resource`, which add the target group and kind, namespace,
  name and generation;
- field-export objects: `adapt_field_export`, `debug_field_export` and
  `info_field_export`, which add source and target details.

### `ackruntime.adoption`: adopting existing cloud resources

`AdoptionReconciler(service_controller, log, config, metrics, caches,
kube_client, api_reader)` handles `AdoptedResource` objects.

`reconcile(Request(namespace, name))` works through these steps:

1. It reads the `AdoptedResource`. A `NotFoundError` from the reader means
   there is nothing to do.
2. It skips targets whose API group belongs to another service.
3. It finds the resource manager factory keyed `"<Kind>.<group>"`.
4. It looks up a role ARN in the team or account cache when the namespace
   calls for one. When no role ARN is available, it asks for a retry after
   15 seconds.
5. It works out the region and the endpoint URL.
6. It opens a session and gets a resource manager.
7. Finally it cleans up a resource that is being deleted, or calls `sync` if
   the resource has not yet been adopted.

`sync(target_descriptor, manager, desired)` adopts the resource:

1. It sets the identifiers and reads the cloud resource.
2. It builds the Kubernetes metadata, taking `spec.kubernetes.metadata` where
   it is given and otherwise the adopted resource's own name and namespace.
3. It marks the object managed and adopted.
4. It creates the object if the reader cannot find it, and restores its
   status afterwards.
5. It adds the `finalizers.services.k8s.aws/AdoptedResource` finalizer.
6. It records an `ACK.Adopted` condition, `True` on success or `False` with
   the error message. Errors are raised again after the condition has been
   recorded.

`handle_reconcile_error(err)` turns an error into a `Result`:

- `None` or a `TerminalError` gives `Result()`.
- `RequeueNeededAfter` gives `Result(requeue_after=...)`.
- `RequeueNeeded` gives `Result(requeue=True)`.
- Any other error is raised again.

Both requeue errors are also found when they are the cause of another error.

The objects passed in are used through these methods and attributes:

- the reader: `get(namespace, name, obj)`;
- the client: `create`, `status_update`, `patch(res, base)` and
  `status_patch(res, base)`;
- the service controller: `resource_manager_factories()`,
  `new_session(region, endpoint_url, role_arn, gvk)` and
  `metadata().service_alias`;
- the config: `account_id`, `region`, `endpoint_url` and `feature_gates`,
  where the feature gates are a container of names or an object with
  `is_enabled(name)`. The gates consulted are `TeamLevelCARM` and
  `ServiceLevelCARM`.

## Example

```python
from ackruntime.carm import ACK_ROLE_ACCOUNT_MAP, CARMMap, ConfigMap, KeyNotFoundError

cache = CARMMap()
cache.on_add(
    ACK_ROLE_ACCOUNT_MAP,
    ConfigMap(
        name=ACK_ROLE_ACCOUNT_MAP,
        namespace="ack-system",
        data={"111122223333": "arn:aws:iam::111122223333:role/Example"},
    ),
)

cache.get_value("111122223333")  # "arn:aws:iam::111122223333:role/Example"
try:
    cache.get_value("444455556666")
except KeyNotFoundError as err:
    print(err)  # key not found in CARM configmap
```

## What it does not do

- There is no Kubernetes client, informer or controller manager. The caller
  supplies the objects that read, patch and watch the cluster, and sends
  requests to `reconcile`.
- There is no command-line program and no long-running process. Everything
  is a library call.
- Nothing is stored. The caches live in memory and are rebuilt from informer
  events.