# kubenode

Building blocks for keeping a virtual node alive in Kubernetes. Node and lease
objects are plain dictionaries in the API server's JSON shape. You supply the
client that talks to the API server. The package has no dependencies outside
the standard library.

## Installing

```
pip install kubenode
```

## What is inside

- `kubenode.ping`: `NodePingController(node_provider, ping_interval, ping_timeout=None)`
  calls `node_provider.ping()` at a fixed interval. `ping()` may be a plain function or
  a coroutine function. Only one ping is in flight at a time. `await run()` pings
  until it is cancelled. `await get_result()` returns the latest `PingResult`
  (`time`, `error`) and waits for the first one if it is not there yet. A ping that
  takes longer than the timeout gives a result whose error is a `TimeoutError`. An
  interval or timeout of zero raises `ValueError`.
- `kubenode.lease`: `LeaseController(clock, client, lease_duration_seconds,
  renew_interval, get_ping_result, get_server_node)` keeps the node's lease in the
  `kube-node-lease` namespace renewed while the last ping succeeded.
  - The client offers `get(name)`, `create(lease)` and `update(lease)`, and raises
    `NotFoundError` or `ConflictError` from `kubenode.errors`.
  - `sync()` renews the lease once.
  - `run()` renews it every `renew_interval` seconds.
  - `new_lease(node, base)` builds a lease, or a renewed copy of `base`.
  - `RealClock` is the wall clock. `NodeNotReadyError` wraps a failed `PingResult`.
- `kubenode.patch`: three-way strategic merge patches for node objects.
  - `prepare_node_status_patch(provider_node, api_server_node)` builds the patch. It
    keeps conditions and annotations that other writers added, and removes what the
    controller itself stopped setting. It records what was applied in the annotations
    `virtual-kubelet.io/last-applied-node-status` and
    `virtual-kubelet.io/last-applied-object-meta`.
  - `three_way_merge_patch`, `apply_strategic_merge_patch` and
    `simplest_object_metadata` are the building blocks behind it.
- `kubenode.stats`: dataclasses for the kubelet stats summary (`Summary`,
  `NodeStats`, `PodStats`, `ContainerStats`, `CPUStats`, `MemoryStats`, `FsStats`,
  `NetworkStats`, …). `to_json_dict(obj)` gives the wire dictionary and
  `Summary.to_json()` gives compact JSON.
- `kubenode.errors`: `NotFoundError`, `InvalidInputError`, `ConflictError`, and
  `is_not_found`, `is_invalid_input` and `is_conflict`. The three functions also
  look through the `__cause__` chain.
- `kubenode.filter`: pod filters. `filter_pods_for_node_name(name)` accepts pods
  whose `spec.nodeName` is `name`. `pod_filters(*filters)` accepts a pod if any of
  the filters accepts it.
- `kubenode.tls`: `TLSConfig`, with TLS 1.2 as the minimum version, the ciphers from
  `default_server_ciphers()`, and client certificates requested. `new_tls_config(*opts)`
  applies the options `with_ca_cert(pem)`, `with_ca_from_path(path)` and
  `with_key_pair_from_path(cert, key)`. `TLSConfig.to_ssl_context()` builds a server
  `ssl.SSLContext`.

## Examples

Filtering pod events:

```python
from kubenode.filter import filter_pods_for_node_name, pod_filters

only_mine = pod_filters(filter_pods_for_node_name("vk-node"))
only_mine({"spec": {"nodeName": "vk-node"}})  # True
```

Patching a node's status without dropping conditions set by others:

```python
from kubenode.patch import apply_strategic_merge_patch, prepare_node_status_patch

server_node = {"metadata": {"name": "vk-node"}, "status": {"conditions": [{"type": "Other"}]}}
wanted = {"status": {"conditions": [{"type": "Ready", "status": "True"}]}}

patch = prepare_node_status_patch(wanted, server_node)
updated = apply_strategic_merge_patch(server_node, patch)
# updated["status"]["conditions"] holds both "Other" and "Ready"
```

Pinging a provider:

```python
import asyncio
from kubenode.ping import NodePingController

class Provider:
    async def ping(self):
        pass

async def main():
    pings = NodePingController(Provider(), ping_interval=10, ping_timeout=5)
    task = asyncio.create_task(pings.run())
    result = await pings.get_result()
    print(result.error)  # None
    task.cancel()

asyncio.run(main())
```

## What it does not do

Some parts are left to the caller:

- No controller that registers the node object and runs the status update loop.
  You send the patch from `prepare_node_status_patch` with your own client.
- No HTTP handlers for container logs, exec, running pods or stats. The stats types
  only give the JSON body.
- No request authentication or authorization.
- No API client. The lease controller uses the client you hand it.

## Running the tests

```
pip install -e ".[test]"
pytest
```