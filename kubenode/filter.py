"""Pod event filters for pods given as dictionaries in the API server's JSON shape."""

from __future__ import annotations

from typing import Any, Callable, Mapping

PodFilter = Callable[[Mapping[str, Any]], bool]


def filter_pods_for_node_name(name: str) -> PodFilter:
    """Return a filter accepting pods whose ``spec.nodeName`` is ``name``."""

    def accept(pod: Mapping[str, Any]) -> bool:
        return (pod.get("spec") or {}).get("nodeName", "") == name

    return accept


def pod_filters(*filters: PodFilter) -> PodFilter:
    """Combine filters: a pod passes if any filter, tried in order, accepts it."""

    def accept(pod: Mapping[str, Any]) -> bool:
        return any(f(pod) for f in filters)

    return accept