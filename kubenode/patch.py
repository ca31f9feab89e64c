"""Three-way strategic merge patches for node objects.

Nodes are plain dictionaries in the API server's JSON shape. The controller
records what it last applied in two annotations on the node. The next patch
is computed from that record, the state the provider wants now, and the
state on the server. Fields that other agents added, such as extra node
conditions, survive the patch. Fields that the controller itself stopped
setting are removed.

Lists that carry a merge key, such as ``status.conditions`` keyed by
``type``, are merged item by item. All other lists are replaced whole.
"""

from __future__ import annotations

import copy
import json
from typing import Any, Mapping, Optional

LAST_APPLIED_NODE_STATUS = "virtual-kubelet.io/last-applied-node-status"
LAST_APPLIED_OBJECT_META = "virtual-kubelet.io/last-applied-object-meta"

_SPECIAL_ANNOTATIONS = frozenset({LAST_APPLIED_NODE_STATUS, LAST_APPLIED_OBJECT_META})

_DIRECTIVE = "$patch"

# Merge keys of the node lists that are merged item by item.
_MERGE_KEYS: dict[tuple[str, ...], str] = {
    ("metadata", "ownerReferences"): "uid",
    ("spec", "taints"): "key",
    ("status", "conditions"): "type",
    ("status", "addresses"): "type",
    ("status", "volumesAttached"): "name",
}

Path = tuple[str, ...]


def _merge_key(path: Path) -> Optional[str]:
    return _MERGE_KEYS.get(path)


def _is_keyed(items: Any, key: str) -> bool:
    return isinstance(items, list) and all(
        isinstance(item, dict) and key in item for item in items
    )


def _keyed_list_path(path: Path, old: Any, new: Any) -> Optional[str]:
    key = _merge_key(path)
    if key is not None and _is_keyed(old, key) and _is_keyed(new, key):
        return key
    return None


# --------------------------------------------------------------------------
# Diffing


def _diff(
    old: Mapping[str, Any],
    new: Mapping[str, Any],
    path: Path,
    *,
    ignore_deletions: bool,
    ignore_changes: bool,
) -> dict[str, Any]:
    patch: dict[str, Any] = {}
    for key, new_value in new.items():
        sub = path + (key,)
        if key not in old:
            if not ignore_changes:
                patch[key] = copy.deepcopy(new_value)
            continue
        old_value = old[key]
        if old_value == new_value:
            continue
        if isinstance(old_value, dict) and isinstance(new_value, dict):
            nested = _diff(
                old_value,
                new_value,
                sub,
                ignore_deletions=ignore_deletions,
                ignore_changes=ignore_changes,
            )
            if nested:
                patch[key] = nested
        elif (merge_key := _keyed_list_path(sub, old_value, new_value)) is not None:
            nested_list = _diff_list(
                old_value,
                new_value,
                sub,
                merge_key,
                ignore_deletions=ignore_deletions,
                ignore_changes=ignore_changes,
            )
            if nested_list:
                patch[key] = nested_list
        elif not ignore_changes:
            patch[key] = copy.deepcopy(new_value)
    if not ignore_deletions:
        for key in old:
            if key not in new:
                patch[key] = None
    return patch


def _diff_list(
    old: list,
    new: list,
    path: Path,
    merge_key: str,
    *,
    ignore_deletions: bool,
    ignore_changes: bool,
) -> list:
    old_items = {item[merge_key]: item for item in old}
    new_keys = {item[merge_key] for item in new}
    patch: list = []
    for item in new:
        key_value = item[merge_key]
        if key_value not in old_items:
            if not ignore_changes:
                patch.append(copy.deepcopy(item))
            continue
        previous = old_items[key_value]
        if previous == item:
            continue
        nested = _diff(
            previous,
            item,
            path,
            ignore_deletions=ignore_deletions,
            ignore_changes=ignore_changes,
        )
        if nested:
            patch.append({merge_key: key_value, **nested})
    if not ignore_deletions:
        for key_value in old_items:
            if key_value not in new_keys:
                patch.append({_DIRECTIVE: "delete", merge_key: key_value})
    return patch


# --------------------------------------------------------------------------
# Combining patches


def _merge_patches(first: Mapping[str, Any], second: Mapping[str, Any], path: Path) -> dict:
    result = copy.deepcopy(dict(first))
    for key, value in second.items():
        sub = path + (key,)
        existing = result.get(key)
        if isinstance(existing, dict) and isinstance(value, dict):
            result[key] = _merge_patches(existing, value, sub)
        elif (merge_key := _keyed_list_path(sub, existing, value)) is not None:
            result[key] = _merge_patch_lists(existing, value, sub, merge_key)
        else:
            result[key] = copy.deepcopy(value)
    return result


def _merge_patch_lists(first: list, second: list, path: Path, merge_key: str) -> list:
    result = copy.deepcopy(first)
    for item in second:
        index = next(
            (i for i, existing in enumerate(result) if existing[merge_key] == item[merge_key]),
            None,
        )
        if index is None:
            result.append(copy.deepcopy(item))
        elif _DIRECTIVE in item or _DIRECTIVE in result[index]:
            result[index] = copy.deepcopy(item)
        else:
            result[index] = _merge_patches(result[index], item, path)
    return result


def three_way_merge_patch(
    original: Optional[Mapping[str, Any]],
    modified: Mapping[str, Any],
    current: Optional[Mapping[str, Any]],
) -> dict[str, Any]:
    """Compute a strategic merge patch that takes ``current`` to ``modified``.

    Additions and changes come from comparing ``current`` with ``modified``.
    Deletions come only from what ``original`` had and ``modified`` dropped,
    so fields that others added to ``current`` are left alone.
    """
    delta = _diff(current or {}, modified, (), ignore_deletions=True, ignore_changes=False)
    deletions = _diff(original or {}, modified, (), ignore_deletions=False, ignore_changes=True)
    return _merge_patches(deletions, delta, ())


# --------------------------------------------------------------------------
# Applying patches


def _apply(document: Any, patch: Mapping[str, Any], path: Path) -> dict[str, Any]:
    if patch.get(_DIRECTIVE) == "replace":
        return _apply({}, {k: v for k, v in patch.items() if k != _DIRECTIVE}, path)
    result = copy.deepcopy(document) if isinstance(document, dict) else {}
    for key, value in patch.items():
        if key.startswith("$"):
            continue
        sub = path + (key,)
        if value is None:
            result.pop(key, None)
        elif isinstance(value, dict):
            result[key] = _apply(result.get(key), value, sub)
        elif (merge_key := _merge_key(sub)) is not None and _is_keyed(value, merge_key):
            existing = result.get(key)
            base = existing if _is_keyed(existing, merge_key) else []
            result[key] = _apply_list(base, value, sub, merge_key)
        else:
            result[key] = copy.deepcopy(value)
    return result


def _apply_list(document: list, patch: list, path: Path, merge_key: str) -> list:
    result = copy.deepcopy(document)
    for item in patch:
        key_value = item[merge_key]
        if item.get(_DIRECTIVE) == "delete":
            result = [existing for existing in result if existing[merge_key] != key_value]
            continue
        index = next(
            (i for i, existing in enumerate(result) if existing[merge_key] == key_value),
            None,
        )
        if index is None:
            result.append(_apply({}, item, path))
        else:
            result[index] = _apply(result[index], item, path)
    return result


def apply_strategic_merge_patch(
    document: Mapping[str, Any], patch: Mapping[str, Any]
) -> dict[str, Any]:
    """Return a copy of ``document`` with the strategic merge ``patch`` applied."""
    return _apply(document, patch, ())


# --------------------------------------------------------------------------
# Node status patches


def simplest_object_metadata(
    base_meta: Mapping[str, Any], meta_with_labels: Optional[Mapping[str, Any]]
) -> dict[str, Any]:
    """Return the minimal object metadata for a node.

    The name, namespace and UID come from ``base_meta``. The labels and
    annotations come from ``meta_with_labels``, without the annotations
    that record what was last applied.
    """
    result: dict[str, Any] = {}
    for key in ("namespace", "name", "uid"):
        value = base_meta.get(key)
        if value:
            result[key] = value
    annotations: dict[str, str] = {}
    if meta_with_labels is not None:
        labels = meta_with_labels.get("labels")
        result["labels"] = labels if labels is not None else {}
        for key, value in (meta_with_labels.get("annotations") or {}).items():
            if key in _SPECIAL_ANNOTATIONS:
                continue
            annotations[key] = value
    result["annotations"] = annotations
    return result


def _compact_meta(meta: Mapping[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in meta.items() if value not in ("", {}, None)}


def _dumps(value: Any, what: str) -> str:
    try:
        return json.dumps(value, separators=(",", ":"), sort_keys=True)
    except (TypeError, ValueError) as err:
        raise ValueError(f"Cannot marshal {what}: {err}") from err


def _load_annotation(key: str, text: str, what: str) -> dict[str, Any]:
    try:
        value = json.loads(text)
    except ValueError as err:
        raise ValueError(f"Cannot unmarshal old node {what} (key: {key!r}): {text!r}") from err
    if not isinstance(value, dict):
        raise ValueError(f"Cannot unmarshal old node {what} (key: {key!r}): {text!r}")
    return value


def prepare_node_status_patch(
    provider_node: Mapping[str, Any], api_server_node: Mapping[str, Any]
) -> dict[str, Any]:
    """Build the patch that takes the server's node to the provider's status.

    The patch also writes the annotations that record what was applied, so
    that the next patch can work out what the controller dropped.
    """
    server_meta = api_server_node.get("metadata") or {}
    annotations = server_meta.get("annotations") or {}
    old_status_text = annotations.get(LAST_APPLIED_NODE_STATUS)
    old_meta_text = annotations.get(LAST_APPLIED_OBJECT_META)

    # Without both annotations the node was created by someone else, or by an
    # older release: treat it as never having been written by us.
    old_node: dict[str, Any] = {}
    if old_status_text is not None and old_meta_text is not None:
        old_node["metadata"] = _load_annotation(
            LAST_APPLIED_OBJECT_META, old_meta_text, "object metadata"
        )
        old_node["status"] = _load_annotation(LAST_APPLIED_NODE_STATUS, old_status_text, "status")

    new_meta = simplest_object_metadata(server_meta, provider_node.get("metadata") or {})
    new_status = copy.deepcopy(provider_node.get("status") or {})

    # The object meta record must be taken before the status record is added,
    # or it would capture the status annotation too.
    meta_record = _dumps(_compact_meta(new_meta), "object meta from provider")
    new_meta["annotations"][LAST_APPLIED_OBJECT_META] = meta_record
    new_meta["annotations"][LAST_APPLIED_NODE_STATUS] = _dumps(
        new_status, "node status from provider"
    )

    new_node = {"metadata": _compact_meta(new_meta), "status": new_status}
    return three_way_merge_patch(old_node, new_node, api_server_node)