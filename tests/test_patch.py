import json

import pytest

from kubenode.patch import (
    LAST_APPLIED_NODE_STATUS,
    LAST_APPLIED_OBJECT_META,
    apply_strategic_merge_patch,
    prepare_node_status_patch,
    simplest_object_metadata,
    three_way_merge_patch,
)


def _condition(kind, status="True"):
    return {"type": kind, "status": status, "reason": "NA"}


def _types(node):
    return [c["type"] for c in node["status"].get("conditions", [])]


def _server_node(name="n1", **status):
    return {
        "metadata": {"name": name, "uid": "uid-1", "resourceVersion": "7"},
        "spec": {"podCIDR": "10.0.0.0/24"},
        "status": dict(status),
    }


def _provider_node(conditions, annotations=None, labels=None):
    meta = {}
    if annotations is not None:
        meta["annotations"] = annotations
    if labels is not None:
        meta["labels"] = labels
    return {"metadata": meta, "status": {"conditions": conditions}}


def test_simplest_object_metadata_copies_identity_and_labels():
    base = {"name": "n1", "namespace": "ns", "uid": "u", "resourceVersion": "3"}
    other = {
        "labels": {"role": "agent"},
        "annotations": {
            "keep": "yes",
            LAST_APPLIED_NODE_STATUS: "{}",
            LAST_APPLIED_OBJECT_META: "{}",
        },
    }
    meta = simplest_object_metadata(base, other)
    assert meta == {
        "name": "n1",
        "namespace": "ns",
        "uid": "u",
        "labels": {"role": "agent"},
        "annotations": {"keep": "yes"},
    }


def test_simplest_object_metadata_without_second_object():
    meta = simplest_object_metadata({"name": "n1"}, None)
    assert meta == {"name": "n1", "annotations": {}}


def test_simplest_object_metadata_empty_labels_become_empty_map():
    meta = simplest_object_metadata({"name": "n1"}, {})
    assert meta["labels"] == {}


def test_apply_null_deletes_key():
    doc = {"a": 1, "b": {"c": 2, "d": 3}}
    assert apply_strategic_merge_patch(doc, {"b": {"c": None}}) == {"a": 1, "b": {"d": 3}}
    assert doc == {"a": 1, "b": {"c": 2, "d": 3}}


def test_apply_merges_conditions_by_type():
    doc = {"status": {"conditions": [_condition("A"), _condition("B")]}}
    patch = {
        "status": {
            "conditions": [
                {"type": "A", "status": "False"},
                {"$patch": "delete", "type": "B"},
                _condition("C"),
            ]
        }
    }
    result = apply_strategic_merge_patch(doc, patch)
    assert _types(result) == ["A", "C"]
    assert result["status"]["conditions"][0]["status"] == "False"
    assert result["status"]["conditions"][0]["reason"] == "NA"


def test_apply_replaces_lists_without_merge_key():
    doc = {"status": {"images": [{"names": ["x"]}, {"names": ["y"]}]}}
    result = apply_strategic_merge_patch(doc, {"status": {"images": [{"names": ["z"]}]}})
    assert result["status"]["images"] == [{"names": ["z"]}]


def test_three_way_keeps_fields_added_by_others():
    original = {"a": 1, "b": 2}
    modified = {"a": 1}
    current = {"a": 1, "b": 2, "c": 3}
    patch = three_way_merge_patch(original, modified, current)
    assert patch == {"b": None}
    assert apply_strategic_merge_patch(current, patch) == {"a": 1, "c": 3}


def test_three_way_round_trip_reaches_modified_fields():
    original = {"status": {"conditions": [_condition("A")]}}
    modified = {"status": {"conditions": [_condition("A", "False"), _condition("B")]}}
    current = {"status": {"conditions": [_condition("A"), _condition("X")]}, "spec": {"k": 1}}
    result = apply_strategic_merge_patch(current, three_way_merge_patch(original, modified, current))
    assert _types(result) == ["A", "X", "B"]
    assert result["status"]["conditions"][0]["status"] == "False"
    assert result["spec"] == {"k": 1}


def test_three_way_no_changes_gives_empty_patch():
    node = {"status": {"conditions": [_condition("A")]}}
    assert three_way_merge_patch(node, node, node) == {}


def test_prepare_preserves_external_conditions():
    server = _server_node(conditions=[])
    server = apply_strategic_merge_patch(
        server, prepare_node_status_patch(_provider_node([_condition("A"), _condition("B")]), server)
    )
    assert _types(server) == ["A", "B"]

    server["status"]["conditions"].append(_condition("C"))

    server = apply_strategic_merge_patch(
        server, prepare_node_status_patch(_provider_node([_condition("A")]), server)
    )
    assert _types(server) == ["A", "C"]
    assert server["spec"] == {"podCIDR": "10.0.0.0/24"}
    assert server["metadata"]["uid"] == "uid-1"


def test_prepare_annotations_before_and_after():
    server = _server_node()
    server["metadata"]["annotations"] = {"beforeAnnotation": "value"}

    provider = _provider_node([], annotations={"testAnnotation": "value"})
    server = apply_strategic_merge_patch(server, prepare_node_status_patch(provider, server))
    assert server["metadata"]["annotations"]["testAnnotation"] == "value"
    assert server["metadata"]["annotations"]["beforeAnnotation"] == "value"

    server["metadata"]["annotations"]["manuallyAddedAnnotation"] = "value"
    server = apply_strategic_merge_patch(
        server, prepare_node_status_patch(_provider_node([_condition("A")]), server)
    )
    annotations = server["metadata"]["annotations"]
    assert "testAnnotation" not in annotations
    assert annotations["beforeAnnotation"] == "value"
    assert annotations["manuallyAddedAnnotation"] == "value"


def test_prepare_records_last_applied_state():
    server = _server_node()
    provider = _provider_node([_condition("A")], annotations={"k": "v"}, labels={"role": "agent"})
    server = apply_strategic_merge_patch(server, prepare_node_status_patch(provider, server))
    annotations = server["metadata"]["annotations"]

    assert json.loads(annotations[LAST_APPLIED_NODE_STATUS]) == provider["status"]
    recorded_meta = json.loads(annotations[LAST_APPLIED_OBJECT_META])
    assert recorded_meta["annotations"] == {"k": "v"}
    assert recorded_meta["labels"] == {"role": "agent"}
    assert recorded_meta["name"] == "n1"
    assert LAST_APPLIED_NODE_STATUS not in recorded_meta["annotations"]


def test_prepare_is_stable_when_nothing_changes():
    server = _server_node()
    provider = _provider_node([_condition("A")], annotations={"k": "v"})
    server = apply_strategic_merge_patch(server, prepare_node_status_patch(provider, server))
    again = apply_strategic_merge_patch(server, prepare_node_status_patch(provider, server))
    assert again == server


def test_prepare_rejects_bad_object_meta_annotation():
    server = _server_node()
    server["metadata"]["annotations"] = {
        LAST_APPLIED_OBJECT_META: "{not json",
        LAST_APPLIED_NODE_STATUS: "{}",
    }
    with pytest.raises(ValueError, match="object metadata"):
        prepare_node_status_patch(_provider_node([]), server)


def test_prepare_rejects_bad_status_annotation():
    server = _server_node()
    server["metadata"]["annotations"] = {
        LAST_APPLIED_OBJECT_META: "{}",
        LAST_APPLIED_NODE_STATUS: "[1, 2",
    }
    with pytest.raises(ValueError, match="status"):
        prepare_node_status_patch(_provider_node([]), server)


def test_prepare_ignores_single_annotation():
    server = _server_node(conditions=[_condition("X")])
    server["metadata"]["annotations"] = {LAST_APPLIED_NODE_STATUS: "{not json"}
    result = apply_strategic_merge_patch(
        server, prepare_node_status_patch(_provider_node([_condition("A")]), server)
    )
    assert _types(result) == ["X", "A"]