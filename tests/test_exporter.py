import json

import numpy as np
import pytest
import torch

from boss_lab.exporter import (
    build_document, read_document, state_dict_from_document, tensors_from_document, write_document,
)


@pytest.fixture
def net():
    torch.manual_seed(0)
    return torch.nn.Sequential(torch.nn.Linear(3, 4), torch.nn.ReLU(), torch.nn.Linear(4, 2))


def test_tensor_names_follow_state_dict_order(net):
    doc = build_document(net)
    assert list(doc["tensors"]) == ["layer_0_0.weight", "layer_1_0.bias", "layer_2_2.weight", "layer_3_2.bias"]
    assert doc["tensors"]["layer_0_0.weight"]["shape"] == [4, 3]


def test_metadata_merges_over_base(net):
    doc = build_document(net, {"robot_type": "spider", "framework": "custom"})
    assert doc["metadata"]["robot_type"] == "spider"
    assert doc["metadata"]["framework"] == "custom"
    assert doc["metadata"]["model_type"] == "sequential"


def test_state_dict_loads_back(net):
    doc = json.loads(json.dumps(build_document(net)))
    clone = torch.nn.Sequential(torch.nn.Linear(3, 4), torch.nn.ReLU(), torch.nn.Linear(4, 2))
    clone.load_state_dict(state_dict_from_document(doc))
    for a, b in zip(net.parameters(), clone.parameters()):
        assert torch.equal(a, b)


def test_bad_tensor_entries_rejected(net):
    doc = build_document(net)
    doc["tensors"]["layer_1_0.bias"]["dtype"] = "F16"
    with pytest.raises(ValueError):
        tensors_from_document(doc)

    doc = build_document(net)
    doc["tensors"]["layer_1_0.bias"]["data"].append(0.0)
    with pytest.raises(ValueError):
        tensors_from_document(doc)


def test_write_and_read(net, tmp_path):
    doc = build_document(net)
    path = write_document(doc, str(tmp_path / "out"), "m.safetensors.json")
    back = read_document(path)
    arrays = tensors_from_document(back)
    assert np.array_equal(arrays["layer_0_0.weight"], net[0].weight.detach().numpy())


def test_structurally_wrong_documents_raise_value_error(net):
    for doc in ({"tensors": []}, {"tensors": {"layer_0_x": "junk"}}):
        with pytest.raises(ValueError):
            tensors_from_document(doc)

    doc = build_document(net)
    doc["tensors"]["layer_0_0.weight"]["shape"] = 12
    with pytest.raises(ValueError):
        tensors_from_document(doc)
