"""策略表加载与一致性校验。"""

import copy

import pytest
import yaml

from liaison.errors import PolicyError
from liaison.models.episode import Act
from liaison.models.nudge import NudgeType
from liaison.policy import DEFAULT_POLICY_PATH, load_policy, parse_policy


@pytest.fixture
def raw_policy():
    with open(DEFAULT_POLICY_PATH, encoding="utf-8") as f:
        return yaml.safe_load(f)


def test_default_policy_loads():
    policy = load_policy()
    assert [int(g.act) for g in policy.act_gates] == [1, 2, 3, 4, 5]
    assert len(policy.checkpoints) == 4
    assert {d.type for d in policy.nudge_catalog} == set(NudgeType)
    assert NudgeType.RAISE_STAKES in policy.gate_for(Act.SETUP).blocked
    assert policy.checkpoint_from(Act.RESOLUTION) is None


def test_every_allowed_nudge_is_permitted_by_catalog():
    policy = load_policy()
    for gate in policy.act_gates:
        for nudge_type in gate.allowed:
            assert policy.descriptor(nudge_type).permits_act(gate.act)


def test_custom_policy_file(tmp_path, raw_policy):
    raw_policy["act_gates"][0]["coherence_weight"] = 0.5
    path = tmp_path / "policy.yaml"
    path.write_text(yaml.safe_dump(raw_policy, allow_unicode=True), encoding="utf-8")
    assert load_policy(path).gate_for(Act.SETUP).coherence_weight == 0.5


def test_missing_file():
    with pytest.raises(PolicyError):
        load_policy("/nonexistent/policy.yaml")


def test_allowed_and_blocked_overlap(raw_policy):
    raw_policy["act_gates"][0]["allowed"].append("raise_stakes")
    with pytest.raises(PolicyError, match="同时允许又禁止"):
        parse_policy(raw_policy)


def test_missing_act_gate(raw_policy):
    del raw_policy["act_gates"][4]
    with pytest.raises(PolicyError, match="act gate"):
        parse_policy(raw_policy)


def test_broken_checkpoint_chain(raw_policy):
    raw_policy["checkpoints"][1]["to_act"] = 4
    with pytest.raises(PolicyError, match="单链"):
        parse_policy(raw_policy)


def test_gate_allows_act_restricted_nudge(raw_policy):
    raw_policy["act_gates"][0]["allowed"].append("aside")
    with pytest.raises(PolicyError, match="aside"):
        parse_policy(raw_policy)


def test_unknown_dimension_in_checkpoint(raw_policy):
    raw_policy["checkpoints"][0]["pair_at_least"] = {"passion": 0.4}
    with pytest.raises(PolicyError, match="passion"):
        parse_policy(raw_policy)


def test_threshold_out_of_range(raw_policy):
    raw_policy["checkpoints"][2]["pair_at_least"] = {"trust": 1.5}
    with pytest.raises(PolicyError):
        parse_policy(raw_policy)


def test_unknown_nudge_type_is_structural_error(raw_policy):
    bad = copy.deepcopy(raw_policy)
    bad["act_gates"][0]["allowed"].append("teleport")
    with pytest.raises(PolicyError, match="结构不合法"):
        parse_policy(bad)


def test_descriptor_lookup_for_missing_type_raises():
    policy = load_policy()
    with pytest.raises(KeyError):
        policy.model_copy(update={"nudge_catalog": []}).descriptor(NudgeType.COMFORT)
