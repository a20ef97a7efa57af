import numpy as np
import pytest

from boss_lab.experience import ExperienceBuffer, ExperienceSample


def sample(i, fitness=None):
    return ExperienceSample.create(np.full(4, i), np.full(2, i / 10.0), i if fitness is None else fitness)


def tag(s):
    return int(s.state[0])


def test_batch_insert_past_capacity_keeps_newest_800():
    buf = ExperienceBuffer(capacity=1000, retain=800)
    buf.extend(sample(i) for i in range(1, 1006))
    kept = [tag(s) for s in buf]
    assert len(kept) == 800
    assert kept[0] == 206
    assert kept[-1] == 1005
    assert kept == sorted(kept)


def test_one_by_one_trims_when_capacity_first_exceeded():
    buf = ExperienceBuffer(capacity=1000, retain=800)
    for i in range(1, 1006):
        buf.add(sample(i))
        assert len(buf) <= 1000
    kept = [tag(s) for s in buf]
    assert len(kept) == 804
    assert kept[0] == 202 and kept[-1] == 1005


def test_insertion_order_preserved():
    buf = ExperienceBuffer()
    for i in (5, 1, 3):
        buf.add(sample(i))
    assert [tag(s) for s in buf] == [5, 1, 3]


def test_sample_is_a_snapshot():
    state = np.zeros(4)
    s = ExperienceSample.create(state, np.zeros(2), 50.0)
    state[0] = 9.0
    assert s.state[0] == 0.0
    with pytest.raises(ValueError):
        s.state[0] = 1.0


def test_best_tracking():
    buf = ExperienceBuffer()
    buf.record(np.zeros(4), np.ones(2), 30.0)
    buf.record(np.zeros(4), np.full(2, 0.5), 70.0)
    buf.record(np.zeros(4), np.zeros(2), 40.0)
    assert buf.best_fitness == 70.0
    assert np.allclose(buf.best_action, 0.5)
    buf.clear()
    assert len(buf) == 0 and buf.best_action is None


def test_curate_filters_sorts_and_weights():
    buf = ExperienceBuffer()
    for i, fit in enumerate([10.0, 20.0, 24.0, 55.0, 99.0]):
        buf.add(sample(i, fit))
    states, actions = buf.curate(min_fitness=20, top_n=200)
    # 20.0 is not above the threshold; 99 -> 4 copies, 55 -> 3, 24 -> 1
    assert states.shape == (8, 4)
    assert actions.shape == (8, 2)
    assert [int(x) for x in states[:, 0]] == [4, 4, 4, 4, 3, 3, 3, 2]


def test_curate_top_n():
    buf = ExperienceBuffer()
    for i in range(30):
        buf.add(sample(i, 21.0 + i))
    states, _ = buf.curate(min_fitness=20, top_n=5)
    assert sorted(set(int(x) for x in states[:, 0])) == [25, 26, 27, 28, 29]


def test_curate_empty():
    buf = ExperienceBuffer()
    buf.add(sample(1, 5.0))
    states, actions = buf.curate()
    assert len(states) == 0 and len(actions) == 0


def test_retain_must_fit_capacity():
    with pytest.raises(ValueError):
        ExperienceBuffer(capacity=10, retain=20)
