"""
Tests for the exact and Gibbs samplers.
"""

from collections import Counter

import numpy as np
import pytest
from scipy.stats import chisquare

from grmm.exceptions import InfeasibleModelError
from grmm.inference import BruteForceInferencer, ExactSampler, GibbsSampler
from grmm.types import Assignment, FactorGraph, Variable


@pytest.fixture
def small_loop():
    a, b, c = Variable(2), Variable(3), Variable(2)
    graph = FactorGraph([a, b, c])
    graph.add_table_factor([a, b], [1.0, 2.0, 1.5, 2.0, 1.0, 1.0])
    graph.add_table_factor([b, c], [1.0, 1.0, 2.0, 1.0, 1.0, 3.0])
    graph.add_table_factor([a, c], [2.0, 1.0, 1.0, 2.0])
    graph.add_table_factor(a, [0.4, 0.6])
    return graph, (a, b, c)


def empirical_marginal(samples, var):
    counts = np.zeros(var.num_outcomes)
    for s in samples:
        counts[s[var]] += 1
    return counts / len(samples)


class TestExactSampler:
    def test_samples_are_full_assignments(self, small_loop):
        graph, variables = small_loop
        samples = ExactSampler(rng=0).sample(graph, 20)
        assert len(samples) == 20
        for s in samples:
            assert set(s) == set(variables)
            assert graph.value(s) > 0

    def test_joint_frequencies(self, small_loop):
        graph, variables = small_loop
        n = 10000
        samples = ExactSampler(rng=0).sample(graph, n)
        joint = BruteForceInferencer.joint(graph)

        counts = Counter(tuple(s[v] for v in variables) for s in samples)
        observed = []
        expected = []
        for assn in graph.assignments():
            observed.append(counts.get(tuple(assn[v] for v in variables), 0))
            expected.append(joint.value(assn) * n)
        _, p_value = chisquare(observed, expected)
        assert p_value > 0.01

    def test_marginals(self, small_loop):
        graph, variables = small_loop
        samples = ExactSampler(rng=3).sample(graph, 10000)
        exact = BruteForceInferencer()
        exact.compute_marginals(graph)
        for var in variables:
            assert np.allclose(
                empirical_marginal(samples, var), exact.lookup_marginal(var).probabilities(), atol=0.03
            )

    def test_respects_hard_evidence(self, small_loop):
        graph, (_, b, _) = small_loop
        graph.add_table_factor(b, [0.0, 1.0, 0.0])
        samples = ExactSampler(rng=1).sample(graph, 200)
        assert all(s[b] == 1 for s in samples)

    def test_seeded_runs_repeat(self, small_loop):
        graph, variables = small_loop
        s1 = ExactSampler(rng=5).sample(graph, 50)
        s2 = ExactSampler(rng=5).sample(graph, 50)
        assert [dict(s) for s in s1] == [dict(s) for s in s2]


class TestGibbsSampler:
    def test_marginals(self, small_loop):
        graph, variables = small_loop
        samples = GibbsSampler(burnin=100, rng=7).sample(graph, 5000)
        assert len(samples) == 5000
        exact = BruteForceInferencer()
        exact.compute_marginals(graph)
        for var in variables:
            assert np.allclose(
                empirical_marginal(samples, var), exact.lookup_marginal(var).probabilities(), atol=0.05
            )

    def test_samples_are_independent_objects(self, small_loop):
        graph, (a, _, _) = small_loop
        samples = GibbsSampler(rng=0).sample(graph, 3)
        assert len({id(s) for s in samples}) == 3
        before = samples[1][a]
        samples[0][a] = 1 - samples[0][a]
        assert samples[1][a] == before

    def test_initial_assignment_avoids_zeros(self):
        a, b, c = Variable(2), Variable(2), Variable(3)
        graph = FactorGraph([a, b, c])
        graph.add_table_factor([a, b], [0.0, 1.0, 1.0, 0.0])
        graph.add_table_factor(b, [1.0, 0.0])
        assn = GibbsSampler.initial_assignment(graph)
        assert assn is not None
        assert assn[a] == 1 and assn[b] == 0
        # Untouched variables start at 0.
        assert assn[c] == 0
        assert graph.value(assn) > 0

    def test_initial_assignment_backtracks(self):
        a, b = Variable(3), Variable(2)
        graph = FactorGraph([a, b])
        graph.add_table_factor([a, b], [1.0, 1.0, 1.0, 1.0, 0.0, 1.0])
        graph.add_table_factor(a, [0.0, 0.0, 1.0])
        graph.add_table_factor(b, [1.0, 0.0])
        assert GibbsSampler.initial_assignment(graph) is None
        graph.add_table_factor(b, [1.0, 1.0])
        assert GibbsSampler.initial_assignment(graph) is None

    def test_finds_assignment_after_backtracking(self):
        a, b = Variable(3), Variable(2)
        graph = FactorGraph([a, b])
        graph.add_table_factor([a, b], [1.0, 1.0, 1.0, 1.0, 0.0, 1.0])
        graph.add_table_factor(a, [0.0, 0.0, 1.0])
        assn = GibbsSampler.initial_assignment(graph)
        assert dict(assn) == {a: 2, b: 1}

    def test_stays_in_feasible_region(self):
        a, b = Variable(2), Variable(2)
        graph = FactorGraph([a, b])
        graph.add_table_factor([a, b], [1.0, 0.0, 0.0, 1.0])
        for s in GibbsSampler(rng=0).sample(graph, 50):
            assert s[a] == s[b]

    def test_empty_graph(self):
        assert GibbsSampler.initial_assignment(FactorGraph()) == Assignment()

    @pytest.mark.parametrize(
        "tables",
        [
            [[0.0, 0.0]],
            [[1.0, 0.0], [0.0, 1.0]],
        ],
    )
    def test_infeasible_model(self, tables):
        a = Variable(2)
        graph = FactorGraph([a])
        for t in tables:
            graph.add_table_factor(a, t)
        assert GibbsSampler.initial_assignment(graph) is None
        with pytest.raises(InfeasibleModelError):
            GibbsSampler(rng=0).sample(graph, 10)
