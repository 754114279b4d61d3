"""
Tests for loopy and tree belief propagation.
"""

import numpy as np
import pytest

from grmm.exceptions import NotATreeError, UnsupportedQueryError
from grmm.inference import (
    BruteForceInferencer,
    JunctionTreeInferencer,
    MessageCounter,
    ResidualBP,
    SumProductMessageStrategy,
    TreeBP,
)
from grmm.inference.utils import max_l1_marginal_distance
from grmm.models import (
    UniformFactorGenerator,
    create_grid,
    random_attractive_grid,
    random_frustrated_tree,
)
from grmm.types import Assignment, FactorGraph, Variable, VarSet


@pytest.fixture
def chain():
    a, b, c = Variable(2, "A"), Variable(2, "B"), Variable(2, "C")
    graph = FactorGraph([a, b, c])
    graph.add_table_factor(a, [0.6, 0.4])
    graph.add_table_factor([a, b], [[0.9, 0.1], [0.2, 0.8]])
    graph.add_table_factor([b, c], [[0.3, 0.7], [0.5, 0.5]])
    return graph, (a, b, c)


@pytest.fixture
def triangle():
    a, b, c = Variable(2), Variable(2), Variable(2)
    graph = FactorGraph([a, b, c])
    graph.add_table_factor([a, b], [[2.0, 1.0], [1.0, 2.0]])
    graph.add_table_factor([b, c], [[2.0, 1.0], [1.0, 2.0]])
    graph.add_table_factor([a, c], [[1.0, 3.0], [3.0, 1.0]])
    graph.add_table_factor(a, [0.7, 0.3])
    return graph, (a, b, c)


def brute_force(graph):
    inf = BruteForceInferencer()
    inf.compute_marginals(graph)
    return inf


class TestTreeBP:
    def test_exact_on_chain(self, chain):
        graph, variables = chain
        bp = TreeBP()
        bp.compute_marginals(graph)
        exact = brute_force(graph)
        for var in variables:
            assert np.allclose(
                bp.lookup_marginal(var).probabilities(), exact.lookup_marginal(var).probabilities(), atol=1e-9
            )
        assert bp.is_converged()
        assert bp.iterations_used() == 1

    def test_marginals_sum_to_one(self, chain):
        graph, variables = chain
        bp = TreeBP()
        bp.compute_marginals(graph)
        for var in variables:
            assert bp.lookup_marginal(var).sum() == pytest.approx(1.0, abs=1e-9)

    def test_pairwise_marginal(self, chain):
        graph, (a, b, _) = chain
        bp = TreeBP()
        bp.compute_marginals(graph)
        exact = brute_force(graph)
        assert np.allclose(
            bp.lookup_marginal([a, b]).probabilities(), exact.lookup_marginal([a, b]).probabilities(), atol=1e-9
        )

    def test_joint_is_exact_on_trees(self, chain):
        graph, _ = chain
        bp = TreeBP()
        bp.compute_marginals(graph)
        exact = brute_force(graph)
        for assn in graph.assignments():
            assert bp.lookup_joint(assn) == pytest.approx(exact.lookup_joint(assn), rel=1e-9)

    def test_message_count(self, chain):
        graph, _ = chain
        bp = TreeBP()
        bp.compute_marginals(graph)
        # Two messages per edge of the 6-node incidence tree.
        assert bp.messages_used_last_time() == 10
        bp.compute_marginals(graph)
        assert bp.messages_used_last_time() == 10
        assert bp.messages_sent == 20

    def test_forest(self):
        variables = [Variable(2) for _ in range(4)]
        graph = FactorGraph(variables)
        graph.add_table_factor(variables[:2], [1.0, 2.0, 3.0, 4.0])
        graph.add_table_factor(variables[2:], [4.0, 1.0, 1.0, 4.0])
        graph.add_variable(Variable(3))
        bp = TreeBP()
        bp.compute_marginals(graph)
        exact = brute_force(graph)
        for var in graph.variables:
            assert np.allclose(
                bp.lookup_marginal(var).probabilities(), exact.lookup_marginal(var).probabilities(), atol=1e-9
            )

    def test_rejects_cycles(self, triangle):
        graph, _ = triangle
        bp = TreeBP()
        with pytest.raises(NotATreeError):
            bp.compute_marginals(graph)
        with pytest.raises(ValueError):
            bp.compute_marginals(graph)

    def test_max_product_map_on_random_tree(self):
        rng = np.random.default_rng(7)
        for _ in range(5):
            graph = random_frustrated_tree(9, 3, 1.0, rng)
            bp = TreeBP.create_for_max_product()
            bp.compute_marginals(graph)
            best = bp.best_assignment()
            exact_best = brute_force(graph).best_assignment()
            assert graph.log_value(best) == pytest.approx(graph.log_value(exact_best))


class TestResidualBP:
    def test_exact_on_trees(self, chain):
        graph, variables = chain
        bp = ResidualBP(rng=0)
        bp.compute_marginals(graph)
        assert bp.is_converged()
        exact = brute_force(graph)
        assert max_l1_marginal_distance(graph, bp, exact) < 1e-4

    def test_uniform_grid_matches_junction_tree(self):
        grid = create_grid(UniformFactorGenerator(), 3)
        bp = ResidualBP(rng=1)
        bp.compute_marginals(grid)
        jt = JunctionTreeInferencer()
        jt.compute_marginals(grid)
        assert bp.is_converged()
        for var in grid.variables:
            assert np.allclose(
                bp.lookup_marginal(var).probabilities(), jt.lookup_marginal(var).probabilities(), atol=1e-4
            )
            assert np.allclose(bp.lookup_marginal(var).probabilities(), [0.5, 0.5])

    def test_weak_coupling_grid_is_close(self):
        graph = random_attractive_grid(4, 0.1, np.random.default_rng(3))
        bp = ResidualBP(rng=3)
        bp.compute_marginals(graph)
        jt = JunctionTreeInferencer()
        jt.compute_marginals(graph)
        assert bp.is_converged()
        assert bp.iterations_used() < ResidualBP.DEFAULT_MAX_ITER
        assert max_l1_marginal_distance(graph, bp, jt) < 0.05

    def test_damped_converges_to_same_fixed_point(self, triangle):
        graph, variables = triangle
        plain = ResidualBP(rng=0)
        plain.compute_marginals(graph)
        damped = ResidualBP(SumProductMessageStrategy(damping=0.5), rng=0)
        damped.compute_marginals(graph)
        assert plain.is_converged() and damped.is_converged()
        assert max_l1_marginal_distance(graph, plain, damped) < 1e-3

    def test_iteration_cap(self, triangle):
        graph, _ = triangle
        bp = ResidualBP(rng=0, max_iter=1)
        bp.compute_marginals(graph)
        assert not bp.is_converged()
        assert bp.iterations_used() == 1

    def test_should_stop_hook(self, triangle):
        graph, (a, _, _) = triangle
        seen = []

        def stop(iteration):
            seen.append(iteration)
            return True

        bp = ResidualBP(rng=0, should_stop=stop)
        bp.compute_marginals(graph)
        assert seen == [0]
        assert bp.iterations_used() == 0
        assert not bp.is_converged()
        assert bp.messages_used_last_time() == 0
        assert np.allclose(bp.lookup_marginal(a).probabilities(), [0.5, 0.5])

    def test_clique_marginal_needs_a_factor(self, chain):
        graph, (a, _, c) = chain
        bp = ResidualBP(rng=0)
        bp.compute_marginals(graph)
        with pytest.raises(UnsupportedQueryError):
            bp.lookup_marginal(VarSet.of(a, c))

    def test_unknown_variable(self, chain):
        graph, _ = chain
        bp = ResidualBP(rng=0)
        bp.compute_marginals(graph)
        with pytest.raises(ValueError):
            bp.lookup_marginal(Variable(2))

    def test_lookup_before_compute(self, chain):
        _, (a, _, _) = chain
        with pytest.raises(RuntimeError):
            ResidualBP().lookup_marginal(a)

    def test_caching_stores_messages_on_graph(self, chain):
        graph, (a, _, _) = chain
        bp = ResidualBP(rng=0, use_caching=True)
        bp.compute_marginals(graph)
        first = bp.lookup_marginal(a).probabilities()
        assert graph.get_inference_cache(ResidualBP.cache_key) is not None
        bp.compute_marginals(graph)
        assert bp.iterations_used() == 1
        assert np.allclose(bp.lookup_marginal(a).probabilities(), first, atol=1e-5)
        graph.add_table_factor(a, [1.0, 1.0])
        assert graph.get_inference_cache(ResidualBP.cache_key) is None

    def test_max_product_map_on_tree(self):
        graph = random_frustrated_tree(8, 2, 1.0, np.random.default_rng(11))
        bp = ResidualBP.create_for_max_product(rng=0)
        bp.compute_marginals(graph)
        best = bp.best_assignment()
        exact_best = brute_force(graph).best_assignment()
        assert graph.log_value(best) == pytest.approx(graph.log_value(exact_best))


class TestTelemetryAndDuplicate:
    def test_shared_counter(self, chain):
        graph, _ = chain
        counter = MessageCounter()
        bp1 = TreeBP(counter=counter)
        bp2 = TreeBP(counter=counter)
        bp1.compute_marginals(graph)
        bp2.compute_marginals(graph)
        assert counter.total == bp1.messages_sent + bp2.messages_sent == 20
        assert bp1.total_messages_sent == 20

    def test_private_counters(self, chain):
        graph, _ = chain
        bp1 = TreeBP()
        bp2 = TreeBP()
        bp1.compute_marginals(graph)
        assert bp2.total_messages_sent == 0

    def test_duplicate(self, chain):
        graph, (a, _, _) = chain
        bp = ResidualBP(SumProductMessageStrategy(damping=0.9), rng=0, threshold=1e-7)
        bp.compute_marginals(graph)
        dup = bp.duplicate()
        assert dup.threshold == 1e-7
        assert dup.messager is not bp.messager
        assert dup.messager.damping == 0.9
        assert dup.counter is bp.counter
        with pytest.raises(RuntimeError):
            dup.lookup_marginal(a)
        dup.compute_marginals(graph)
        assert np.allclose(dup.lookup_marginal(a).probabilities(), bp.lookup_marginal(a).probabilities(), atol=1e-5)

    def test_dump_and_report(self, chain, capsys, caplog):
        graph, _ = chain
        bp = TreeBP()
        bp.dump()
        assert "no messages" in capsys.readouterr().out
        bp.compute_marginals(graph)
        bp.dump()
        bp.dump_beliefs()
        out = capsys.readouterr().out
        assert "MESSAGE" in out
        with caplog.at_level("INFO", logger="grmm"):
            bp.report_time()
        assert "messages sent 10" in caplog.text

    def test_log_joint_of_impossible_assignment(self, chain):
        graph, (a, b, c) = chain
        graph.add_table_factor(c, [1.0, 0.0])
        bp = TreeBP()
        bp.compute_marginals(graph)
        assert bp.lookup_log_joint(Assignment({a: 0, b: 0, c: 1})) == -np.inf
