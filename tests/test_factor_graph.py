"""
Tests for factor graphs, trees and evidence.
"""

import networkx as nx
import numpy as np
import pytest

from grmm.types import (
    Assignment,
    FactorGraph,
    Tree,
    Variable,
    VarSet,
    as_log_graph,
    observe_variable,
    unary_evidence,
    with_evidence,
)


@pytest.fixture
def chain():
    a, b, c = Variable(2, "A"), Variable(2, "B"), Variable(2, "C")
    graph = FactorGraph([a, b, c])
    fa = graph.add_table_factor(a, [0.6, 0.4])
    fab = graph.add_table_factor([a, b], [[0.9, 0.1], [0.2, 0.8]])
    fbc = graph.add_table_factor([b, c], [[0.3, 0.7], [0.5, 0.5]])
    return graph, (a, b, c), (fa, fab, fbc)


class TestFactorGraph:
    def test_counts_and_indices(self, chain):
        graph, (a, b, c), (fa, fab, fbc) = chain
        assert graph.num_variables() == 3
        assert graph.num_factors() == 3
        assert graph.get_index(c) == 2
        assert graph.get_index(fab) == 1
        assert graph.get_index(Variable(2)) == -1
        assert graph.get_variable(0) is a
        assert graph.get_factor(2) is fbc

    def test_add_factor_adds_variables(self):
        a, b = Variable(2), Variable(2)
        graph = FactorGraph()
        graph.add_table_factor([a, b], np.ones(4))
        assert graph.variables == [a, b]

    def test_duplicate_factor_rejected(self, chain):
        graph, _, (fa, _, _) = chain
        with pytest.raises(ValueError):
            graph.add_factor(fa)

    def test_degree_and_adjacency(self, chain):
        graph, (a, b, c), (fa, fab, fbc) = chain
        assert graph.get_degree(a) == 2
        assert graph.get_degree(c) == 1
        assert graph.all_factors_containing(b) == [fab, fbc]
        assert graph.is_adjacent(a, b)
        assert not graph.is_adjacent(a, c)

    def test_factors_by_scope(self, chain):
        graph, (a, b, c), (_, fab, _) = chain
        extra = graph.add_table_factor([b, a], np.ones(4))
        assert graph.all_factors_of(VarSet.of(a, b)) == [fab, extra]
        assert graph.factor_of([a, b]) is fab
        assert graph.factor_of([a, c]) is None
        assert graph.var_sets() == [VarSet.of(a), VarSet.of(a, b), VarSet.of(b, c)]

    def test_value(self, chain):
        graph, (a, b, c), _ = chain
        assn = Assignment({a: 0, b: 1, c: 0})
        assert graph.value(assn) == pytest.approx(0.6 * 0.1 * 0.5)
        assert graph.log_value(assn) == pytest.approx(np.log(0.6 * 0.1 * 0.5))

    def test_log_value_of_impossible_assignment(self, chain):
        graph, (a, b, c), _ = chain
        graph.add_factor(observe_variable(c, 1))
        assert graph.log_value(Assignment({a: 0, b: 0, c: 0})) == -np.inf

    def test_factor_product_and_assignments(self, chain):
        graph, _, _ = chain
        joint = graph.factor_product()
        total = sum(graph.value(assn) for assn in graph.assignments())
        assert len(list(graph.assignments())) == 8
        assert joint.sum() == pytest.approx(total)

    def test_markov_network(self, chain):
        graph, (a, b, c), _ = chain
        mn = graph.to_markov_network()
        assert set(mn.nodes) == {a, b, c}
        assert mn.has_edge(a, b) and mn.has_edge(b, c)
        assert not mn.has_edge(a, c)

    def test_bipartite_graph(self, chain):
        graph, _, _ = chain
        bg = graph.to_bipartite_graph()
        assert bg.number_of_nodes() == 6
        assert bg.number_of_edges() == 5
        assert nx.is_forest(bg)

    def test_connected_components(self):
        a, b, c, d, e = (Variable(2) for _ in range(5))
        graph = FactorGraph([a, b, c, d, e])
        graph.add_table_factor([a, b], np.ones(4))
        graph.add_table_factor([c, d], np.ones(4))
        groups = sorted(graph.connected_components(), key=len)
        assert groups == [[e], [a, b], [c, d]]

    def test_duplicate_shares_factors(self, chain):
        graph, _, (fa, _, _) = chain
        dup = graph.duplicate()
        assert dup.factors == graph.factors
        dup.add_table_factor(Variable(2), [1.0, 1.0])
        assert graph.num_factors() == 3
        assert dup.contains_factor(fa)

    def test_log_space(self, chain):
        graph, _, _ = chain
        assert not graph.is_in_log_space()
        log_graph = as_log_graph(graph)
        assert log_graph.is_in_log_space()
        assn = Assignment.from_index(VarSet(graph.variables), 5)
        assert log_graph.log_value(assn) == pytest.approx(graph.log_value(assn))


class TestInferenceCache:
    def test_topology_change_clears_cache(self, chain):
        graph, (a, _, _), _ = chain
        graph.set_inference_cache("junction_tree", "structure")
        assert graph.get_inference_cache("junction_tree") == "structure"
        graph.add_variable(a)
        assert graph.get_inference_cache("junction_tree") == "structure"
        graph.add_variable(Variable(2))
        assert graph.get_inference_cache("junction_tree") is None

    def test_add_factor_clears_cache(self, chain):
        graph, (a, _, _), _ = chain
        graph.set_inference_cache("bp_messages", 1)
        graph.add_table_factor(a, [1.0, 2.0])
        assert graph.get_inference_cache("bp_messages") is None

    def test_keys_are_independent(self, chain):
        graph, _, _ = chain
        graph.set_inference_cache("x", 1)
        graph.set_inference_cache("y", 2)
        assert graph.get_inference_cache("x") == 1
        assert graph.get_inference_cache("z") is None


class TestEvidence:
    def test_unary_evidence(self):
        v = Variable(3)
        f = unary_evidence(v, [0, 2])
        assert f.probabilities().tolist() == [1.0, 0.0, 1.0]
        with pytest.raises(ValueError):
            unary_evidence(v, [3])

    def test_with_evidence(self, chain):
        graph, (a, b, c), _ = chain
        conditioned = with_evidence(graph, Assignment({c: 1}))
        assert conditioned.num_factors() == 4
        assert graph.num_factors() == 3
        assert conditioned.value(Assignment({a: 0, b: 0, c: 0})) == 0.0

    def test_unknown_evidence_variable(self, chain):
        graph, _, _ = chain
        with pytest.raises(ValueError):
            with_evidence(graph, Assignment({Variable(2): 0}))


class TestTree:
    @pytest.fixture
    def tree(self):
        t = Tree()
        t.add("r")
        t.add_node("r", "a")
        t.add_node("r", "b")
        t.add_node("a", "c")
        t.add_node("a", "d")
        return t

    def test_structure(self, tree):
        assert tree.get_root() == "r"
        assert tree.get_parent("c") == "a"
        assert tree.get_children("a") == ["c", "d"]
        assert tree.is_leaf("b")
        assert tree.lookup_vertex(tree.lookup_index("d")) == "d"
        assert len(tree.edges()) == 4

    def test_duplicate_node_rejected(self, tree):
        with pytest.raises(ValueError):
            tree.add_node("r", "c")
        with pytest.raises(ValueError):
            tree.add_node("missing", "e")

    def test_traversals(self, tree):
        pre = list(tree.preorder())
        post = list(tree.postorder())
        assert pre == ["r", "a", "c", "d", "b"]
        for node in tree.nodes:
            parent = tree.get_parent(node)
            if parent is not None:
                assert pre.index(parent) < pre.index(node)
                assert post.index(parent) > post.index(node)

    def test_path(self, tree):
        assert tree.path("c", "b") == ["c", "a", "r", "b"]
        assert tree.path("d", "d") == ["d"]
        assert tree.path("r", "c") == ["r", "a", "c"]

    def test_deep_tree_has_no_recursion_limit(self):
        t = Tree()
        t.add(0)
        for i in range(1, 5000):
            t.add_node(i - 1, i)
        assert len(list(t.postorder())) == 5000
        assert len(t.path(4999, 0)) == 5000

    def test_from_graph(self):
        g = nx.Graph([(1, 2), (2, 3), (4, 5)])
        g.add_node(6)
        t = Tree.from_graph(g, root=2)
        assert t.roots == [2, 4, 6]
        assert t.get_parent(1) == 2
        assert t.to_networkx().number_of_edges() == 3

    def test_from_graph_rejects_cycles(self):
        with pytest.raises(ValueError):
            Tree.from_graph(nx.cycle_graph(4))
