"""
Tests for region graphs, region generators and parent-child GBP.
"""

import numpy as np
import pytest

from grmm.exceptions import UnsupportedQueryError
from grmm.inference import (
    BruteForceInferencer,
    JunctionTreeInferencer,
    MessageCounter,
    ResidualBP,
)
from grmm.inference.gbp import (
    BPRegionGenerator,
    ClusterVariationalRegionGenerator,
    Grid2x2RegionComputer,
    Kikuchi4SquareRegionGenerator,
    ParentChildGBP,
    Region,
    RegionGraph,
    remove_subsumed_regions,
)
from grmm.inference.utils import max_l1_marginal_distance
from grmm.models import create_uniform_grid, random_attractive_grid, random_frustrated_tree
from grmm.types import Assignment, FactorGraph, TableFactor, Variable, VarSet
from grmm.types.factor import one_distance


def junction_tree(graph):
    inf = JunctionTreeInferencer()
    inf.compute_marginals(graph)
    return inf


@pytest.fixture
def grid3():
    return random_attractive_grid(3, 0.5, np.random.default_rng(11))


@pytest.fixture
def cycle():
    a, b, c = Variable(2, "A"), Variable(2, "B"), Variable(2, "C")
    graph = FactorGraph([a, b, c])
    graph.add_table_factor([a, b], [[2.0, 1.0], [1.0, 2.0]])
    graph.add_table_factor([b, c], [[2.0, 1.0], [1.0, 2.0]])
    graph.add_table_factor([c, a], [[1.5, 1.0], [1.0, 1.5]])
    graph.add_table_factor(a, [0.7, 0.3])
    return graph


def counting_sum(rg, predicate):
    return sum(r.counting_number for r in rg if predicate(r))


class TestRegionGraph:
    @pytest.fixture
    def diamond(self):
        a, b, c = Variable(2, "a"), Variable(2, "b"), Variable(2, "c")
        top = Region([a, b, c])
        ab, bc, only_b = Region([a, b]), Region([b, c]), Region([b])
        fb = TableFactor(b, [0.3, 0.7])
        only_b.add_factor(fb)
        rg = RegionGraph()
        rg.add(top, ab)
        rg.add(top, bc)
        rg.add(ab, only_b)
        rg.add(bc, only_b)
        rg.compute_inference_caches()
        return rg, (top, ab, bc, only_b), fb

    def test_add_links_parent_and_child(self, diamond):
        rg, (top, ab, bc, only_b), _ = diamond
        assert len(rg) == 4
        assert rg.num_edges() == 4
        assert top.is_root()
        assert ab.parents == [top]
        assert only_b.parents == [ab, bc]
        assert rg.is_connected(top, ab)
        assert not rg.is_connected(ab, top)

    def test_adding_an_edge_twice_is_ignored(self, diamond):
        rg, (top, ab, _, _), _ = diamond
        rg.add(top, ab)
        assert rg.num_edges() == 4
        assert top.children.count(ab) == 1

    def test_child_must_be_contained_in_parent(self):
        a, b = Variable(2), Variable(2)
        rg = RegionGraph()
        with pytest.raises(ValueError):
            rg.add(Region([a]), Region([a, b]))

    def test_region_belongs_to_one_graph(self, diamond):
        _, (top, _, _, _), _ = diamond
        with pytest.raises(ValueError):
            RegionGraph().add_region(top)

    def test_descendants_and_factor_closure(self, diamond):
        _, (top, ab, bc, only_b), fb = diamond
        assert top.descendants == {ab, bc, only_b}
        assert ab.descendants == {only_b}
        for region in (top, ab, bc, only_b):
            assert fb in region.factors

    def test_counting_numbers(self, diamond):
        _, (top, ab, bc, only_b), _ = diamond
        assert top.counting_number == 1
        assert ab.counting_number == 0
        assert bc.counting_number == 0
        assert only_b.counting_number == 0

    def test_edge_message_sets(self, diamond):
        rg, (top, ab, bc, only_b), _ = diamond
        edge = rg.find_edge(ab, only_b)
        assert edge.neighboring_parents == [rg.find_edge(top, ab)]
        assert edge.looping_messages == []
        assert edge.factors_to_send == []

        edge = rg.find_edge(top, ab)
        assert edge.neighboring_parents == []
        assert edge.looping_messages == [rg.find_edge(bc, only_b)]

    def test_find_containing_region_prefers_smallest(self, diamond):
        rg, (top, ab, _, only_b), _ = diamond
        assert rg.find_containing_region(only_b.vars) is only_b
        assert rg.find_containing_region(ab.vars) is ab
        assert rg.find_containing_region(top.vars) is top
        assert rg.find_containing_region([Variable(2)]) is None

    def test_cycle_is_rejected(self):
        a = Variable(2)
        r1, r2 = Region([a]), Region([a])
        rg = RegionGraph()
        rg.add(r1, r2)
        rg.add(r2, r1)
        with pytest.raises(ValueError):
            rg.compute_inference_caches()

    def test_remove_subsumed_regions(self):
        a, b, c = Variable(2), Variable(2), Variable(2)
        small, big, twin1, twin2 = Region([a]), Region([a, b]), Region([b, c]), Region([b, c])
        kept = remove_subsumed_regions([small, big, twin1, twin2])
        assert kept == [big, twin2]


class TestBPRegions:
    def test_regions_of_a_cycle(self, cycle):
        rg = BPRegionGenerator().construct_region_graph(cycle)
        assert len(rg) == 6
        assert rg.num_edges() == 6
        for region in rg:
            if len(region.vars) == 1:
                assert region.counting_number == -1
                assert len(region.parents) == 2
            else:
                assert region.counting_number == 1
        for factor in cycle.factors:
            assert counting_sum(rg, lambda r: factor in r.factors) == 1


class TestKikuchiRegions:
    def test_structure_on_3x3_grid(self, grid3):
        rg = Kikuchi4SquareRegionGenerator().construct_region_graph(grid3)
        sizes = sorted(len(r.vars) for r in rg)
        assert sizes.count(4) == 4
        assert sizes.count(2) == 12
        assert sizes.count(1) == 9
        assert rg.num_edges() == 4 * 4 + 12 * 2

    def test_counting_numbers_on_3x3_grid(self, grid3):
        rg = Kikuchi4SquareRegionGenerator().construct_region_graph(grid3)
        center = rg.find_region([grid3.get(1, 1)])
        corner = rg.find_region([grid3.get(0, 0)])
        interior_edge = rg.find_region([grid3.get(1, 0), grid3.get(1, 1)])
        boundary_edge = rg.find_region([grid3.get(0, 0), grid3.get(1, 0)])
        assert center.counting_number == 1
        assert corner.counting_number == 0
        assert interior_edge.counting_number == -1
        assert boundary_edge.counting_number == 0
        for region in rg:
            if len(region.vars) == 4:
                assert region.counting_number == 1

    def test_every_variable_and_factor_counted_once(self, grid3):
        rg = Kikuchi4SquareRegionGenerator().construct_region_graph(grid3)
        for var in grid3.variables:
            assert counting_sum(rg, lambda r: var in r.vars) == 1
        for factor in grid3.factors:
            assert counting_sum(rg, lambda r: factor in r.factors) == 1

    def test_requires_grid(self, cycle):
        with pytest.raises(ValueError):
            Kikuchi4SquareRegionGenerator().construct_region_graph(cycle)


class TestClusterVariationalRegions:
    def test_by_factor_regions_on_tree_are_bethe(self):
        graph = random_frustrated_tree(8, 3, 1.0, np.random.default_rng(2))
        rg = ClusterVariationalRegionGenerator().construct_region_graph(graph)
        for region in rg:
            if len(region.vars) == 1:
                var = region.vars[0]
                pairs = [vs for vs in graph.var_sets() if len(vs) == 2 and var in vs]
                assert region.counting_number == 1 - len(pairs)
            else:
                assert region.counting_number == 1
        for factor in graph.factors:
            assert counting_sum(rg, lambda r: factor in r.factors) == 1

    def test_grid_2x2_base_regions(self, grid3):
        rg = ClusterVariationalRegionGenerator(Grid2x2RegionComputer()).construct_region_graph(grid3)
        sizes = sorted(len(r.vars) for r in rg)
        assert sizes == [1, 2, 2, 2, 2, 4, 4, 4, 4]
        center = rg.find_region([grid3.get(1, 1)])
        assert center.counting_number == 1
        for var in grid3.variables:
            assert counting_sum(rg, lambda r: var in r.vars) == 1

    def test_single_factor_graph_keeps_its_region(self):
        a, b = Variable(2), Variable(3)
        graph = FactorGraph([a, b])
        graph.add_table_factor([a, b], np.arange(1.0, 7.0))
        rg = ClusterVariationalRegionGenerator().construct_region_graph(graph)
        assert len(rg) == 1
        assert rg.num_edges() == 0


class TestParentChildGBP:
    def test_kikuchi_close_to_junction_tree(self, grid3):
        gbp = ParentChildGBP.make_kikuchi_inferencer(threshold=1e-6)
        gbp.compute_marginals(grid3)
        assert gbp.is_converged()
        assert max_l1_marginal_distance(grid3, gbp, junction_tree(grid3)) < 0.02

    def test_grid_2x2_cluster_variation_close_to_junction_tree(self, grid3):
        gbp = ParentChildGBP(ClusterVariationalRegionGenerator(Grid2x2RegionComputer()), threshold=1e-6)
        gbp.compute_marginals(grid3)
        assert gbp.is_converged()
        assert max_l1_marginal_distance(grid3, gbp, junction_tree(grid3)) < 0.02

    def test_edge_marginal_close_to_junction_tree(self, grid3):
        gbp = ParentChildGBP.make_kikuchi_inferencer(threshold=1e-6)
        gbp.compute_marginals(grid3)
        clique = VarSet.of(grid3.get(1, 0), grid3.get(1, 1))
        marg = gbp.lookup_marginal(clique)
        assert marg.vars() == clique
        assert marg.sum() == pytest.approx(1.0)
        assert one_distance(marg, junction_tree(grid3).lookup_marginal(clique)) < 0.02

    def test_uniform_grid_is_exact(self):
        grid = create_uniform_grid(3)
        gbp = ParentChildGBP.make_kikuchi_inferencer()
        gbp.compute_marginals(grid)
        assert gbp.is_converged()
        for var in grid.variables:
            assert np.allclose(gbp.lookup_marginal(var).probabilities(), [0.5, 0.5])
        assn = Assignment.from_values(grid.variables, [0, 1, 0, 1, 1, 0, 0, 0, 1])
        assert gbp.lookup_joint(assn) == pytest.approx(1 / 512)

    def test_bethe_regions_exact_on_tree(self):
        graph = random_frustrated_tree(8, 3, 1.0, np.random.default_rng(4))
        gbp = ParentChildGBP(threshold=1e-8)
        gbp.compute_marginals(graph)
        assert gbp.is_converged()
        assert max_l1_marginal_distance(graph, gbp, junction_tree(graph)) < 1e-4

    def test_log_joint_exact_on_tree(self):
        graph = random_frustrated_tree(6, 2, 1.0, np.random.default_rng(6))
        gbp = ParentChildGBP(threshold=1e-10)
        gbp.compute_marginals(graph)
        exact = BruteForceInferencer()
        exact.compute_marginals(graph)
        for assn in list(graph.assignments())[:5]:
            assert gbp.lookup_log_joint(assn) == pytest.approx(exact.lookup_log_joint(assn), abs=1e-3)

    def test_bp_regions_match_loopy_bp(self, cycle):
        gbp = ParentChildGBP.make_bp_inferencer(threshold=1e-8)
        gbp.compute_marginals(cycle)
        bp = ResidualBP(rng=0)
        bp.compute_marginals(cycle)
        assert gbp.is_converged()
        assert max_l1_marginal_distance(cycle, gbp, bp) < 1e-3

    def test_variable_outside_every_factor_is_uniform(self):
        a, b = Variable(2), Variable(3)
        graph = FactorGraph([a, b])
        graph.add_table_factor(a, [0.2, 0.8])
        gbp = ParentChildGBP.make_bp_inferencer()
        gbp.compute_marginals(graph)
        assert np.allclose(gbp.lookup_marginal(a).probabilities(), [0.2, 0.8])
        assert np.allclose(gbp.lookup_marginal(b).probabilities(), [1 / 3] * 3)

    def test_clique_outside_every_region(self, grid3):
        gbp = ParentChildGBP.make_kikuchi_inferencer()
        gbp.compute_marginals(grid3)
        with pytest.raises(UnsupportedQueryError):
            gbp.lookup_marginal(VarSet.of(grid3.get(0, 0), grid3.get(2, 2)))

    def test_unknown_variable(self, grid3):
        gbp = ParentChildGBP.make_kikuchi_inferencer()
        gbp.compute_marginals(grid3)
        with pytest.raises(ValueError):
            gbp.lookup_marginal(Variable(2))

    def test_lookup_before_compute(self):
        with pytest.raises(RuntimeError):
            ParentChildGBP().lookup_marginal(Variable(2))

    def test_iteration_cap(self, grid3):
        gbp = ParentChildGBP.make_kikuchi_inferencer(max_iter=1, threshold=0.0)
        gbp.compute_marginals(grid3)
        assert gbp.iterations_used() == 1
        assert not gbp.is_converged()

    def test_should_stop_hook(self, grid3):
        gbp = ParentChildGBP.make_kikuchi_inferencer(threshold=0.0, should_stop=lambda i: i >= 2)
        gbp.compute_marginals(grid3)
        assert gbp.iterations_used() == 2
        assert not gbp.is_converged()

    def test_message_counts(self, grid3):
        counter = MessageCounter()
        gbp = ParentChildGBP.make_kikuchi_inferencer(max_iter=3, threshold=0.0, counter=counter)
        gbp.compute_marginals(grid3)
        assert gbp.messages_used_last_time() == 3 * gbp.region_graph.num_edges()
        other = ParentChildGBP.make_kikuchi_inferencer(max_iter=2, threshold=0.0, counter=counter)
        other.compute_marginals(grid3)
        assert counter.total == 5 * gbp.region_graph.num_edges()

    def test_invalid_inertia_weight(self):
        with pytest.raises(ValueError):
            ParentChildGBP(inertia_weight=1.0)

    def test_duplicate_is_independent(self, grid3):
        gbp = ParentChildGBP.make_kikuchi_inferencer(threshold=1e-3)
        gbp.compute_marginals(grid3)
        dup = gbp.duplicate()
        assert isinstance(dup.regioner, Kikuchi4SquareRegionGenerator)
        assert dup.threshold == 1e-3
        with pytest.raises(RuntimeError):
            dup.lookup_marginal(grid3.get(0, 0))

    def test_dump_writes_messages(self, grid3, capsys):
        gbp = ParentChildGBP.make_kikuchi_inferencer(max_iter=1)
        gbp.compute_marginals(grid3)
        gbp.dump()
        out = capsys.readouterr().out
        assert out.count("Message:") == gbp.region_graph.num_edges()
