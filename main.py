#!/usr/bin/env python3
"""
GRMM: Graphical Models inference core

Driver for running and comparing inference algorithms on small
discrete factor graphs.

Usage:
    # Run demos
    python main.py demo --example chain

    # Compare inferencers against the exact junction tree
    python main.py compare --model frustrated-grid --size 5 --seed 3

    # Run tests
    python main.py test
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Callable, Dict, List, Tuple

import numpy as np

from grmm import (
    __version__,
    Assignment,
    BruteForceInferencer,
    FactorGraph,
    JunctionTreeInferencer,
    ResidualBP,
    SumProductMessageStrategy,
    TRP,
    TreeBP,
    Variable,
    VariableElimination,
)
from grmm.inference import Inferencer, ParentChildGBP
from grmm.inference.utils import lookup_minus_log_z, max_l1_marginal_distance
from grmm.models import (
    UndirectedGrid,
    create_uniform_chain,
    random_attractive_grid,
    random_frustrated_grid,
    random_frustrated_tree,
    random_repulsive_grid,
)


def print_marginals(graph: FactorGraph, inf: Inferencer, limit: int = 10) -> None:
    for var in graph.variables[:limit]:
        probs = inf.lookup_marginal(var).probabilities()
        prob_str = ", ".join(f"{p:.4f}" for p in probs)
        print(f"  P({var}) = [{prob_str}]")
    if graph.num_variables() > limit:
        print(f"  ... ({graph.num_variables() - limit} more)")


def demo_simple_chain() -> bool:
    """Demo: Simple chain A -- B -- C"""
    print("=" * 60)
    print("Demo: Simple Chain A -- B -- C")
    print("=" * 60)

    a, b, c = Variable(2, "A"), Variable(2, "B"), Variable(2, "C")
    graph = FactorGraph([a, b, c])
    graph.add_table_factor(a, [0.6, 0.4])
    graph.add_table_factor([a, b], [0.9, 0.1, 0.2, 0.8])
    graph.add_table_factor([b, c], [0.3, 0.7, 0.5, 0.5])

    bp = TreeBP()
    bp.compute_marginals(graph)
    print("\nTreeBP marginals:")
    print_marginals(graph, bp)

    brute = BruteForceInferencer()
    brute.compute_marginals(graph)
    dist = max_l1_marginal_distance(graph, bp, brute)
    print(f"\nMax L1 distance to brute force: {dist:.2e}")

    assn = Assignment({a: 0, b: 0, c: 1})
    print(f"p({assn}) = {bp.lookup_joint(assn):.6f} (brute force {brute.lookup_joint(assn):.6f})")
    return dist < 1e-6


def demo_grid_3x3() -> bool:
    """Demo: 3x3 attractive grid, loopy BP vs junction tree"""
    print("=" * 60)
    print("Demo: 3x3 Attractive Grid")
    print("=" * 60)

    graph = random_attractive_grid(3, 0.5, np.random.default_rng(0))
    print(f"\n{graph}")

    jt = JunctionTreeInferencer()
    jt.compute_marginals(graph)
    print("\nJunction tree marginals:")
    print_marginals(graph, jt)

    bp = ResidualBP(rng=0)
    bp.compute_marginals(graph)
    print(f"\nResidualBP: converged={bp.is_converged()} after {bp.iterations_used()} iterations")
    dist = max_l1_marginal_distance(graph, bp, jt)
    print(f"Max L1 distance to junction tree: {dist:.4f}")

    ve = VariableElimination()
    z = ve.compute_normalization_factor(graph)
    print(f"\nlog Z (variable elimination) = {np.log(z):.6f}")
    print(f"log Z (junction tree)        = {-lookup_minus_log_z(graph, jt):.6f}")
    return bool(np.isclose(np.log(z), -lookup_minus_log_z(graph, jt)))


def demo_map_tree() -> bool:
    """Demo: MAP assignment on a random tree"""
    print("=" * 60)
    print("Demo: Max-Product on a Random Tree")
    print("=" * 60)

    graph = random_frustrated_tree(8, 2, 1.0, np.random.default_rng(1))
    print(f"\n{graph}")

    bp = TreeBP.create_for_max_product()
    bp.compute_marginals(graph)
    best = bp.best_assignment()
    print(f"\nTreeBP MAP: {best}")

    brute = BruteForceInferencer()
    brute.compute_marginals(graph)
    exact = brute.best_assignment()
    print(f"Exact MAP:  {exact}")
    return bool(np.isclose(graph.log_value(best), graph.log_value(exact)))


MODELS: Dict[str, Callable[[int, float, np.random.Generator], FactorGraph]] = {
    "attractive-grid": lambda size, w, rng: random_attractive_grid(size, w, rng),
    "repulsive-grid": lambda size, w, rng: random_repulsive_grid(size, w, rng),
    "frustrated-grid": lambda size, w, rng: random_frustrated_grid(size, w, rng),
    "frustrated-tree": lambda size, w, rng: random_frustrated_tree(size * size, 3, w, rng),
    "uniform-chain": lambda size, w, rng: create_uniform_chain(size),
}


def build_inferencers(seed: int, graph: FactorGraph) -> List[Tuple[str, Inferencer]]:
    inferencers = [
        ("ResidualBP", ResidualBP(rng=seed)),
        ("ResidualBP (damped)", ResidualBP(SumProductMessageStrategy(damping=0.5), rng=seed)),
        ("TRP", TRP(rng=seed)),
        ("GBP (factor regions)", ParentChildGBP()),
    ]
    if isinstance(graph, UndirectedGrid) and graph.width > 1 and graph.height > 1:
        inferencers.append(("GBP (Kikuchi)", ParentChildGBP.make_kikuchi_inferencer()))
    return inferencers


def cmd_compare(args) -> int:
    """Execute the compare command."""
    rng = np.random.default_rng(args.seed)
    graph = MODELS[args.model](args.size, args.weight, rng)
    print(f"Model: {args.model} size={args.size} weight={args.weight} seed={args.seed}")
    print(f"  {graph}")

    exact = JunctionTreeInferencer()
    exact.compute_marginals(graph)
    exact_mlz = lookup_minus_log_z(graph, exact)
    print(f"\nJunction tree: -log Z = {exact_mlz:.6f}")

    print(f"\n{'inferencer':<22}{'converged':>10}{'iters':>8}{'msgs':>10}{'max L1':>12}")
    for name, inf in build_inferencers(args.seed, graph):
        inf.compute_marginals(graph)
        dist = max_l1_marginal_distance(graph, inf, exact)
        print(
            f"{name:<22}{str(inf.is_converged()):>10}{inf.iterations_used():>8}"
            f"{inf.messages_used_last_time():>10}{dist:>12.2e}"
        )
        inf.report_time()
    return 0


def cmd_demo(args) -> int:
    """Execute the demo command."""
    demos = {
        "chain": demo_simple_chain,
        "grid": demo_grid_3x3,
        "tree": demo_map_tree,
    }

    if args.example == "all":
        results = []
        for name, func in demos.items():
            passed = func()
            results.append((name, passed))
            print()

        print("=" * 60)
        print("Summary")
        print("=" * 60)
        for name, passed in results:
            status = "PASS" if passed else "FAIL"
            print(f"  {name}: {status}")
        return 0 if all(passed for _, passed in results) else 1

    passed = demos[args.example]()
    return 0 if passed else 1


def cmd_test(args) -> int:
    """Execute the test command."""
    import subprocess

    test_dir = Path(__file__).parent / "tests"
    if not test_dir.exists():
        print(f"Test directory not found: {test_dir}")
        return 1

    cmd = [sys.executable, "-m", "pytest", str(test_dir)]
    if args.verbose:
        cmd.append("-v")
    if args.coverage:
        cmd.extend(["--cov=grmm", "--cov-report=term-missing"])

    print(f"Running: {' '.join(cmd)}")
    result = subprocess.run(cmd, cwd=Path(__file__).parent)
    return result.returncode


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        prog="grmm",
        description="GRMM: inference on discrete factor graphs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run demos
  grmm demo --example chain
  grmm demo --example all

  # Compare loopy inferencers with the junction tree
  grmm compare --model frustrated-grid --size 5 --weight 1.0 --seed 3

  # Run tests
  grmm test -v
""",
    )

    parser.add_argument("--version", "-V", action="version", version=f"GRMM {__version__}")
    parser.add_argument("--log", action="store_true", help="Log inference progress at INFO level")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Demo command
    demo_parser = subparsers.add_parser("demo", help="Run demonstration examples")
    demo_parser.add_argument(
        "--example", "-e",
        choices=["chain", "grid", "tree", "all"],
        default="all",
        help="Which example to run (default: all)",
    )

    # Compare command
    compare_parser = subparsers.add_parser("compare", help="Compare inferencers on a random model")
    compare_parser.add_argument("--model", "-m", choices=sorted(MODELS), default="frustrated-grid")
    compare_parser.add_argument("--size", "-n", type=int, default=4, help="Grid side or chain length")
    compare_parser.add_argument("--weight", "-w", type=float, default=1.0, help="Edge weight")
    compare_parser.add_argument("--seed", "-s", type=int, default=0, help="Random seed")

    # Test command
    test_parser = subparsers.add_parser("test", help="Run test suite")
    test_parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    test_parser.add_argument("--coverage", "-c", action="store_true", help="With coverage")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.log else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        return 0

    if args.command == "demo":
        return cmd_demo(args)
    elif args.command == "compare":
        return cmd_compare(args)
    elif args.command == "test":
        return cmd_test(args)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
