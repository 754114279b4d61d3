"""
grmm/inference/messages.py

Storage for directed messages between variables and factors.

Endpoints share one integer keyspace: a variable is keyed by its graph
index ``i >= 0`` and a factor by ``-(i + 1)``. A message is stored under
(to, from) so all messages into one node can be read together.
"""

from __future__ import annotations

import sys
from typing import Dict, Iterator, Optional, TextIO, Tuple, Union

from grmm.types.factor import TableFactor
from grmm.types.factor_graph import FactorGraph
from grmm.types.variable import Variable

Endpoint = Union[Variable, TableFactor]


def create_empty_msg(var: Variable) -> TableFactor:
    """A uniform message over ``var``."""
    return TableFactor(var).normalize()


class MessageArray:
    """
    Messages of one belief-propagation run over a fixed factor graph.

    ``duplicate()`` deep-copies every stored factor, so a snapshot is
    never changed by later updates to the live array.
    """

    def __init__(self, graph: FactorGraph):
        self.graph = graph
        self._messages: Dict[int, Dict[int, TableFactor]] = {}

    def key_of(self, obj: Endpoint) -> int:
        if isinstance(obj, Variable):
            idx = self.graph.get_index(obj)
            if idx < 0:
                raise ValueError(f"Variable {obj} is not in the graph")
            return idx
        idx = self.graph.get_index(obj)
        if idx < 0:
            raise ValueError(f"Factor {obj} is not in the graph")
        return -(idx + 1)

    def endpoint(self, key: int) -> Endpoint:
        if key >= 0:
            return self.graph.get_variable(key)
        return self.graph.get_factor(-key - 1)

    def get(self, src: Endpoint, dst: Endpoint) -> Optional[TableFactor]:
        return self.get_by_index(self.key_of(src), self.key_of(dst))

    def get_by_index(self, from_idx: int, to_idx: int) -> Optional[TableFactor]:
        inner = self._messages.get(to_idx)
        if inner is None:
            return None
        return inner.get(from_idx)

    def put(self, src: Endpoint, dst: Endpoint, msg: TableFactor) -> None:
        self.put_by_index(self.key_of(src), self.key_of(dst), msg)

    def put_by_index(self, from_idx: int, to_idx: int, msg: TableFactor) -> None:
        self._messages.setdefault(to_idx, {})[from_idx] = msg

    def incoming(self, dst: Endpoint) -> Dict[int, TableFactor]:
        """Messages into ``dst``, keyed by sender index."""
        return self.incoming_by_index(self.key_of(dst))

    def incoming_by_index(self, to_idx: int) -> Dict[int, TableFactor]:
        return dict(self._messages.get(to_idx, {}))

    def items(self) -> Iterator[Tuple[int, int, TableFactor]]:
        """(from_idx, to_idx, message) triples."""
        for to_idx, inner in self._messages.items():
            for from_idx, msg in inner.items():
                yield from_idx, to_idx, msg

    def __len__(self) -> int:
        return sum(len(inner) for inner in self._messages.values())

    def duplicate(self) -> "MessageArray":
        out = MessageArray(self.graph)
        for from_idx, to_idx, msg in self.items():
            out.put_by_index(from_idx, to_idx, msg.duplicate())
        return out

    def dump(self, out: Optional[TextIO] = None) -> None:
        out = out if out is not None else sys.stdout
        for from_idx, to_idx, msg in sorted(self.items(), key=lambda t: (t[1], t[0])):
            src = self.endpoint(from_idx)
            dst = self.endpoint(to_idx)
            out.write(f"MESSAGE {src} --> {dst}\n")
            out.write(msg.dump_to_string())
            out.write("\n")
