"""
grmm/inference/strategies.py

Message computations for belief propagation.

A strategy computes one outgoing message from the messages already in a
MessageArray:
- variable -> factor: product of every message into the variable except
  the one from the target factor
- factor -> variable: the factor times every message into it except the
  one from the target variable, reduced onto the variable

Sum-product reduces by summation and yields marginals; max-product
reduces by maximisation and yields max-marginals for MAP decoding. The
schedule (which messages to send, in what order) belongs to the
inferencer, so one schedule serves both semirings.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Optional

from grmm.inference.messages import MessageArray, create_empty_msg
from grmm.types.factor import TableFactor
from grmm.types.factor_graph import FactorGraph
from grmm.types.variable import Variable

logger = logging.getLogger(__name__)

# Sentinel sender index that matches no endpoint.
NO_EXCLUSION = None


class MessageStrategy(ABC):
    """Computes and stores single messages for a BP inferencer."""

    def __init__(self):
        self.messages: Optional[MessageArray] = None
        self.old_messages: Optional[MessageArray] = None

    def set_message_array(self, messages: MessageArray, old_messages: MessageArray) -> None:
        self.messages = messages
        self.old_messages = old_messages

    def __getstate__(self):
        # Message arrays belong to one run; copies start unbound.
        state = dict(self.__dict__)
        state["messages"] = None
        state["old_messages"] = None
        return state

    def send_message(self, graph: FactorGraph, src, dst) -> None:
        """Send one message; the direction follows from the endpoint types."""
        if isinstance(src, Variable):
            self.send_variable_to_factor(graph, src, dst)
        else:
            self.send_factor_to_variable(graph, src, dst)

    @abstractmethod
    def send_factor_to_variable(self, graph: FactorGraph, src: TableFactor, dst: Variable) -> None:
        ...

    def send_variable_to_factor(self, graph: FactorGraph, src: Variable, dst: TableFactor) -> None:
        from_idx = self.messages.key_of(src)
        to_idx = self.messages.key_of(dst)
        msg = self.msg_product(None, from_idx, to_idx).normalize()
        self.messages.put_by_index(from_idx, to_idx, msg)

    def msg_product(self, product: Optional[TableFactor], idx: int, exclude_from) -> TableFactor:
        """
        Multiply every message into node ``idx`` into ``product``.

        Args:
            product: Factor to multiply into, in place. When None, ``idx``
                must be a variable and a uniform factor over it is used.
            idx: Receiving node
            exclude_from: Sender whose message is skipped, or NO_EXCLUSION

        Returns:
            The product
        """
        if product is None:
            product = create_empty_msg(self.messages.endpoint(idx))
        for from_idx, msg in self.messages.incoming_by_index(idx).items():
            if from_idx != exclude_from:
                product.multiply_by(msg)
        return product

    def _factor_product(self, src: TableFactor, from_idx: int, to_idx: int) -> TableFactor:
        return self.msg_product(src.duplicate(), from_idx, to_idx)

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class SumProductMessageStrategy(MessageStrategy):
    """
    Sum-product messages with optional damping.

    With ``damping < 1`` each factor-to-variable message becomes
    ``damping * new + (1 - damping) * old``, where ``old`` is the message
    from the previous snapshot. Damping slows oscillation on graphs with
    strong loops.
    """

    def __init__(self, damping: float = 1.0):
        super().__init__()
        if not 0.0 < damping <= 1.0:
            raise ValueError(f"damping must be in (0, 1], got {damping}")
        self.damping = damping

    def send_factor_to_variable(self, graph: FactorGraph, src: TableFactor, dst: Variable) -> None:
        from_idx = self.messages.key_of(src)
        to_idx = self.messages.key_of(dst)
        product = self._factor_product(src, from_idx, to_idx)
        msg = product.marginalize(dst).normalize()
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("MSG %s --> %s\n%s", src, dst, msg.dump_to_string())
        self._damped_update(from_idx, to_idx, msg)

    def _damped_update(self, from_idx: int, to_idx: int, msg: TableFactor) -> None:
        if self.damping < 1.0 and self.old_messages is not None:
            old = self.old_messages.get_by_index(from_idx, to_idx)
            if old is not None:
                old = old.duplicate().normalize()
                msg = msg.interpolate(old, self.damping)
        self.messages.put_by_index(from_idx, to_idx, msg)

    def __repr__(self) -> str:
        return f"SumProductMessageStrategy(damping={self.damping})"


class MaxProductMessageStrategy(MessageStrategy):
    """Max-product messages: the reduction onto the target is a maximum."""

    def send_factor_to_variable(self, graph: FactorGraph, src: TableFactor, dst: Variable) -> None:
        from_idx = self.messages.key_of(src)
        to_idx = self.messages.key_of(dst)
        product = self._factor_product(src, from_idx, to_idx)
        msg = product.extract_max(dst).normalize()
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("MAXMSG %s --> %s\n%s", src, dst, msg.dump_to_string())
        self.messages.put_by_index(from_idx, to_idx, msg)
