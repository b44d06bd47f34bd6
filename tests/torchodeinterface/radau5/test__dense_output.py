import ctypes

import numpy
import pytest
import torch
from tensordict import TensorDict

from torchodeinterface.callback import (
    CallContext,
    CallRegistry,
    ContinuationHandles,
    InternalInconsistency,
    OutputMode,
    OutputStatus,
    UnsupportedCapability,
)
from torchodeinterface.radau5 import (
    CallbackBridge,
    DenseOutputEvaluator,
    evaluate_dense_output,
    no_dense_output,
)

_REAL = ctypes.POINTER(ctypes.c_double)


class ContinuationStub:
    """Stands in for CONTR5, answering from a fixed list of values."""

    def __init__(self, values):
        self.values = list(values)
        self.calls = 0

    def __call__(self, index, time, cont, lrc):
        value = self.values[self.calls]
        self.calls += 1
        return value


def _context(integer, query, dimension=2):
    context = CallContext(
        dimension=dimension,
        rhs=lambda t, x: x,
        output_mode=OutputMode.DENSE,
        continuation_query=query,
        integer=integer,
    )
    context.last_step_times = (0.0, 0.1)
    context.last_step_state = torch.tensor([1.0, 2.0], dtype=torch.float64)
    context.saved_buffer_handles = ContinuationHandles(cont=None, lrc=None)
    return context


class TestEvaluateDenseOutput:
    def test_step_end_skips_query(self, integer):
        stub = ContinuationStub([])
        context = _context(integer, stub)

        x = evaluate_dense_output(context, 0.1)

        assert stub.calls == 0
        assert x.tolist() == [1.0, 2.0]
        assert x is not context.last_step_state

    def test_one_query_per_component(self, integer):
        stub = ContinuationStub([1.2345, -6.789])
        context = _context(integer, stub)

        x = evaluate_dense_output(context, 0.05)

        assert stub.calls == 2
        assert x.tolist() == [1.2345, -6.789]

    def test_query_arguments(self, integer):
        seen = []

        def query(index, time, cont, lrc):
            seen.append((index._obj.value, time._obj.value, cont, lrc))
            return 0.0

        context = _context(integer, query)
        context.saved_buffer_handles = ContinuationHandles("cont", "lrc")
        evaluate_dense_output(context, 0.025)

        assert seen == [(1, 0.025, "cont", "lrc"), (2, 0.025, "cont", "lrc")]

    def test_outside_step_notification(self, integer):
        context = _context(integer, ContinuationStub([0.0, 0.0]))
        context.saved_buffer_handles = None
        with pytest.raises(InternalInconsistency):
            evaluate_dense_output(context, 0.05)


class TestDenseOutputEvaluator:
    def test_unflattens(self, integer):
        context = _context(integer, ContinuationStub([3.0, 4.0]))
        context.unflatten = lambda flat: TensorDict(
            {"p": flat[:1], "q": flat[1:]}, batch_size=()
        )

        y = DenseOutputEvaluator(context)(0.05)

        assert y["p"].tolist() == [3.0]
        assert y["q"].tolist() == [4.0]

    def test_no_dense_output(self):
        with pytest.raises(UnsupportedCapability):
            no_dense_output(0.5)


class TestDenseOutputThroughStepNotification:
    def test_step_with_dense(self, integer):
        stub = ContinuationStub([0.75, 1.5])
        results = {}
        evaluators = []

        def output_fn(reason, t_old, t, x, evaluate):
            results["end"] = evaluate(0.1)
            results["middle"] = evaluate(0.05)
            evaluators.append(evaluate)
            return OutputStatus.CONTINUE

        registry = CallRegistry()
        bridge = CallbackBridge(registry, integer)
        context = CallContext(
            dimension=2,
            rhs=lambda t, x: x,
            output_fn=output_fn,
            output_mode=OutputMode.DENSE,
            continuation_query=stub,
            integer=integer,
        )
        context.evaluator = DenseOutputEvaluator(context)
        ipar = bridge.codec.encode(registry.register(context))

        def ints(value):
            return integer.array([value]).ctypes.data_as(integer.pointer)

        def reals(*values):
            return numpy.array(values).ctypes.data_as(_REAL)

        irtrn = integer.array([7])
        bridge.solout_callback(
            ints(2),
            reals(0.0),
            reals(0.1),
            reals(1.0, 2.0),
            reals(0.0, 0.0, 0.0, 0.0),
            ints(4),
            ints(2),
            reals(0.0),
            ipar.ctypes.data_as(integer.pointer),
            irtrn.ctypes.data_as(integer.pointer),
        )

        assert irtrn[0] == 0
        assert context.pending_error is None
        assert results["end"].tolist() == [1.0, 2.0]
        assert results["middle"].tolist() == [0.75, 1.5]
        assert stub.calls == 2

        with pytest.raises(InternalInconsistency):
            evaluators[0](0.05)
