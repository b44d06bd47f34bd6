import hypothesis
import hypothesis.strategies
import numpy
import pytest

from torchodeinterface.callback import INT32, INT64, IdentifierCodec


class TestIdentifierCodec:
    @hypothesis.given(
        call_id=hypothesis.strategies.integers(1, 2**64 - 1),
    )
    def test_round_trip_int64(self, call_id):
        codec = IdentifierCodec(INT64)
        assert codec.decode(codec.encode(call_id)) == call_id

    @hypothesis.given(
        call_id=hypothesis.strategies.integers(1, 2**64 - 1),
    )
    def test_round_trip_int32(self, call_id):
        codec = IdentifierCodec(INT32)
        assert codec.decode(codec.encode(call_id)) == call_id

    def test_cell_counts(self):
        assert IdentifierCodec(INT64).encode(1).shape == (1,)
        assert IdentifierCodec(INT32).encode(1).shape == (2,)

    def test_int32_low_half_first(self):
        codec = IdentifierCodec(INT32)
        slot = codec.encode(2**32 + 5)
        assert slot.dtype == numpy.int32
        assert slot.tolist() == [5, 1]

    def test_high_bit_stored_signed(self):
        slot = IdentifierCodec(INT64).encode(2**64 - 1)
        assert slot.dtype == numpy.int64
        assert slot.tolist() == [-1]

    def test_encode_into_leaves_other_cells(self):
        codec = IdentifierCodec(INT64)
        slot = INT64.array([0, 42])
        codec.encode_into(7, slot)
        assert slot.tolist() == [7, 42]

    def test_decode_ctypes_pointer(self):
        codec = IdentifierCodec(INT32)
        slot = codec.encode(2**40 + 3)
        pointer = slot.ctypes.data_as(INT32.pointer)
        assert codec.decode(pointer) == 2**40 + 3

    @pytest.mark.parametrize("call_id", [0, -1, 2**64])
    def test_rejects_out_of_range(self, call_id):
        with pytest.raises(ValueError, match="call id"):
            IdentifierCodec(INT64).encode(call_id)
