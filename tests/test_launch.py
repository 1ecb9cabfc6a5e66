import numpy as np
import pytest

from clkit.errors import ContractViolation
from clkit.launch import (
    MAX_DIMENSIONS,
    as_ndrange,
    resolve_global_size,
    round_up_to_multiple,
)


class TestAsNDRange:
    """Normalisation of launch extents."""

    def test_int_becomes_one_dimension(self):
        assert as_ndrange(64) == (64,)

    def test_sequence_becomes_tuple(self):
        assert as_ndrange([8, 4]) == (8, 4)
        assert as_ndrange((1, 2, 3)) == (1, 2, 3)

    def test_numpy_integers_accepted(self):
        """Numpy integers are converted to plain ints."""
        extents = as_ndrange((np.int64(32), np.int32(2)))
        assert extents == (32, 2)
        assert all(type(e) is int for e in extents)

    @pytest.mark.parametrize("value", [(), (1, 1, 1, 1)])
    def test_dimension_count_enforced(self, value):
        with pytest.raises(ContractViolation, match="between 1 and"):
            as_ndrange(value)

    def test_non_integer_entries_rejected(self):
        with pytest.raises(ContractViolation, match="integers"):
            as_ndrange((1.5, 2))

    def test_non_sequence_rejected(self):
        with pytest.raises(ContractViolation):
            as_ndrange(None)

    def test_max_dimensions(self):
        assert MAX_DIMENSIONS == 3


class TestRoundUp:
    @pytest.mark.parametrize(
        "minimum, local, expected",
        [
            (64, 16, 64),
            (70, 16, 80),
            (16, 16, 16),
            (1, 16, 16),
            (0, 16, 0),
            (17, 1, 17),
        ],
    )
    def test_round_up_to_multiple(self, minimum, local, expected):
        assert round_up_to_multiple(minimum, local) == expected


class TestResolveGlobalSize:
    """Global size resolution from minimum and local sizes."""

    def test_exact_multiple_unchanged(self):
        assert resolve_global_size(64, 16) == (64,)

    def test_rounds_up(self):
        assert resolve_global_size(70, 16) == (80,)

    def test_each_dimension_rounded(self):
        assert resolve_global_size((100, 30), (16, 8)) == (112, 32)

    def test_three_dimensions(self):
        assert resolve_global_size((5, 5, 5), (4, 4, 4)) == (8, 8, 8)

    @pytest.mark.parametrize(
        "minimum, local",
        [
            (1, 1),
            (1000, 64),
            ((3, 7), (2, 5)),
            ((255, 1, 9), (16, 1, 4)),
        ],
    )
    def test_result_is_smallest_valid_multiple(self, minimum, local):
        """Every extent is a multiple of local and less than one group too big."""
        minimum_t = as_ndrange(minimum)
        local_t = as_ndrange(local)
        result = resolve_global_size(minimum, local)
        for g, m, l in zip(result, minimum_t, local_t):
            assert g % l == 0
            assert m <= g < m + l

    def test_mismatched_dimensions(self):
        with pytest.raises(ContractViolation, match="dimensionality"):
            resolve_global_size((64, 64), 16)

    def test_zero_local_size(self):
        with pytest.raises(ContractViolation, match="positive"):
            resolve_global_size(64, 0)

    def test_negative_minimum(self):
        with pytest.raises(ContractViolation, match="negative"):
            resolve_global_size(-1, 16)

    def test_violation_is_assertion_error(self):
        """Contract violations can be treated as failed assertions."""
        with pytest.raises(AssertionError):
            resolve_global_size((1, 2), (1,))
