import numpy as np
import pytest

from lossgrad.core.types import ConfigurationError
from lossgrad.core.weighting import (
    apply_mask,
    apply_weighting,
    as_column_vector,
    as_row_vector,
    combined_scale,
    validate_weighting,
)


def test_weighting_applies_feature_then_example_then_mask():
    arr = np.ones((2, 3))
    out = apply_weighting(arr, np.array([1.0, 2.0, 3.0]), np.array([2.0, 0.5]), np.array([1.0, 0.0]))
    assert out is arr
    assert np.allclose(out, [[2.0, 4.0, 6.0], [0.0, 0.0, 0.0]])


def test_mask_accepts_column_shape():
    arr = np.ones((3, 2))
    apply_mask(arr, np.array([[1.0], [0.0], [1.0]]))
    assert np.allclose(arr[:, 0], [1.0, 0.0, 1.0])


def test_mask_rejects_matrix_shape():
    with pytest.raises(ConfigurationError):
        apply_mask(np.ones((2, 2)), np.ones((2, 2)))


def test_feature_weight_mismatch_reported_before_mutation():
    arr = np.ones((2, 3))
    with pytest.raises(ConfigurationError, match="feature weights.*3"):
        apply_weighting(arr, np.array([1.0, 2.0]))
    assert np.all(arr == 1.0)


def test_example_weight_and_mask_mismatch():
    with pytest.raises(ConfigurationError, match="example weights"):
        apply_weighting(np.ones((2, 3)), example_weights=np.ones(3))
    with pytest.raises(ConfigurationError, match="mask"):
        apply_weighting(np.ones((2, 3)), mask=np.ones(4))


def test_validate_weighting_checks_every_vector():
    validate_weighting((2, 3), np.ones(3), np.ones(2), np.ones(2))
    with pytest.raises(ConfigurationError, match="mask"):
        validate_weighting((2, 3), np.ones(3), np.ones(2), np.ones(5))


def test_row_vector_is_frozen_copy():
    source = np.array([[1.0, 2.0, 3.0]])
    vec = as_row_vector(source)
    assert vec.shape == (3,)
    source[0, 0] = 9.0
    assert vec[0] == 1.0
    with pytest.raises(ValueError):
        vec[0] = 4.0


@pytest.mark.parametrize("bad", [np.ones((3, 1)), np.ones((2, 2)), np.float64(1.0), np.ones(0)])
def test_row_vector_rejects_non_rows(bad):
    with pytest.raises(ConfigurationError):
        as_row_vector(bad)


def test_combined_scale():
    assert combined_scale((2, 2)) is None
    scale = combined_scale((2, 2), np.array([1.0, 3.0]), np.array([2.0, 1.0]))
    assert np.allclose(scale, [[2.0, 6.0], [1.0, 3.0]])


def test_column_vector_accepts_row_and_column_shapes():
    assert as_column_vector(np.array([[1.0, 2.0]]), "mask").shape == (2,)
    assert as_column_vector(np.array([[1.0], [2.0]]), "mask").shape == (2,)
    with pytest.raises(ConfigurationError, match="example weights must be a vector"):
        as_column_vector(np.ones((2, 2)), "example weights")
