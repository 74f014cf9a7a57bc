"""
Configuration and geometry adapter.
"""
import numpy as np
import h5py
import pytest

from parameters import *
from geometry import FITGeometry, load_geometry


def test_make_config_defaults():
    config = make_config()
    assert config['harmonics'] == [2, 3]
    assert config['cent_estimator'] == 2
    assert config is not DEFAULT_CONFIG


@pytest.mark.parametrize("overrides, error", [
    ({'cent_estimator': 4},           ValueError),
    ({'pt_min': 5., 'pt_max': 1.},    ValueError),
    ({'harmonics': []},               ValueError),
    ({'harmonics': [2, 0]},           ValueError),
    ({'not_a_key': 1},                KeyError),
])
def test_make_config_rejects(overrides, error):
    with pytest.raises(error):
        make_config(**overrides)


def test_geometry_offsets_by_side(geometry):
    moved = geometry.with_offsets(ft0=((0., 0.), (2., 0.)),
                                  fv0=((0., 1.), (0., -1.)))

    # A side untouched, C side shifted
    assert moved.phi_ft0(3) == geometry.phi_ft0(3)
    x, y = geometry.ft0_pos[FT0C_CH_SHIFT]
    assert moved.phi_ft0(FT0C_CH_SHIFT) == pytest.approx(np.arctan2(y, x + 2.))

    for ch in range(N_CH_FV0):
        x, y = geometry.fv0_pos[ch]
        dy = 1. if geometry.fv0_side[ch] == 0 else -1.
        assert moved.phi_fv0(ch) == pytest.approx(np.arctan2(y + dy, x))


def test_geometry_shape_checks():
    with pytest.raises(ValueError):
        FITGeometry(np.zeros((10, 2)), np.zeros((N_CH_FV0, 2)), np.zeros(N_CH_FV0))


def test_geometry_file(tmp_path, geometry):
    fname = str(tmp_path / 'geo.h5')
    with h5py.File(fname, 'w') as f:
        f.create_dataset('ft0/positions', data=geometry.ft0_pos)
        f.create_dataset('fv0/positions', data=geometry.fv0_pos)
        f.create_dataset('fv0/side',      data=geometry.fv0_side)
    back = load_geometry(fname)
    assert np.array_equal(back.phi_ft0(np.arange(N_CH_FT0)),
                          geometry.phi_ft0(np.arange(N_CH_FT0)))
    assert np.array_equal(back.fv0_side, geometry.fv0_side)
