"""
Pytest configuration for the Q-vector table tests.
"""
import sys
import os

import numpy as np
import pytest

# Add the repository root to the Python path so tests can import the modules
root_path = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
sys.path.insert(0, root_path)

from parameters import *
from geometry import FITGeometry
from ccdb import CalibrationStore


CALIB_PATH = DEFAULT_CONFIG['qvec_calib_path']
GAIN_PATH  = DEFAULT_CONFIG['gain_eq_path']


def ring(n, radius):
    phi = 2. * np.pi * (np.arange(n) + 0.5) / n
    return np.column_stack([radius * np.cos(phi), radius * np.sin(phi)])


def identity_table():
    """Calibration table whose every bin is the identity correction."""
    table = np.zeros((N_CENT_BINS, N_CALIB_SLOTS, len(SubDet)))
    table[:, SLOT_RESCALE_X, :] = 1.
    table[:, SLOT_RESCALE_Y, :] = 1.
    return table


# ==============================================================================
# Geometry and calibration store
# ==============================================================================

@pytest.fixture
def geometry():
    """FT0-A, FT0-C and FV0 channels evenly spread on three rings."""
    ft0 = np.concatenate([ring(FT0C_CH_SHIFT, 10.),
                          ring(N_CH_FT0 - FT0C_CH_SHIFT, 8.)])
    fv0 = ring(N_CH_FV0, 20.)
    side = (fv0[:, 0] > 0).astype(np.int8)
    return FITGeometry(ft0, fv0, side)


@pytest.fixture
def store(tmp_path):
    """Store with zero alignment offsets and an identity v2 table, no gains."""
    s = CalibrationStore(str(tmp_path / 'ccdb.h5'))
    s.put(ALIGN_PATH_FT0, np.zeros((2, 2)))
    s.put(ALIGN_PATH_FV0, np.zeros((2, 2)))
    s.put(f'{CALIB_PATH}/v2', identity_table())
    return s


@pytest.fixture
def config():
    return make_config(harmonics=[2, 3], ccdb_not_after=None)


# ==============================================================================
# Event factories
# ==============================================================================

@pytest.fixture
def make_tracks():
    def _make(eta, pt, phi, passed=True):
        tracks = np.zeros(len(eta), dtype=TRACK_DTYPE)
        tracks['eta'] = eta
        tracks['pt']  = pt
        tracks['phi'] = phi
        tracks['global_id'] = np.arange(len(eta)) + 1000
        for flag in TRACK_QUALITY_FLAGS:
            tracks[flag] = passed
        return tracks
    return _make


@pytest.fixture
def make_event(make_tracks):
    def _make(run_number=100, timestamp=1000, cent=40.,
              ft0=None, fv0=None, tracks=None):
        if tracks is None:
            tracks = make_tracks([], [], [])
        return {
            'run_number': run_number,
            'timestamp':  timestamp,
            'cent':       np.full(4, cent, dtype=np.float32),
            'ft0':        ft0,
            'fv0':        fv0,
            'tracks':     tracks,
        }
    return _make
