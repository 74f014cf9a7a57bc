import time
from enum import IntEnum

import numpy as np
# Global constants for the Q-vector table producer. The detector layout and the
# sentinel conventions below must match the calibration objects in the store.

# ── sub-populations (order fixed: z-axis of the calibration histograms) ───────

class SubDet(IntEnum):
    FT0C = 0
    FT0A = 1
    FT0M = 2
    FV0A = 3
    BPOS = 4
    BNEG = 5


# Correction stages kept for every sub-population.
# RAW -> recentered -> recentered+twisted -> recentered+twisted+rescaled
class Stage(IntEnum):
    RAW        = 0
    RECENTERED = 1
    TWISTED    = 2
    RESCALED   = 3


# Output table names per sub-population. The "_vec" variant carries one entry
# per configured harmonic.
TABLE_NAMES = {
    SubDet.FT0C: 'QvectorFT0Cs',
    SubDet.FT0A: 'QvectorFT0As',
    SubDet.FT0M: 'QvectorFT0Ms',
    SubDet.FV0A: 'QvectorFV0As',
    SubDet.BPOS: 'QvectorBPoss',
    SubDet.BNEG: 'QvectorBNegs',
}

# ── detector channel layout ───────────────────────────────────────────────────

N_CH_FT0      = 208   # 96 A-side + 112 C-side
N_CH_FV0      = 48
FT0C_CH_SHIFT = 96    # C-side raw id + 96 -> combined FT0 channel space

# ── sentinels ─────────────────────────────────────────────────────────────────

QVEC_ABSENT   = -999.   # sub-population disabled or detector missing
QVEC_EMPTY    = 999.    # enabled, but nothing was accumulated
WEIGHT_EPS    = 1e-8
CENT_UNCALIB  = 110.

# Calibration is applied for 0 <= cent < CENT_MAX_CALIB.
CENT_MAX_CALIB = 80.
N_CENT_BINS    = 80

# Parameter slots of a calibration table (axis 1).
SLOT_MEAN_X    = 0
SLOT_MEAN_Y    = 1
SLOT_TWIST_X   = 2
SLOT_TWIST_Y   = 3
SLOT_RESCALE_X = 4
SLOT_RESCALE_Y = 5
N_CALIB_SLOTS  = 6

# Harmonic of the legacy single-harmonic tables.
REF_HARMONIC = 2

# ── centrality estimators ─────────────────────────────────────────────────────
# Order of the four values stored per event.
CENT_ESTIMATORS = {
    0: 'FT0M',
    1: 'FT0A',
    2: 'FT0C',
    3: 'FV0A',
}

# ── barrel track selection ────────────────────────────────────────────────────

TRACK_QUALITY_FLAGS = [
    'passedITSNCls',
    'passedITSChi2NDF',
    'passedITSHits',
    'passedTPCCrossedRowsOverNCls',
    'passedTPCChi2NDF',
    'passedDCAxy',
    'passedDCAz',
]

# |eta| window for the two barrel sub-events (gap of 0.2 around eta = 0).
ETA_GAP = 0.1
ETA_MAX = 0.8

TRACK_DTYPE = np.dtype(
    [('pt', 'f4'), ('eta', 'f4'), ('phi', 'f4'), ('global_id', 'i8')]
    + [(flag, '?') for flag in TRACK_QUALITY_FLAGS]
)

# ── calibration store keys ────────────────────────────────────────────────────

ALIGN_PATH_FT0 = 'FT0/Calib/Align'
ALIGN_PATH_FV0 = 'FV0/Calib/Align'

# ── QA histogram axes: (n_bins, low, high) ────────────────────────────────────

QA_AXIS_FIT_AMP = (1000, 0., 5000.)
QA_AXIS_CH_ID   = (220, 0., 220.)
QA_AXIS_PT      = (40, 0., 4.)
QA_AXIS_ETA     = (32, -0.8, 0.8)
QA_AXIS_PHI     = (32, 0., 2. * np.pi)
QA_AXIS_CENT    = (20, 0., 100.)

# ── default run configuration ─────────────────────────────────────────────────

DEFAULT_CONFIG = {
    'ccdb_url':        'ccdb.h5',                  # calibration store file
    'ccdb_not_after':  int(time.time() * 1000),   # ms since epoch
    'cent_estimator':  2,                         # FT0C
    'pt_min':          0.15,
    'pt_max':          5.,
    'harmonics':       [2, 3],
    'gain_eq_path':    'Users/j/junlee/Qvector/GainEq',
    'qvec_calib_path': 'Analysis/EventPlane/QVecCorrections',
    # Output tables requested downstream; decides which sub-populations run.
    'outputs':         [TABLE_NAMES[det] for det in SubDet] +
                       [f'{TABLE_NAMES[det]}_vec' for det in SubDet],
}


def make_config(**overrides):
    """
    Return a copy of DEFAULT_CONFIG with `overrides` applied and validated.

    Raises
    ------
    KeyError   : unknown configuration key
    ValueError : inconsistent values (estimator, pt window, harmonics)
    """
    config = dict(DEFAULT_CONFIG)
    for key, value in overrides.items():
        if key not in DEFAULT_CONFIG:
            raise KeyError(f"Unknown configuration key '{key}'. "
                           f"Available keys: {sorted(DEFAULT_CONFIG)}")
        config[key] = value

    if config['cent_estimator'] not in CENT_ESTIMATORS:
        raise ValueError(f"cent_estimator={config['cent_estimator']} out of range: "
                         f"expected one of {sorted(CENT_ESTIMATORS)}")

    if not config['pt_min'] < config['pt_max']:
        raise ValueError(f"Empty pt window [{config['pt_min']}, {config['pt_max']}]")

    harmonics = [int(n) for n in config['harmonics']]
    if len(harmonics) == 0 or any(n <= 0 for n in harmonics):
        raise ValueError(f"harmonics must be a non-empty list of positive "
                         f"integers, got {config['harmonics']}")
    config['harmonics'] = harmonics
    config['outputs']   = list(config['outputs'])

    return config
