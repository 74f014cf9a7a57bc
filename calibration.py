import numpy as np
from collections import namedtuple

from parameters import *
from ccdb import MissingAlignmentError


# ══════════════════════════════════════════════════════════════════════════════
# Section 1: gain equalisation and calibration tables
# ══════════════════════════════════════════════════════════════════════════════

def load_gains(store, base_path, detector, n_channels, timestamp):
    """
    Relative gain constants of one detector, <base_path>/<detector>.

    The raw amplitude of channel i is equalised as  ampl / gains[i].
    Falls back to all ones when the store has no object for this timestamp.
    """
    obj = store.get_for_timestamp(f'{base_path}/{detector}', timestamp)
    if obj is None:
        print(f"WARNING: no gain constants for {detector} at {timestamp}, "
              f"using 1.0 for all {n_channels} channels.")
        gains = np.ones(n_channels, dtype=np.float64)
    else:
        gains = np.asarray(obj, dtype=np.float64)
        if gains.shape != (n_channels,):
            raise ValueError(f"Gain constants for {detector} must have "
                             f"{n_channels} entries, got shape {gains.shape}")
    gains.flags.writeable = False
    return gains


def _check_table(table, key):
    table = np.asarray(table, dtype=np.float64)
    if table.ndim != 3 or table.shape[1:] != (N_CALIB_SLOTS, len(SubDet)) \
            or table.shape[0] < N_CENT_BINS:
        raise ValueError(f"Calibration table '{key}' must have shape "
                         f"(>={N_CENT_BINS}, {N_CALIB_SLOTS}, {len(SubDet)}), "
                         f"got {table.shape}")
    table.flags.writeable = False
    return table


def load_calib_table(store, base_path, harmonic, timestamp):
    """
    Calibration table of one harmonic, <base_path>/v<n>.

    Layout: table[cent_bin, slot, subdet] with cent_bin = floor(cent),
    slot in (meanX, meanY, twistX, twistY, rescaleX, rescaleY) and subdet in
    SubDet order. Falls back to the v2 table when v<n> is absent; returns None
    if that is absent too.
    """
    key = f'{base_path}/v{harmonic}'
    obj = store.get_for_timestamp(key, timestamp)
    if obj is None and harmonic != REF_HARMONIC:
        print(f"WARNING: no calibration table '{key}', "
              f"falling back to v{REF_HARMONIC}.")
        key = f'{base_path}/v{REF_HARMONIC}'
        obj = store.get_for_timestamp(key, timestamp)
    if obj is None:
        print(f"WARNING: no calibration table for harmonic {harmonic}, "
              f"Q-vectors of this harmonic stay uncorrected.")
        return None
    return _check_table(obj, key)


def load_alignment(store, key, timestamp):
    """Two (x, y) offsets stored under `key`; fatal when missing."""
    obj = store.get_for_timestamp(key, timestamp)
    if obj is None:
        raise MissingAlignmentError(
            f"Could not get the alignment parameters '{key}' at {timestamp}.")
    offsets = np.asarray(obj, dtype=np.float64)
    if offsets.shape != (2, 2):
        raise ValueError(f"Alignment '{key}' must have shape (2, 2), "
                         f"got {offsets.shape}")
    return (tuple(offsets[0]), tuple(offsets[1]))


# ══════════════════════════════════════════════════════════════════════════════
# Section 2: Q-vector corrections
# ══════════════════════════════════════════════════════════════════════════════

def do_recenter(re, im, mean_x, mean_y):
    return re - mean_x, im - mean_y


def do_twist(re, im, tx, ty):
    denom = 1. - tx * ty
    return (re - tx * im) / denom, (im - ty * re) / denom


def do_rescale(re, im, rx, ry):
    # a zero width means no width was measured for that axis: left unscaled
    if rx != 0.:
        re = re / rx
    if ry != 0.:
        im = im / ry
    return re, im


def is_calibratable(cent):
    return 0. <= cent < CENT_MAX_CALIB


def is_sentinel(re, im):
    return (re == QVEC_ABSENT and im == QVEC_ABSENT) or \
           (re == QVEC_EMPTY and im == QVEC_EMPTY)


def apply_corrections(qvec, table, cent):
    """
    Expand raw Q-vectors into the four correction stages.

    For every sub-population, using the parameters of bin floor(cent):

        RAW        : raw
        RECENTERED : recenter(raw)
        TWISTED    : twist(recenter(raw))
        RESCALED   : rescale(twist(recenter(raw)))

    Without a table, or for cent outside [0, 80), all four stages are the raw
    value. Sentinel Q-vectors (QVEC_ABSENT, QVEC_EMPTY) are never corrected.

    Parameters
    ----------
    qvec  : dict {SubDet: (re, im)}
    table : np.ndarray (n_cent_bins, 6, 6) or None
    cent  : float

    Returns
    -------
    stages : dict {(SubDet, Stage): (re, im)}
    """
    stages = {}
    if table is None or not is_calibratable(cent):
        for det in SubDet:
            for stage in Stage:
                stages[(det, stage)] = qvec[det]
        return stages

    ibin = int(np.floor(cent))
    for det in SubDet:
        re, im = qvec[det]
        if is_sentinel(re, im):
            for stage in Stage:
                stages[(det, stage)] = (re, im)
            continue

        p  = table[ibin, :, det]
        mx, my = p[SLOT_MEAN_X], p[SLOT_MEAN_Y]
        tx, ty = p[SLOT_TWIST_X], p[SLOT_TWIST_Y]
        rx, ry = p[SLOT_RESCALE_X], p[SLOT_RESCALE_Y]

        stages[(det, Stage.RAW)]        = (re, im)
        stages[(det, Stage.RECENTERED)] = do_recenter(re, im, mx, my)
        stages[(det, Stage.TWISTED)]    = do_twist(*do_recenter(re, im, mx, my), tx, ty)
        stages[(det, Stage.RESCALED)]   = do_rescale(
            *do_twist(*do_recenter(re, im, mx, my), tx, ty), rx, ry)

    return {key: (float(re), float(im)) for key, (re, im) in stages.items()}


# ══════════════════════════════════════════════════════════════════════════════
# Section 3: run-scoped conditions
# ══════════════════════════════════════════════════════════════════════════════

RunConditions = namedtuple('RunConditions', [
    'run_number',
    'timestamp',
    'gains_ft0',    # (208,)
    'gains_fv0',    # (48,)
    'tables',       # {harmonic: table or None}
    'ref_table',    # v2 table or None
    'geometry',     # FITGeometry with this run's alignment offsets
])


class RunConditionsCache:
    """
    Holds the conditions of the current run.

    current_for() reloads gains, calibration tables and alignment only when the
    run number differs from the one of the cached snapshot, and hands out the
    same snapshot for every other event of that run.
    """

    def __init__(self, store, geometry, config):
        self.store       = store
        self.geometry    = geometry
        self.config      = config
        self.n_refreshes = 0
        self._conditions = None

    def current_for(self, run_number, timestamp):
        if self._conditions is None or self._conditions.run_number != run_number:
            self._conditions = self.refresh(run_number, timestamp)
            self.n_refreshes += 1
        return self._conditions

    def refresh(self, run_number, timestamp):
        print(f"[Run {run_number}] Loading conditions for timestamp {timestamp} ...")

        ft0 = load_alignment(self.store, ALIGN_PATH_FT0, timestamp)
        fv0 = load_alignment(self.store, ALIGN_PATH_FV0, timestamp)
        geometry = self.geometry.with_offsets(ft0=ft0, fv0=fv0)

        calib_path = self.config['qvec_calib_path']
        tables = {n: load_calib_table(self.store, calib_path, n, timestamp)
                  for n in self.config['harmonics']}
        if REF_HARMONIC in tables:
            ref_table = tables[REF_HARMONIC]
        else:
            ref_table = load_calib_table(self.store, calib_path, REF_HARMONIC, timestamp)

        gain_path = self.config['gain_eq_path']
        gains_ft0 = load_gains(self.store, gain_path, 'FT0', N_CH_FT0, timestamp)
        gains_fv0 = load_gains(self.store, gain_path, 'FV0', N_CH_FV0, timestamp)

        return RunConditions(run_number, timestamp, gains_ft0, gains_fv0,
                             tables, ref_table, geometry)
