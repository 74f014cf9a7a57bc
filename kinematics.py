import numpy as np

from parameters import *
# Barrel track selection for the two pseudorapidity sub-events.


def select_tracks(tracks, pt_min, pt_max):
    """
    Parameters
    ----------
    tracks         : structured array — fields of TRACK_DTYPE
    pt_min, pt_max : float            — keep tracks with pt_min <= pT <= pt_max

    Returns
    -------
    mask : np.ndarray of bool — tracks inside the pT window that pass every
           quality flag in TRACK_QUALITY_FLAGS
    """
    pt   = tracks['pt']
    mask = (pt >= pt_min) & (pt <= pt_max)
    for flag in TRACK_QUALITY_FLAGS:
        mask &= tracks[flag].astype(bool)
    return mask


def split_eta(tracks, mask):
    """
    Split selected tracks into the positive and negative eta sub-events,
    dropping the gap |eta| < ETA_GAP and everything beyond |eta| > ETA_MAX.

    Returns
    -------
    pos, neg : np.ndarray of bool
    """
    eta    = tracks['eta']
    abseta = np.abs(eta)
    inside = mask & (abseta >= ETA_GAP) & (abseta <= ETA_MAX)
    return inside & (eta > 0), inside & (eta < 0)
