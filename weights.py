import os

import numpy as np
import h5py

from ccdb import CalibrationStore

# Axes of the acceptance-weight histogram, in order.
WEIGHT_AXES = ['multiplicity', 'part_type', 'phi', 'eta', 'posZ']


def lookup_bins(counts, edges, coords):
    """
    Bin contents of an N-dimensional histogram at the given coordinates.

    A coordinate outside [edges[0], edges[-1]) on any axis falls in an
    under/overflow bin and gets 0.

    Parameters
    ----------
    counts : np.ndarray, N dims
    edges  : list of N np.ndarray of bin edges
    coords : list of N array-likes, broadcastable to a common shape
    """
    coords = np.broadcast_arrays(*[np.asarray(c, dtype=np.float64) for c in coords])
    idx    = []
    valid  = np.ones(coords[0].shape, dtype=bool)
    for axis, (e, x) in enumerate(zip(edges, coords)):
        i = np.searchsorted(e, x, side='right') - 1
        valid &= (i >= 0) & (i < counts.shape[axis])
        idx.append(np.clip(i, 0, counts.shape[axis] - 1))
    return np.where(valid, counts[tuple(idx)], 0.)


class WeightsLoader:
    """
    Phi-acceptance (NUA) and efficiency weights for the tracks of an event.

    source : 'local://<file.h5>' — datasets NUAWeights_<run>, bin edges in the
                                   attrs edges_0 .. edges_4
             'ccdb://<store.h5>' — calibration store object at `path`
                                   (by timestamp, or <path>/<run> when
                                   for_run_number is set)

    The histogram is reloaded only when the run number changes. Without a
    histogram for the run, every phi weight is 1. Efficiency weights are 1.
    """

    def __init__(self, source, path='Users/m/mavirta/corrections/NUA/LHC23zzh',
                 for_run_number=False):
        self.path           = path
        self.for_run_number = for_run_number
        self.run_number     = None
        self.hist           = None
        self.n_loads        = 0

        if source.startswith('local://'):
            self.filename = source[len('local://'):]
            self.store    = None
            if not os.path.isfile(self.filename):
                raise FileNotFoundError(f"NUA correction weights file not found: {self.filename}")
            print(f"Using corrections from: {self.filename}")
        elif source.startswith('ccdb://'):
            self.filename = None
            self.store    = CalibrationStore(source[len('ccdb://'):])
            print("Using corrections from: ccdb")
        else:
            raise ValueError(f"Didn't find \"local://\" or \"ccdb://\" in weights source '{source}'")

    def load(self, run_number, timestamp):
        """Return (counts, edges) for a run, or None when not available."""
        self.n_loads += 1

        if self.store is None:
            with h5py.File(self.filename, 'r') as f:
                name = f'NUAWeights_{run_number}'
                if name not in f:
                    print(f"WARNING: NUA correction histogram not found for run {run_number}.")
                    return None
                counts = f[name][()]
                edges  = [f[name].attrs[f'edges_{i}'] for i in range(counts.ndim)]
            print(f"Loaded NUA correction histogram locally for run {run_number}.")
            return counts, edges

        if self.for_run_number:
            found = self.store.get_for_timestamp(f'{self.path}/{run_number}', timestamp,
                                                 with_attrs=True)
        else:
            found = self.store.get_for_timestamp(self.path, timestamp, with_attrs=True)
        if found is None:
            print(f"WARNING: NUA correction histogram not found for run {run_number}.")
            return None
        counts, attrs = found
        edges = [attrs[f'edges_{i}'] for i in range(counts.ndim)]
        print(f"Loaded NUA correction histogram from CCDB for run {run_number}.")
        return counts, edges

    def weights_for(self, collision, tracks, part_type=0):
        """
        Parameters
        ----------
        collision : dict — run_number, timestamp, multiplicity, posZ
        tracks    : structured array with fields phi, eta
        part_type : int  — 0 = all charged hadrons

        Returns
        -------
        phi_weight, eff_weight : np.ndarray (n_tracks,)
        """
        if collision['run_number'] != self.run_number:
            self.hist       = self.load(collision['run_number'], collision['timestamp'])
            self.run_number = collision['run_number']

        n_trk      = len(tracks)
        eff_weight = np.ones(n_trk, dtype=np.float32)
        if self.hist is None:
            return np.ones(n_trk, dtype=np.float32), eff_weight

        counts, edges = self.hist
        coords = [np.full(n_trk, collision['multiplicity']),
                  np.full(n_trk, part_type),
                  tracks['phi'],
                  tracks['eta'],
                  np.full(n_trk, collision['posZ'])]
        phi_weight = lookup_bins(counts, edges, coords).astype(np.float32)
        return phi_weight, eff_weight
