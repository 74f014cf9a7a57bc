import numpy as np
import h5py

from parameters import *


class FITGeometry:
    """
    Channel -> azimuth adapter for the forward detectors.

    Channel positions (x, y) come from the detector geometry and are treated as
    correct input. Alignment offsets are applied per detector side:

        FT0 : channels 0..95 use the A-side offset, 96..207 the C-side offset
        FV0 : each channel belongs to the left (0) or right (1) half

    Instances are never modified in place; with_offsets() returns a copy so a
    run snapshot keeps the offsets it was built with.
    """

    def __init__(self, ft0_pos, fv0_pos, fv0_side,
                 offset_ft0a=(0., 0.), offset_ft0c=(0., 0.),
                 offset_fv0left=(0., 0.), offset_fv0right=(0., 0.)):
        self.ft0_pos  = np.asarray(ft0_pos,  dtype=np.float64)
        self.fv0_pos  = np.asarray(fv0_pos,  dtype=np.float64)
        self.fv0_side = np.asarray(fv0_side, dtype=np.int8)

        if self.ft0_pos.shape != (N_CH_FT0, 2):
            raise ValueError(f"FT0 positions must have shape ({N_CH_FT0}, 2), "
                             f"got {self.ft0_pos.shape}")
        if self.fv0_pos.shape != (N_CH_FV0, 2):
            raise ValueError(f"FV0 positions must have shape ({N_CH_FV0}, 2), "
                             f"got {self.fv0_pos.shape}")
        if self.fv0_side.shape != (N_CH_FV0,):
            raise ValueError(f"FV0 side map must have {N_CH_FV0} entries, "
                             f"got {self.fv0_side.shape}")

        self.offset_ft0a     = tuple(offset_ft0a)
        self.offset_ft0c     = tuple(offset_ft0c)
        self.offset_fv0left  = tuple(offset_fv0left)
        self.offset_fv0right = tuple(offset_fv0right)

        # per-channel offsets, precomputed once
        ft0_off = np.empty((N_CH_FT0, 2))
        ft0_off[:FT0C_CH_SHIFT] = self.offset_ft0a
        ft0_off[FT0C_CH_SHIFT:] = self.offset_ft0c
        fv0_off = np.where(self.fv0_side[:, None] == 0,
                           np.array(self.offset_fv0left),
                           np.array(self.offset_fv0right))

        ft0 = self.ft0_pos + ft0_off
        fv0 = self.fv0_pos + fv0_off
        self._phi_ft0 = np.arctan2(ft0[:, 1], ft0[:, 0])
        self._phi_fv0 = np.arctan2(fv0[:, 1], fv0[:, 0])

    def with_offsets(self, ft0=None, fv0=None):
        """
        Copy of this geometry with new alignment offsets.

        ft0 : pair of (x, y) offsets — (A side, C side)
        fv0 : pair of (x, y) offsets — (left half, right half)
        """
        ft0a, ft0c = ft0 if ft0 is not None else (self.offset_ft0a, self.offset_ft0c)
        left, right = fv0 if fv0 is not None else (self.offset_fv0left, self.offset_fv0right)
        return FITGeometry(self.ft0_pos, self.fv0_pos, self.fv0_side,
                           offset_ft0a=ft0a, offset_ft0c=ft0c,
                           offset_fv0left=left, offset_fv0right=right)

    def phi_ft0(self, channel):
        """Azimuth of FT0 channel(s) in the combined 0..207 channel space."""
        return self._phi_ft0[channel]

    def phi_fv0(self, channel):
        return self._phi_fv0[channel]


def load_geometry(filename):
    """
    Read channel positions from an HDF5 file with datasets

        /ft0/positions  (208, 2)
        /fv0/positions  (48, 2)
        /fv0/side       (48,)    0 = left half, 1 = right half
    """
    with h5py.File(filename, 'r') as f:
        for path in ('ft0/positions', 'fv0/positions', 'fv0/side'):
            if path not in f:
                raise KeyError(f"'{path}' not found in geometry file {filename}")
        return FITGeometry(f['ft0/positions'][:],
                           f['fv0/positions'][:],
                           f['fv0/side'][:])
