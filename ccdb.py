import numpy as np
import h5py

from parameters import *


class MissingAlignmentError(RuntimeError):
    """Alignment offsets for a forward detector could not be retrieved."""


class CalibrationStore:
    """
    Keyed, time-versioned calibration objects kept in one HDF5 file.

    Every key (e.g. 'FT0/Calib/Align') is a group path. Each stored version of
    the object is a subgroup named obj_<NNNN> with

        data        : dataset — the object itself
        attrs       : valid_from, valid_until (ms, half-open interval),
                      created (ms), plus any extra attributes given to put()

    get_for_timestamp() returns the most recently created version valid at the
    requested timestamp, ignoring versions created after `not_after`. A key or
    timestamp without a match gives None, never an exception.
    """

    OBJ_PREFIX = 'obj_'

    def __init__(self, path, not_after=None, caching=True):
        self.path      = path
        self.not_after = not_after
        self.caching   = caching
        self._cache    = {}

    def _select(self, grp, timestamp):
        best, best_created = None, None
        for name, obj in grp.items():
            if not name.startswith(self.OBJ_PREFIX):
                continue
            created = int(obj.attrs['created'])
            if self.not_after is not None and created > self.not_after:
                continue
            if not (obj.attrs['valid_from'] <= timestamp < obj.attrs['valid_until']):
                continue
            if best_created is None or created > best_created:
                best, best_created = obj, created
        return best

    def get_for_timestamp(self, key, timestamp, with_attrs=False):
        """
        Parameters
        ----------
        key        : str  — object path in the store
        timestamp  : int  — ms since epoch
        with_attrs : bool — also return the extra attributes of the object

        Returns
        -------
        np.ndarray or None            (with_attrs=False)
        (np.ndarray, dict) or None    (with_attrs=True)
        """
        cache_key = (key, int(timestamp))
        if self.caching and cache_key in self._cache:
            found = self._cache[cache_key]
        else:
            found = None
            with h5py.File(self.path, 'r') as f:
                if key in f and isinstance(f[key], h5py.Group):
                    obj = self._select(f[key], timestamp)
                    if obj is not None:
                        attrs = {k: v for k, v in obj.attrs.items()
                                 if k not in ('valid_from', 'valid_until', 'created')}
                        found = (obj['data'][()], attrs)
            if self.caching:
                self._cache[cache_key] = found

        if found is None:
            return None
        return found if with_attrs else found[0]

    def put(self, key, data, valid_from=0, valid_until=np.iinfo(np.int64).max,
            created=0, **attrs):
        """Append a new version of `key` to the store (file created if needed)."""
        with h5py.File(self.path, 'a') as f:
            grp  = f.require_group(key)
            n    = sum(1 for name in grp if name.startswith(self.OBJ_PREFIX))
            obj  = grp.create_group(f'{self.OBJ_PREFIX}{n:04d}')
            obj.create_dataset('data', data=np.asarray(data))
            obj.attrs['valid_from']  = np.int64(valid_from)
            obj.attrs['valid_until'] = np.int64(valid_until)
            obj.attrs['created']     = np.int64(created)
            for k, v in attrs.items():
                obj.attrs[k] = v
        self._cache.clear()

    def keys(self):
        """All object keys present in the store."""
        found = []

        def visit(name, obj):
            if isinstance(obj, h5py.Group) and \
                    any(k.startswith(self.OBJ_PREFIX) for k in obj.keys()):
                found.append(name)

        with h5py.File(self.path, 'r') as f:
            f.visititems(visit)
        return sorted(found)
