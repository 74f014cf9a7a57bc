import os
import re
from typing import Dict

import numpy as np
import h5py

from parameters import *


class Parser:
    """
    Index input files named:
        run_<runNumber>_<chunkID>.h5

    Produces a dictionary:
        file_id -> {runNumber, chunkID, h5_path}
    ordered by run number, then chunk.
    """

    FILE_PATTERN = re.compile(r"^run_(\d+)_(\d+)\.h5$")

    def __init__(self, base_path: str):
        self.base_path = base_path
        self.files: Dict[int, Dict] = {}
        self.scan()

    def scan(self):
        """
        Scan the base directory and build the file dictionary.
        """
        if not os.path.isdir(self.base_path):
            raise FileNotFoundError(f"Input directory not found: {self.base_path}")

        self.files.clear()
        found = []
        for entry in os.scandir(self.base_path):
            if not entry.is_file():
                continue

            match = self.FILE_PATTERN.match(entry.name)
            if not match:
                continue

            run_number, chunk_id = map(int, match.groups())
            found.append((run_number, chunk_id, entry.path))

        for file_id, (run_number, chunk_id, path) in enumerate(sorted(found)):
            self.files[file_id] = {
                "runNumber": run_number,
                "chunkID": chunk_id,
                "h5_path": path,
            }

    def get_runs(self):
        """
        Sorted list of the run numbers present.
        """
        return sorted({info["runNumber"] for info in self.files.values()})

    def get_all_h5_paths(self):
        """
        Get all h5 paths as a list, in processing order.
        """
        return [self.files[i]["h5_path"] for i in self.files.keys()]


# ══════════════════════════════════════════════════════════════════════════════
# Event files
# ══════════════════════════════════════════════════════════════════════════════
#
# /events/
#     attrs: n_events
#     run_number  : int64   (n,)
#     timestamp   : int64   (n,)      ms since epoch
#     cent        : float32 (n, 4)    FT0M, FT0A, FT0C, FV0A
#     ft0/found   : bool    (n,)
#     ft0/channelA, ft0/amplitudeA, ft0/channelC, ft0/amplitudeC : vlen (n,)
#     fv0/found   : bool    (n,)
#     fv0/channel, fv0/amplitude : vlen (n,)
#     tracks/data    : TRACK_DTYPE (n_tracks,)  all tracks, event-ordered
#     tracks/offsets : int64 (n + 1,)           event i owns data[off[i]:off[i+1]]

_FT0_FIELDS = (('channelA', np.int32), ('amplitudeA', np.float32),
               ('channelC', np.int32), ('amplitudeC', np.float32))
_FV0_FIELDS = (('channel', np.int32), ('amplitude', np.float32))


def read_events(filename):
    """
    Yield the events of one input file as dicts with keys
    run_number, timestamp, cent, ft0, fv0, tracks.

    ft0 / fv0 are None when the detector has no data for the event.
    """
    with h5py.File(filename, 'r') as f:
        if 'events' not in f:
            raise KeyError(f"'events' group not found in {filename}")
        ev = f['events']

        run_number = ev['run_number'][:]
        timestamp  = ev['timestamp'][:]
        cent       = ev['cent'][:]
        ft0_found  = ev['ft0/found'][:]
        fv0_found  = ev['fv0/found'][:]
        ft0        = {k: ev[f'ft0/{k}'][:] for k, _ in _FT0_FIELDS}
        fv0        = {k: ev[f'fv0/{k}'][:] for k, _ in _FV0_FIELDS}
        tracks     = ev['tracks/data'][:]
        offsets    = ev['tracks/offsets'][:]

    if len(offsets) != len(run_number) + 1:
        raise ValueError(f"Track offsets in {filename} do not match the number "
                         f"of events: {len(offsets)} vs {len(run_number)} + 1")

    for i in range(len(run_number)):
        yield {
            'run_number': int(run_number[i]),
            'timestamp':  int(timestamp[i]),
            'cent':       cent[i],
            'ft0':        {k: ft0[k][i] for k in ft0} if ft0_found[i] else None,
            'fv0':        {k: fv0[k][i] for k in fv0} if fv0_found[i] else None,
            'tracks':     tracks[offsets[i]:offsets[i + 1]],
        }


def read_all_events(filenames):
    """Chain read_events() over several files."""
    for fname in filenames:
        print(f"Reading {fname} ...")
        yield from read_events(fname)


def write_events(filename, events):
    """Write a list of event dicts in the layout read by read_events()."""
    n = len(events)
    with h5py.File(filename, 'w') as f:
        ev = f.create_group('events')
        ev.attrs['n_events'] = n
        ev.create_dataset('run_number', data=np.array([e['run_number'] for e in events], dtype=np.int64))
        ev.create_dataset('timestamp',  data=np.array([e['timestamp']  for e in events], dtype=np.int64))
        ev.create_dataset('cent',       data=np.array([e['cent']       for e in events], dtype=np.float32).reshape(n, 4))

        for det, fields in (('ft0', _FT0_FIELDS), ('fv0', _FV0_FIELDS)):
            ev.create_dataset(f'{det}/found', data=np.array([e[det] is not None for e in events], dtype=bool))
            for key, base in fields:
                dset = ev.create_dataset(f'{det}/{key}', (n,), dtype=h5py.vlen_dtype(base))
                for i, e in enumerate(events):
                    dset[i] = np.asarray(e[det][key] if e[det] is not None else [], dtype=base)

        tracks  = [np.asarray(e['tracks'], dtype=TRACK_DTYPE) for e in events]
        offsets = np.concatenate([[0], np.cumsum([len(t) for t in tracks])]).astype(np.int64)
        data    = np.concatenate(tracks) if n > 0 else np.zeros(0, dtype=TRACK_DTYPE)
        ev.create_dataset('tracks/data',    data=data)
        ev.create_dataset('tracks/offsets', data=offsets)
