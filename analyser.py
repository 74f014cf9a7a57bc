import numpy as np
import h5py

from parameters import *
import kinematics as kn


# ══════════════════════════════════════════════════════════════════════════════
# Section 1: Q-vector accumulation
# ══════════════════════════════════════════════════════════════════════════════

def sum_qvector(phi, weight, harmonic):
    """
    Weighted sum of unit vectors at n*phi.

    Returns
    -------
    Q   : complex — sum_i w_i e^{i n phi_i}
    sum : float   — sum_i w_i
    """
    phi    = np.asarray(phi,    dtype=np.float64)
    weight = np.asarray(weight, dtype=np.float64)
    Q = np.sum(weight * np.exp(1j * harmonic * phi))
    return complex(Q), float(np.sum(weight))


def normalise(Q, weight):
    """(Re, Im) of Q / weight, or the empty sentinel when weight <= WEIGHT_EPS."""
    if weight > WEIGHT_EPS:
        Q = Q / weight
        return Q.real, Q.imag
    return QVEC_EMPTY, QVEC_EMPTY


def fit_channels(event, gains_ft0, gains_fv0):
    """
    Channel ids and amplitudes of the forward detectors of one event.

    FT0 C-side ids are shifted by FT0C_CH_SHIFT into the combined channel
    space. Equalised amplitudes are  ampl / gain[channel].

    Returns
    -------
    dict {'FT0A' | 'FT0C' | 'FV0A': (channels, ampl, ampl_cor)}
        A detector without data for this event has no entry.
    """
    out = {}

    ft0 = event.get('ft0')
    if ft0 is not None:
        ch_a = np.asarray(ft0['channelA'], dtype=np.int64)
        ch_c = np.asarray(ft0['channelC'], dtype=np.int64) + FT0C_CH_SHIFT
        amp_a = np.asarray(ft0['amplitudeA'], dtype=np.float64)
        amp_c = np.asarray(ft0['amplitudeC'], dtype=np.float64)
        out['FT0A'] = (ch_a, amp_a, amp_a / gains_ft0[ch_a])
        out['FT0C'] = (ch_c, amp_c, amp_c / gains_ft0[ch_c])

    fv0 = event.get('fv0')
    if fv0 is not None:
        ch  = np.asarray(fv0['channel'],   dtype=np.int64)
        amp = np.asarray(fv0['amplitude'], dtype=np.float64)
        out['FV0A'] = (ch, amp, amp / gains_fv0[ch])

    return out


def compute_fit_qvectors(channels, harmonic, geometry, enabled):
    """
    Amplitude-weighted Q-vectors of FT0C, FT0A, FT0M and FV0A.

    FT0M is its own running sum over the A- and C-side channels, normalised by
    the combined amplitude; it does not depend on FT0A or FT0C being enabled.

    Parameters
    ----------
    channels : dict — output of fit_channels()
    harmonic : int
    geometry : FITGeometry — with the run's alignment offsets
    enabled  : set of SubDet

    Returns
    -------
    qvec : dict {SubDet: (re, im)}
    amp  : dict {SubDet: float}  — summed equalised amplitude
    """
    dets = (SubDet.FT0C, SubDet.FT0A, SubDet.FT0M, SubDet.FV0A)
    qvec = {det: (QVEC_ABSENT, QVEC_ABSENT) for det in dets}
    amp  = {det: 0. for det in dets}

    if 'FT0A' in channels:
        ch_a, _, cor_a = channels['FT0A']
        ch_c, _, cor_c = channels['FT0C']
        phi_a = geometry.phi_ft0(ch_a)
        phi_c = geometry.phi_ft0(ch_c)

        for det, phi, w in ((SubDet.FT0A, phi_a, cor_a),
                            (SubDet.FT0C, phi_c, cor_c),
                            (SubDet.FT0M, np.concatenate([phi_a, phi_c]),
                                          np.concatenate([cor_a, cor_c]))):
            if det not in enabled:
                continue
            Q, sum_w  = sum_qvector(phi, w, harmonic)
            qvec[det] = normalise(Q, sum_w)
            amp[det]  = sum_w

    if 'FV0A' in channels and SubDet.FV0A in enabled:
        ch, _, cor = channels['FV0A']
        Q, sum_w = sum_qvector(geometry.phi_fv0(ch), cor, harmonic)
        qvec[SubDet.FV0A] = normalise(Q, sum_w)
        amp[SubDet.FV0A]  = sum_w

    return qvec, amp


def compute_track_qvectors(tracks, harmonic, pt_min, pt_max, enabled):
    """
    pT-weighted Q-vectors of the two barrel sub-events.

        Q_n = sum_j pT_j (cos n phi_j, sin n phi_j) / N

    i.e. averaged over the number of tracks N, not normalised by sum pT.

    Returns
    -------
    qvec   : dict {SubDet: (re, im)}        for BPOS and BNEG
    amp    : dict {SubDet: float}           number of tracks
    labels : dict {SubDet: list of int}     global ids of contributing tracks
    """
    qvec, amp, labels = {}, {}, {}

    mask     = kn.select_tracks(tracks, pt_min, pt_max)
    pos, neg = kn.split_eta(tracks, mask)

    for det, sel in ((SubDet.BPOS, pos), (SubDet.BNEG, neg)):
        if det not in enabled:
            qvec[det], amp[det], labels[det] = (QVEC_ABSENT, QVEC_ABSENT), 0., []
            continue

        n_trk = int(np.count_nonzero(sel))
        labels[det] = [int(i) for i in tracks['global_id'][sel]]
        amp[det]    = float(n_trk)
        if n_trk == 0:
            qvec[det] = (QVEC_EMPTY, QVEC_EMPTY)
            continue

        pt  = tracks['pt'] [sel].astype(np.float64)
        phi = tracks['phi'][sel].astype(np.float64)
        qvec[det] = (float(np.sum(pt * np.cos(harmonic * phi)) / n_trk),
                     float(np.sum(pt * np.sin(harmonic * phi)) / n_trk))

    return qvec, amp, labels


def compute_qvectors(event, harmonic, conditions, config, enabled, channels):
    """
    Raw Q-vectors of all six sub-populations for one harmonic.

    Parameters
    ----------
    event      : dict — one event from parser.read_events()
    harmonic   : int
    conditions : calibration.RunConditions
    config     : dict — from parameters.make_config()
    enabled    : set of SubDet
    channels   : dict — fit_channels() of this event, shared by all harmonics

    Returns
    -------
    dict : {'qvec'  : {SubDet: (re, im)},
            'amp'   : {SubDet: float},
            'labels': {SubDet.BPOS: [...], SubDet.BNEG: [...]}}
    """
    qvec, amp = compute_fit_qvectors(channels, harmonic, conditions.geometry, enabled)
    trk_qvec, trk_amp, labels = compute_track_qvectors(
        event['tracks'], harmonic, config['pt_min'], config['pt_max'], enabled)
    qvec.update(trk_qvec)
    amp.update(trk_amp)

    return {'qvec': qvec, 'amp': amp, 'labels': labels}


# ══════════════════════════════════════════════════════════════════════════════
# Section 2: HDF5 output
# ══════════════════════════════════════════════════════════════════════════════

def _is_ragged(values):
    return len(values) > 0 and isinstance(values[0], (list, tuple, np.ndarray))


def save_hdf5(filename, tables, qa=None, metadata=None):
    """
    Write the output tables (and optionally the QA histograms) to HDF5.

    File structure
    --------------
    /metadata/
        attrs: one attr per entry of `metadata`
    /tables/<table_name>/
        attrs: n_rows
        <column> : one dataset per column, one entry per event row.
                   List-valued columns (per-harmonic values, track ids) are
                   stored as variable-length datasets.
    /qa/<histogram_name>/
        counts : histogram contents
        edges_<i> : bin edges of axis i

    Parameters
    ----------
    filename : str
    tables   : dict {table_name: {column: list}}
    qa       : dict {name: (counts, [edges, ...])} or None
    metadata : dict or None
    """
    with h5py.File(filename, 'w') as f:

        meta = f.create_group('metadata')
        for key, value in (metadata or {}).items():
            if isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value):
                value = np.array(value, dtype=h5py.string_dtype())
            meta.attrs[key] = value

        for name, columns in tables.items():
            grp   = f.create_group(f'tables/{name}')
            n_row = len(next(iter(columns.values()))) if columns else 0
            grp.attrs['n_rows'] = n_row

            for col, values in columns.items():
                if _is_ragged(values):
                    base = np.int64 if col.startswith('labels') else np.float32
                    dset = grp.create_dataset(col, (len(values),),
                                              dtype=h5py.vlen_dtype(base))
                    for i, v in enumerate(values):
                        dset[i] = np.asarray(v, dtype=base)
                elif len(values) > 0:
                    grp.create_dataset(col, data=np.asarray(values),
                                       compression='gzip', compression_opts=4)
                else:
                    grp.create_dataset(col, data=np.asarray(values, dtype=np.float32))

        for name, (counts, edges) in (qa or {}).items():
            grp = f.create_group(f'qa/{name}')
            grp.create_dataset('counts', data=counts,
                               compression='gzip', compression_opts=4)
            for i, e in enumerate(edges):
                grp.create_dataset(f'edges_{i}', data=e)
