import numpy as np

from parameters import *
import analyser as an
import kinematics as kn
from calibration import RunConditionsCache, apply_corrections, is_calibratable


def detectors_from_outputs(outputs):
    """
    Sub-populations needed by the requested output tables.

    A sub-population is enabled when its table ('QvectorFT0Cs') or the
    vector-valued variant ('QvectorFT0Cs_vec') is requested; everything else
    is skipped during accumulation and reported as QVEC_ABSENT. An enabled
    sub-population always gets its single-harmonic row.
    """
    outputs = set(outputs)
    return frozenset(det for det, name in TABLE_NAMES.items()
                     if name in outputs or f'{name}_vec' in outputs)


def select_centrality(cent_values, estimator):
    """
    Pick one of the four centrality estimators.

    Returns
    -------
    cent          : float — CENT_UNCALIB when outside the calibrated range
    is_calibrated : bool  — True for 0 <= cent < 80
    """
    cent = float(cent_values[estimator])
    if not is_calibratable(cent):
        return CENT_UNCALIB, False
    return cent, True


def flatten_stages(stages):
    """Sub-population-major, stage-minor (re, im) lists of apply_corrections()."""
    re = [stages[(det, stage)][0] for det in SubDet for stage in Stage]
    im = [stages[(det, stage)][1] for det in SubDet for stage in Stage]
    return re, im


# ══════════════════════════════════════════════════════════════════════════════
# Section 1: QA histograms
# ══════════════════════════════════════════════════════════════════════════════

def _edges(axis):
    n, lo, hi = axis
    return np.linspace(lo, hi, n + 1)


class QAHistograms:
    """
    Amplitude and track monitoring histograms, filled once per event.

        FT0Amp, FT0AmpCor : (amplitude, channel) raw / gain-equalised
        FV0Amp, FV0AmpCor : (amplitude, channel) raw / gain-equalised
        ChTracks          : (pT, eta, phi, centrality) of selected tracks
    """

    def __init__(self):
        fit = [_edges(QA_AXIS_FIT_AMP), _edges(QA_AXIS_CH_ID)]
        self.edges = {
            'FT0Amp':    fit,
            'FT0AmpCor': fit,
            'FV0Amp':    fit,
            'FV0AmpCor': fit,
            'ChTracks':  [_edges(QA_AXIS_PT), _edges(QA_AXIS_ETA),
                          _edges(QA_AXIS_PHI), _edges(QA_AXIS_CENT)],
        }
        self.counts = {name: np.zeros([len(e) - 1 for e in edges])
                       for name, edges in self.edges.items()}

    def fill(self, name, *values):
        if len(values[0]) == 0:
            return
        sample    = np.column_stack([np.asarray(v, dtype=np.float64) for v in values])
        counts, _ = np.histogramdd(sample, bins=self.edges[name])
        self.counts[name] += counts

    def fill_event(self, channels, tracks, track_mask, cent):
        for det, hist in (('FT0A', 'FT0'), ('FT0C', 'FT0'), ('FV0A', 'FV0')):
            if det not in channels:
                continue
            ch, ampl, ampl_cor = channels[det]
            self.fill(f'{hist}Amp',    ampl,     ch)
            self.fill(f'{hist}AmpCor', ampl_cor, ch)

        sel = tracks[track_mask]
        self.fill('ChTracks', sel['pt'], sel['eta'], sel['phi'],
                  np.full(len(sel), cent))

    def as_dict(self):
        return {name: (self.counts[name], self.edges[name]) for name in self.counts}


# ══════════════════════════════════════════════════════════════════════════════
# Section 2: event processing
# ══════════════════════════════════════════════════════════════════════════════

class QVectorsTask:
    """
    Per-event Q-vector production.

    For each event:
        1. fetch the run conditions (reloaded only when the run changes)
        2. select the centrality estimator, decide whether to calibrate
        3. for each configured harmonic: raw Q-vectors of the six
           sub-populations, then the four correction stages
        4. one extra pass at harmonic 2 with the v2 table, for the
           single-harmonic tables
        5. assemble one row per output table

    Parameters
    ----------
    config   : dict — from parameters.make_config()
    store    : ccdb.CalibrationStore
    geometry : geometry.FITGeometry — without alignment offsets
    """

    def __init__(self, config, store, geometry):
        self.config    = config
        self.enabled   = detectors_from_outputs(config['outputs'])
        self.harmonics = list(config['harmonics'])
        self.cache     = RunConditionsCache(store, geometry, config)
        self.qa        = QAHistograms()
        self.tables    = {}

        print(f"Harmonics            : {self.harmonics}")
        print(f"Centrality estimator : {CENT_ESTIMATORS[config['cent_estimator']]}")
        print(f"Enabled detectors    : {[det.name for det in sorted(self.enabled)]}")

    def qvectors_for(self, event, harmonic, table, conditions, cent, cent_ok, channels):
        """Raw Q-vectors of one harmonic plus their four correction stages."""
        raw    = an.compute_qvectors(event, harmonic, conditions, self.config,
                                     self.enabled, channels)
        stages = apply_corrections(raw['qvec'], table, cent)
        raw['stages']        = stages
        raw['is_calibrated'] = cent_ok and table is not None
        return raw

    def process(self, event):
        """
        Returns
        -------
        rows : dict {table_name: {column: value}}
        """
        conditions    = self.cache.current_for(event['run_number'], event['timestamp'])
        cent, cent_ok = select_centrality(event['cent'], self.config['cent_estimator'])

        channels = an.fit_channels(event, conditions.gains_ft0, conditions.gains_fv0)

        per_harmonic = [self.qvectors_for(event, n, conditions.tables[n], conditions,
                                       cent, cent_ok, channels)
                        for n in self.harmonics]
        ref = self.qvectors_for(event, REF_HARMONIC, conditions.ref_table, conditions,
                             cent, cent_ok, channels)

        track_mask = kn.select_tracks(event['tracks'],
                                      self.config['pt_min'], self.config['pt_max'])
        self.qa.fill_event(channels, event['tracks'], track_mask, cent)

        return self.assemble(cent, ref, per_harmonic)

    def assemble(self, cent, ref, per_harmonic):
        rows    = {}
        outputs = set(self.config['outputs'])

        re, im = flatten_stages(ref['stages'])
        rows['Qvectors'] = {
            'cent':         cent,
            'isCalibrated': ref['is_calibrated'],
            'qvecRe':       re,
            'qvecIm':       im,
            'qvecAmp':      [ref['amp'][det] for det in SubDet],
        }

        vec_ok = all(res['is_calibrated'] for res in per_harmonic)
        re_vec, im_vec, amp_vec = [], [], []
        for res in per_harmonic:
            re, im = flatten_stages(res['stages'])
            re_vec  += re
            im_vec  += im
            amp_vec += [res['amp'][det] for det in SubDet]
        rows['Qvectors_vec'] = {
            'cent':         cent,
            'isCalibrated': vec_ok,
            'qvecRe':       re_vec,
            'qvecIm':       im_vec,
            'qvecAmp':      amp_vec,
        }

        for det in sorted(self.enabled):
            name  = TABLE_NAMES[det]
            final = (det, Stage.RESCALED)

            row = {
                'isCalibrated': ref['is_calibrated'],
                'qvecRe':       ref['stages'][final][0],
                'qvecIm':       ref['stages'][final][1],
                'sumAmpl':      ref['amp'][det],
            }
            if det in (SubDet.BPOS, SubDet.BNEG):
                row['nTrk']   = int(ref['amp'][det])
                row['labels'] = ref['labels'][det]
            rows[name] = row

            if f'{name}_vec' in outputs:
                first = per_harmonic[0]
                row = {
                    'isCalibrated': vec_ok,
                    'qvecRe':       [res['stages'][final][0] for res in per_harmonic],
                    'qvecIm':       [res['stages'][final][1] for res in per_harmonic],
                    'sumAmpl':      first['amp'][det],
                }
                if det in (SubDet.BPOS, SubDet.BNEG):
                    row['nTrk']   = int(first['amp'][det])
                    row['labels'] = first['labels'][det]
                rows[f'{name}_vec'] = row

        return rows

    def append(self, rows):
        for name, row in rows.items():
            table = self.tables.setdefault(name, {col: [] for col in row})
            for col, value in row.items():
                table[col].append(value)

    def run(self, events):
        """Process an iterable of events and return the accumulated tables."""
        n_events = 0
        for event in events:
            self.append(self.process(event))
            n_events += 1
            if n_events % 1000 == 0:
                print(f"  {n_events} events processed ...")

        print(f"\nProcessing complete:")
        print(f"  Events          : {n_events}")
        print(f"  Run refreshes   : {self.cache.n_refreshes}")
        print(f"  Output tables   : {sorted(self.tables)}")
        return self.tables

    def metadata(self):
        return {
            'harmonics':      np.array(self.harmonics),
            'ref_harmonic':   REF_HARMONIC,
            'cent_estimator': CENT_ESTIMATORS[self.config['cent_estimator']],
            'pt_range':       np.array([self.config['pt_min'], self.config['pt_max']]),
            'subdets':        [det.name for det in SubDet],
            'stages':         [stage.name for stage in Stage],
            'outputs':        sorted(self.config['outputs']),
        }
