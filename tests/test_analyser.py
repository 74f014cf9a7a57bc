"""
Q-vector accumulation: detector sums, barrel sub-events and sentinels.
"""
import numpy as np
import h5py
import pytest

from parameters import *
import analyser as an

ALL = frozenset(SubDet)
ONES_FT0 = np.ones(N_CH_FT0)
ONES_FV0 = np.ones(N_CH_FV0)


def _ft0(ch_a, amp_a, ch_c, amp_c):
    return {'channelA': ch_a, 'amplitudeA': amp_a,
            'channelC': ch_c, 'amplitudeC': amp_c}


def test_normalised_qvector_is_inside_unit_circle():
    rng = np.random.default_rng(7)
    for _ in range(50):
        phi = rng.uniform(0., 2. * np.pi, size=rng.integers(1, 30))
        Q, w = an.sum_qvector(phi, np.full(len(phi), 3.5), 2)
        re, im = an.normalise(Q, w)
        assert np.hypot(re, im) <= 1. + 1e-12


def test_normalise_zero_weight_gives_empty_sentinel():
    assert an.normalise(0j, 0.) == (QVEC_EMPTY, QVEC_EMPTY)
    assert an.normalise(1 + 1j, 1e-9) == (QVEC_EMPTY, QVEC_EMPTY)


def test_two_channel_event_matches_direct_trigonometry(geometry, make_event):
    # A-side channel 5 and C-side raw channel 5 (combined id 101)
    event    = make_event(ft0=_ft0([5], [100.], [5], [50.]))
    channels = an.fit_channels(event, ONES_FT0, ONES_FV0)
    qvec, amp = an.compute_fit_qvectors(channels, 2, geometry, ALL)

    phi_a = geometry.phi_ft0(5)
    phi_c = geometry.phi_ft0(101)

    assert qvec[SubDet.FT0A] == pytest.approx((np.cos(2 * phi_a), np.sin(2 * phi_a)))
    assert qvec[SubDet.FT0C] == pytest.approx((np.cos(2 * phi_c), np.sin(2 * phi_c)))

    re_m = (100. * np.cos(2 * phi_a) + 50. * np.cos(2 * phi_c)) / 150.
    im_m = (100. * np.sin(2 * phi_a) + 50. * np.sin(2 * phi_c)) / 150.
    assert qvec[SubDet.FT0M] == pytest.approx((re_m, im_m))

    assert amp[SubDet.FT0A] == 100.
    assert amp[SubDet.FT0C] == 50.
    assert amp[SubDet.FT0M] == 150.


def test_ft0m_is_accumulated_without_ft0a_and_ft0c(geometry, make_event):
    event    = make_event(ft0=_ft0([5], [100.], [5], [50.]))
    channels = an.fit_channels(event, ONES_FT0, ONES_FV0)
    qvec_all, _ = an.compute_fit_qvectors(channels, 2, geometry, ALL)
    qvec_m, amp = an.compute_fit_qvectors(channels, 2, geometry, {SubDet.FT0M})

    assert qvec_m[SubDet.FT0M] == pytest.approx(qvec_all[SubDet.FT0M])
    assert amp[SubDet.FT0M] == 150.
    assert qvec_m[SubDet.FT0A] == (QVEC_ABSENT, QVEC_ABSENT)
    assert qvec_m[SubDet.FT0C] == (QVEC_ABSENT, QVEC_ABSENT)


def test_gain_constants_divide_the_amplitude(geometry, make_event):
    gains = np.ones(N_CH_FT0)
    gains[5] = 2.
    event    = make_event(ft0=_ft0([5], [100.], [], []))
    channels = an.fit_channels(event, gains, ONES_FV0)
    ch, ampl, ampl_cor = channels['FT0A']

    assert list(ch) == [5]
    assert ampl[0] == 100.
    assert ampl_cor[0] == 50.


def test_missing_detectors_are_absent(geometry, make_event):
    channels  = an.fit_channels(make_event(), ONES_FT0, ONES_FV0)
    qvec, amp = an.compute_fit_qvectors(channels, 2, geometry, ALL)
    for det in (SubDet.FT0C, SubDet.FT0A, SubDet.FT0M, SubDet.FV0A):
        assert qvec[det] == (QVEC_ABSENT, QVEC_ABSENT)
        assert amp[det] == 0.


def test_enabled_detector_without_signal_is_empty(geometry, make_event):
    event = make_event(ft0=_ft0([3], [80.], [], []),
                       fv0={'channel': [1, 2], 'amplitude': [0., 0.]})
    channels  = an.fit_channels(event, ONES_FT0, ONES_FV0)
    qvec, amp = an.compute_fit_qvectors(channels, 2, geometry, ALL)

    assert qvec[SubDet.FT0C] == (QVEC_EMPTY, QVEC_EMPTY)
    assert qvec[SubDet.FV0A] == (QVEC_EMPTY, QVEC_EMPTY)
    assert amp[SubDet.FV0A] == 0.
    assert qvec[SubDet.FT0A] != (QVEC_EMPTY, QVEC_EMPTY)


def test_disabled_fv0_is_absent_even_with_data(geometry, make_event):
    event = make_event(fv0={'channel': [1], 'amplitude': [10.]})
    channels  = an.fit_channels(event, ONES_FT0, ONES_FV0)
    qvec, amp = an.compute_fit_qvectors(channels, 2, geometry, ALL - {SubDet.FV0A})
    assert qvec[SubDet.FV0A] == (QVEC_ABSENT, QVEC_ABSENT)
    assert amp[SubDet.FV0A] == 0.


def test_track_subevents(make_tracks):
    tracks = make_tracks(eta=[0.3, 0.5, -0.4],
                         pt=[1.0, 2.0, 1.5],
                         phi=[0., np.pi / 2., np.pi])
    qvec, amp, labels = an.compute_track_qvectors(tracks, 2, 0.15, 5., ALL)

    # positive eta: mean over the two tracks
    re_pos = (1.0 * np.cos(0.) + 2.0 * np.cos(np.pi)) / 2.
    im_pos = (1.0 * np.sin(0.) + 2.0 * np.sin(np.pi)) / 2.
    assert qvec[SubDet.BPOS] == pytest.approx((re_pos, im_pos), abs=1e-6)
    assert amp[SubDet.BPOS] == 2.
    assert labels[SubDet.BPOS] == [1000, 1001]

    # negative eta: the single track itself
    assert qvec[SubDet.BNEG] == pytest.approx((1.5 * np.cos(2 * np.pi),
                                               1.5 * np.sin(2 * np.pi)), abs=1e-6)
    assert amp[SubDet.BNEG] == 1.
    assert labels[SubDet.BNEG] == [1002]


def test_track_cuts(make_tracks):
    tracks = make_tracks(eta=[0.05, 0.9, 0.4, 0.4, -0.5],
                         pt=[1., 1., 0.1, 6., 1.],
                         phi=[0., 0., 0., 0., 0.])
    tracks['passedDCAz'][4] = False
    qvec, amp, labels = an.compute_track_qvectors(tracks, 2, 0.15, 5., ALL)

    # eta gap, eta acceptance, pt window and quality flag remove everything
    assert qvec[SubDet.BPOS] == (QVEC_EMPTY, QVEC_EMPTY)
    assert qvec[SubDet.BNEG] == (QVEC_EMPTY, QVEC_EMPTY)
    assert amp[SubDet.BPOS] == 0. and amp[SubDet.BNEG] == 0.
    assert labels[SubDet.BPOS] == [] and labels[SubDet.BNEG] == []


def test_disabled_track_subevent_is_absent(make_tracks):
    tracks = make_tracks(eta=[0.3], pt=[1.], phi=[0.])
    qvec, amp, labels = an.compute_track_qvectors(tracks, 2, 0.15, 5., {SubDet.BNEG})
    assert qvec[SubDet.BPOS] == (QVEC_ABSENT, QVEC_ABSENT)
    assert amp[SubDet.BPOS] == 0.
    assert labels[SubDet.BPOS] == []
    assert qvec[SubDet.BNEG] == (QVEC_EMPTY, QVEC_EMPTY)


def test_save_hdf5_writes_ragged_columns(tmp_path):
    tables = {
        'QvectorBPoss': {
            'isCalibrated': [True, False],
            'qvecRe':       [0.1, QVEC_EMPTY],
            'qvecIm':       [0.2, QVEC_EMPTY],
            'sumAmpl':      [2., 0.],
            'nTrk':         [2, 0],
            'labels':       [[1000, 1001], []],
        },
    }
    fname = str(tmp_path / 'out.h5')
    an.save_hdf5(fname, tables, metadata={'harmonics': np.array([2, 3]),
                                          'subdets':   [det.name for det in SubDet]})
    with h5py.File(fname, 'r') as f:
        assert list(f['metadata'].attrs['subdets']) == [det.name for det in SubDet]
        back = {col: f[f'tables/QvectorBPoss/{col}'][:] for col in tables['QvectorBPoss']}

    assert list(back['isCalibrated']) == [True, False]
    assert list(back['labels'][0]) == [1000, 1001]
    assert len(back['labels'][1]) == 0
    assert back['qvecRe'][1] == QVEC_EMPTY
