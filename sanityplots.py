import os

import numpy as np
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
import matplotlib.cm as cm

from parameters import *


###################################################### FIT ###########################################################

def plot_fit_amplitudes(qa, output_dir, detector='FT0'):
    """Raw and gain-equalised amplitude vs channel for one FIT detector."""
    fig, axes = plt.subplots(1, 2, figsize=(12, 5))

    for ax, name in zip(axes, (f'{detector}Amp', f'{detector}AmpCor')):
        counts, (amp_edges, ch_edges) = qa[name]
        ax.pcolormesh(ch_edges, amp_edges, np.log10(counts + 1.),
                      cmap=cm.plasma, shading='flat')
        ax.set_xlabel('Channel ID')
        ax.set_ylabel('Amplitude')
        ax.set_title(name)

    plt.tight_layout()
    out = os.path.join(output_dir, f'{detector}_amplitudes.pdf')
    plt.savefig(out)
    plt.close(fig)
    print(f"Saved {out}")

    # mean equalised amplitude per channel: flat when the gains are right
    counts, (amp_edges, ch_edges) = qa[f'{detector}AmpCor']
    amp_cents = 0.5 * (amp_edges[:-1] + amp_edges[1:])
    n_ch      = counts.sum(axis=0)
    mean_amp  = np.where(n_ch > 0, (counts * amp_cents[:, None]).sum(axis=0) / np.maximum(n_ch, 1), np.nan)

    fig, ax = plt.subplots(figsize=(8, 5))
    ax.plot(0.5 * (ch_edges[:-1] + ch_edges[1:]), mean_amp, 'o', ms=3, color='steelblue')
    ax.set_xlabel('Channel ID')
    ax.set_ylabel(r'$\langle$ equalised amplitude $\rangle$')
    ax.set_title(f'{detector} gain equalisation')
    plt.tight_layout()
    out = os.path.join(output_dir, f'{detector}_gain_check.pdf')
    plt.savefig(out)
    plt.close(fig)
    print(f"Saved {out}")

###################################################### TRACKS ###########################################################

def plot_tracks(qa, output_dir):
    counts, (pt_edges, eta_edges, phi_edges, cent_edges) = qa['ChTracks']
    fig, axes = plt.subplots(1, 3, figsize=(15, 4))

    for ax, axis, edges, label in zip(axes, (0, 1, 2),
                                      (pt_edges, eta_edges, phi_edges),
                                      (r'$p_T$ (GeV)', r'$\eta$', r'$\varphi$')):
        others = tuple(i for i in range(counts.ndim) if i != axis)
        proj   = counts.sum(axis=others)
        ax.stairs(proj, edges, color='steelblue')
        ax.set_xlabel(label)
        ax.set_ylabel('Counts')

    axes[0].set_yscale('log')
    axes[1].set_title('Selected barrel tracks')
    plt.tight_layout()
    out = os.path.join(output_dir, 'tracks.pdf')
    plt.savefig(out)
    plt.close(fig)
    print(f"Saved {out}")

###################################################### Q-VECTORS ###########################################################

def plot_qvectors(tables, output_dir, harmonic=REF_HARMONIC):
    """
    Q-vector components of every sub-population, raw vs fully corrected,
    for the calibrated events of the reference table.
    """
    table = tables['Qvectors']
    ok    = np.asarray(table['isCalibrated'], dtype=bool)
    if ok.sum() == 0:
        print("WARNING: no calibrated events, skipping Q-vector plots.")
        return
    re    = np.asarray(table['qvecRe'], dtype=np.float64)[ok]
    im    = np.asarray(table['qvecIm'], dtype=np.float64)[ok]

    fig, axes = plt.subplots(2, len(SubDet), figsize=(4 * len(SubDet), 7))
    colors = cm.plasma(np.linspace(0.1, 0.9, 2))

    for det in SubDet:
        for row, stage, color in ((0, Stage.RAW, colors[0]), (1, Stage.RESCALED, colors[1])):
            ax = axes[row, det]
            # sentinels (+-999) are not Q-vectors
            col  = det * len(Stage) + stage
            good = np.abs(re[:, col]) < QVEC_EMPTY
            if good.sum() > 0:
                ax.hist2d(re[good, col], im[good, col], bins=50, cmap=cm.plasma)
            else:
                ax.text(0.5, 0.5, 'no data', ha='center', transform=ax.transAxes)
            ax.set_title(f'{det.name} {stage.name.lower()}', fontsize=9)
            ax.set_xlabel(r'Re $Q_{%d}$' % harmonic)
            ax.set_ylabel(r'Im $Q_{%d}$' % harmonic)

    plt.tight_layout()
    out = os.path.join(output_dir, f'qvectors_n{harmonic}.pdf')
    plt.savefig(out)
    plt.close(fig)
    print(f"Saved {out}")
