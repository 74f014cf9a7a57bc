"""
Q-vector table producer.
====================
Per-collision Q-vectors of the forward detectors (FT0-A, FT0-C, FT0-M,
FV0-A) and of the two barrel track sub-events (eta > 0, eta < 0), with the
recentering / twist / rescaling calibration applied.

Pipeline assumed:
-> reconstructed collisions with FIT amplitudes, barrel tracks and the four
   centrality estimators, written as run_<run>_<chunk>.h5 (see parser.py)
-> a calibration store holding alignment, gain equalisation and Q-vector
   correction objects (see ccdb.py)
-> this script

What this script does
---------------------
1. Indexes the input files and streams their collisions in run order.
2. On every run change, reloads alignment offsets, gain constants and the
   calibration tables valid at the run's timestamp.
3. Computes raw Q-vectors for every configured harmonic plus the reference
   harmonic 2, and their four correction stages.
4. Writes the output tables and QA histograms to one HDF5 file, and QA plots
   to <output_dir>/SanityPlots.

Other settings (centrality estimator, pT window, store paths, requested
output tables) are taken from DEFAULT_CONFIG in parameters.py.

Usage
-----
    python extractor.py <input_dir> <ccdb_file> <geometry_file> <output_dir> [harmonics]

Example:
    python extractor.py data/ calib_store.h5 fit_geometry.h5 results/ 2,3,4
"""

import sys
import os

import parser as pa
import analyser as an
import processer as pr
import sanityplots as sanity
from ccdb import CalibrationStore
from geometry import load_geometry
from parameters import make_config


def main():
    """
    Main entry point.

    Command-line arguments (positional):
        1. input_dir      : str — directory with run_<run>_<chunk>.h5 files
        2. ccdb_file      : str — calibration store
        3. geometry_file  : str — FIT channel positions
        4. output_dir     : str — directory to write HDF5 output and plots
        5. harmonics      : str — optional, comma separated, e.g. "2,3"

    Output file will be named:
        <output_dir>/qvectors.h5
    """
    # ── parse command-line arguments ───────────────────────────────────────
    if len(sys.argv) not in (5, 6):
        print("Usage: python extractor.py "
              "<input_dir> <ccdb_file> <geometry_file> <output_dir> [harmonics]")
        sys.exit(1)

    input_dir     = sys.argv[1]
    ccdb_file     = sys.argv[2]
    geometry_file = sys.argv[3]
    output_dir    = sys.argv[4]

    overrides = {'ccdb_url': ccdb_file}
    if len(sys.argv) == 6:
        overrides['harmonics'] = [int(n) for n in sys.argv[5].split(',') if n]
    config = make_config(**overrides)

    sanity_dir = os.path.join(output_dir, 'SanityPlots')
    os.makedirs(sanity_dir, exist_ok=True)
    output_file = os.path.join(output_dir, 'qvectors.h5')

    # ── inputs ─────────────────────────────────────────────────────────────
    parser = pa.Parser(input_dir)
    files  = parser.get_all_h5_paths()
    if len(files) == 0:
        print(f"WARNING: no run_<run>_<chunk>.h5 files found in {input_dir}")
        sys.exit(1)
    print(f"Found {len(files)} input files, runs {parser.get_runs()}")

    store    = CalibrationStore(config['ccdb_url'], not_after=config['ccdb_not_after'])
    print(f"Calibration store objects: {store.keys()}")
    geometry = load_geometry(geometry_file)

    # ── process ────────────────────────────────────────────────────────────
    task   = pr.QVectorsTask(config, store, geometry)
    tables = task.run(pa.read_all_events(files))

    # ── save to HDF5 ───────────────────────────────────────────────────────
    print(f"Writing {output_file} ...")
    qa = task.qa.as_dict()
    an.save_hdf5(output_file, tables, qa=qa, metadata=task.metadata())

    ####  PLOT PLOT PLOT PLOT  ####
    sanity.plot_fit_amplitudes(qa, sanity_dir, 'FT0')
    sanity.plot_fit_amplitudes(qa, sanity_dir, 'FV0')
    sanity.plot_tracks(qa, sanity_dir)
    sanity.plot_qvectors(tables, sanity_dir)
    ####  PLOT PLOT PLOT PLOT  ####

    print(f"Done. Output: {output_file}")


if __name__ == "__main__":
    main()
