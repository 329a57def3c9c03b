import os
os.environ.setdefault("NUMEXPR_MAX_THREADS", "1")

import warnings
warnings.filterwarnings("ignore", category=FutureWarning, module="coffea.*")
warnings.filterwarnings("ignore", category=RuntimeWarning, message="Missing cross-reference", module="coffea.*")
import argparse
import time
import logging
from contextlib import contextmanager
from pathlib import Path

from zcounting.analysis_config import (
    ELECTRON_ID_WORKING_POINTS, MUON_ID_TYPES, MUON_ISO_TYPES,
)
from zcounting.cli_utils import load_analysis_config, load_fileset

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')


@contextmanager
def _local_cluster(*, n_workers, threads_per_worker):
    """Set up a local Dask cluster, yield client, clean up on exit."""
    from dask.distributed import Client, LocalCluster

    cluster = LocalCluster(n_workers=n_workers, threads_per_worker=threads_per_worker)
    client = Client(cluster)
    try:
        yield client
    finally:
        client.close()
        cluster.close()


# ---------------------------------------------------------------------------
# Processing
# ---------------------------------------------------------------------------

def build_processor(args):
    from zcounting.analyzer import ZCounting

    cuts, binning = load_analysis_config(args.cuts, args.binning)
    return ZCounting(
        cuts=cuts,
        binning=binning,
        muon_id=args.muon_id,
        muon_iso=args.muon_iso,
        electron_id=args.electron_id,
    )


def _make_executor(args, client):
    from coffea.processor import DaskExecutor, FuturesExecutor

    if args.executor == "futures":
        return FuturesExecutor(workers=args.max_workers or 1, compression=None)
    return DaskExecutor(client=client, compression=None, retries=3)


def _process_fileset(args, fileset, *, client=None):
    """Preprocess and process a fileset, return the dataset-nested output."""
    from coffea.nanoevents import NanoAODSchema
    from coffea.processor import Runner

    NanoAODSchema.warn_missing_crossrefs = False
    NanoAODSchema.error_missing_event_ids = False

    processor = build_processor(args)
    run = Runner(
        executor=_make_executor(args, client),
        chunksize=args.chunksize,
        maxchunks=args.maxchunks,
        skipbadfiles=True,
        align_clusters=False,
        schema=NanoAODSchema,
    )

    logging.info("***PREPROCESSING***")
    preproc = run.preprocess(fileset, treename="Events")
    logging.info("Preprocessing completed")

    logging.info("***PROCESSING***")
    output = run(preproc, treename="Events", processor_instance=processor)
    logging.info("Processing completed")
    return output


def _report(counters):
    for name, value in counters.items():
        logging.info("%-28s %d", name, value)


def _finish(args, output):
    from zcounting.save_hists import save_histograms, sum_counters

    if args.debug:
        _report(sum_counters(output))
        return
    _report(save_histograms(output, args.output))


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def build_parser():
    parser = argparse.ArgumentParser(description="Fill per-lumi-block Z counting tag-and-probe histograms.")
    parser.add_argument("fileset", type=Path, help="Fileset JSON: {dataset: {files: {path: treename}, metadata: {...}}}.")
    optional = parser.add_argument_group("Optional arguments")
    optional.add_argument("--datasets", nargs="*", default=None, help="Only process these dataset keys of the fileset.")
    optional.add_argument("--cuts", type=Path, default=None, help="JSON file of cut overrides (keys of analysis_config.CUTS).")
    optional.add_argument("--binning", type=Path, default=None, help="JSON file of binning overrides: {axis: [bins, min, max]}.")
    optional.add_argument("--muon-id", type=str, default="Tight", choices=MUON_ID_TYPES, help="Muon ID for tags and probes (default: Tight).")
    optional.add_argument("--muon-iso", type=str, default="None", choices=MUON_ISO_TYPES, help="Muon isolation type (default: None); the cut is muon_iso_cut.")
    optional.add_argument("--electron-id", type=str, default="TIGHT", choices=ELECTRON_ID_WORKING_POINTS, help="Electron ID working point (default: TIGHT).")
    optional.add_argument("--output", type=Path, default=Path("ZCounting.root"), help="Output ROOT file (default: ZCounting.root).")
    optional.add_argument("--debug", action='store_true', help="Debug mode (don't write the output file)")
    optional.add_argument("--executor", type=str, default="dask", choices=["dask", "futures"], help="Executor: local Dask cluster or futures pool (default: dask).")
    optional.add_argument("--max-workers", type=int, default=None, help="Number of workers (default: 3 for dask, 1 for futures).")
    optional.add_argument("--threads-per-worker", type=int, default=None, help="Threads per Dask worker (LocalCluster threads_per_worker).")
    optional.add_argument("--chunksize", type=int, default=250_000, help="Number of events per processing chunk (default: 250000).")
    optional.add_argument("--maxchunks", type=int, default=None, help="Max chunks per dataset file (default: all). Use 1 for quick testing.")
    optional.add_argument("--maxfiles", type=int, default=None, help="Max files per dataset (default: all). Use 1 for quick testing.")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)

    # Fail on bad configuration before any cluster is started.
    build_processor(args)
    fileset = load_fileset(args.fileset, datasets=args.datasets, maxfiles=args.maxfiles)
    n_files = sum(len(ds.get("files", {})) for ds in fileset.values())
    logging.info("Selected %d dataset(s), %d file(s).", len(fileset), n_files)

    t0 = time.monotonic()
    if args.executor == "futures":
        output = _process_fileset(args, fileset)
        _finish(args, output)
    else:
        n_workers = args.max_workers or 3
        with _local_cluster(n_workers=n_workers, threads_per_worker=args.threads_per_worker or 1) as client:
            try:
                output = _process_fileset(args, fileset, client=client)
                _finish(args, output)
            except Exception:
                logging.exception("Local processing failed.")
                raise

    exec_time = time.monotonic() - t0
    logging.info(f"Execution took {exec_time/60:.2f} minutes")


if __name__ == "__main__":
    main()
