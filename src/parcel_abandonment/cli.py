"""
Command-line interface.

Subcommands:
- run      -> fit every parcel, score abandonment, write CSV results
- inspect  -> summarize the input series
- plot     -> plot one parcel's fitted trajectory

Examples:
  python -m parcel_abandonment run --input probabilities.csv --output results/
  python -m parcel_abandonment run --input probabilities.csv --config config.yaml
  python -m parcel_abandonment inspect --input probabilities.csv
  python -m parcel_abandonment plot --input probabilities.csv --parcel 17 --output p17.png
"""

import argparse
import logging
from pathlib import Path
from typing import List, Optional

from .abandonment import DropRule, SustainedDropRule
from .config import RunConfig, load_config, setup_logging
from .data_loader import SeriesStore, describe_store
from .exceptions import ConfigurationError, InvalidObservationError
from .pipeline import process_parcel, run_batch, save_results
from .segmentation import VertexFitter

logger = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# CLI structure
# -----------------------------------------------------------------------------

def _add_input_args(p: argparse.ArgumentParser):
    p.add_argument("--input", type=Path, required=True,
                   help="Long-format CSV (one row per parcel and time step)")
    p.add_argument("--parcel-col", default="parcel_id", help="Parcel id column (default: parcel_id)")
    p.add_argument("--time-col", default="time", help="Timestamp column (default: time)")
    p.add_argument("--value-col", default="probability", help="Probability column (default: probability)")
    p.add_argument("--parse-dates", action="store_true", help="Parse the time column as dates")
    p.add_argument("--config", type=Path, help="YAML run configuration")


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    ap = argparse.ArgumentParser(
        prog="parcel_abandonment",
        description="Parcel-level cropland abandonment from cultivation probability series",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    ap.add_argument("--log-level", help="Override the configured log level")

    sub = ap.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Fit trends and detect abandonment")
    _add_input_args(run)
    run.add_argument("--output", type=Path, default=Path("results"),
                     help="Output directory (default: results)")
    run.add_argument("--sustained", action="store_true",
                     help="Require non-recovery after the drop")
    run.add_argument("--serial", action="store_true", help="Disable parallel processing")

    inspect = sub.add_parser("inspect", help="Summarize input series")
    _add_input_args(inspect)

    plot = sub.add_parser("plot", help="Plot one parcel's fitted trajectory")
    _add_input_args(plot)
    plot.add_argument("--parcel", required=True, help="Parcel id to plot")
    plot.add_argument("--output", type=Path, required=True, help="Output image path")

    return ap


def _load_config(args: argparse.Namespace) -> RunConfig:
    config = load_config(args.config) if args.config else RunConfig().validate()
    setup_logging(args.log_level or config.log_level, config.log_file)
    return config


def _load_store(args: argparse.Namespace) -> SeriesStore:
    return SeriesStore.read_csv(
        args.input,
        parcel_col=args.parcel_col,
        time_col=args.time_col,
        value_col=args.value_col,
        parse_dates=args.parse_dates,
    )


def _rule(config: RunConfig, sustained: bool = False):
    if sustained:
        return SustainedDropRule(config.abandonment.drop_threshold)
    return DropRule(config.abandonment.drop_threshold)


# -----------------------------------------------------------------------------
# Command handlers
# -----------------------------------------------------------------------------

def _handle_run(args: argparse.Namespace, config: RunConfig) -> int:
    store = _load_store(args)
    processing = config.processing
    if args.serial:
        processing = type(processing)(
            parallel=False,
            scheduler=processing.scheduler,
            n_workers=processing.n_workers,
            show_progress=processing.show_progress,
        )

    result = run_batch(store, config.segmentation, _rule(config, args.sustained), processing)
    paths = save_results(result, str(args.output))

    summary = result.summary()
    print(f"Parcels:           {summary['n_total']}")
    print(f"Scored:            {summary['n_parcels']}")
    print(f"Abandoned:         {summary['n_abandoned']} ({summary['abandoned_pct']:.1f}%)")
    print(f"Insufficient data: {summary['n_insufficient']}")
    print(f"Failed:            {summary['n_failed']}")
    for name, path in paths.items():
        print(f"  {name}: {path}")
    return 0


def _handle_inspect(args: argparse.Namespace, config: RunConfig) -> int:
    store = _load_store(args)
    summary = describe_store(store, config.segmentation.min_observations_needed)
    print(summary.to_string(index=False))
    return 0


def _handle_plot(args: argparse.Namespace, config: RunConfig) -> int:
    from .visualization import plot_trajectory

    store = _load_store(args)
    parcel_id = _match_parcel(store, args.parcel)
    if parcel_id is None:
        print(f"Parcel not found: {args.parcel}")
        return 1

    series = store[parcel_id]
    outcome = process_parcel(series, VertexFitter(config.segmentation), _rule(config))
    if outcome.fit is None:
        print(f"Parcel {parcel_id} failed: {outcome.error}")
        return 1
    plot_trajectory(series, outcome.fit, outcome.verdict, output_path=str(args.output))
    return 0


def _match_parcel(store: SeriesStore, raw_id: str):
    """Find a parcel by its id as typed on the command line."""
    for parcel_id in store.parcel_ids:
        if str(parcel_id) == raw_id:
            return parcel_id
    return None


# -----------------------------------------------------------------------------
# Main entrypoint
# -----------------------------------------------------------------------------

def main(argv: Optional[List[str]] = None) -> int:
    """Main entrypoint for the parcel_abandonment CLI."""
    ap = build_parser()
    args = ap.parse_args(argv)

    try:
        config = _load_config(args)
    except ConfigurationError as e:
        print(f"Configuration error: {e}")
        return 2

    handlers = {
        "run": _handle_run,
        "inspect": _handle_inspect,
        "plot": _handle_plot,
    }

    handler = handlers.get(args.command)
    if handler is None:
        raise SystemExit(f"Unknown command: {args.command}")

    try:
        return handler(args, config)
    except InvalidObservationError as e:
        print(f"Input error: {e}")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
