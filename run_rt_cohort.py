"""
Estimates the effective reproduction number R(t) of a focal country and
of a cohort of peer countries, then compares the focal trajectory with
the cohort median and 10-90th percentiles.

Stages: data acquisition (OWID) -> cohort selection -> R(t) estimation
for each country -> aggregation -> charts and export.

Usage
-----
python run_rt_cohort.py -i inputs/rt_cohort_params.yaml
python run_rt_cohort.py --use-cache --ncpus 4
"""

import argparse
import datetime
import shutil
import sys
from pathlib import Path

import matplotlib
import matplotlib.pyplot as plt
import pandas as pd
import yaml

from rt_cohort.aggregation import (
    AlignmentError,
    FocalEstimationError,
    aggregate_cohort,
    estimate_all,
    estimate_focal,
    join_by_date,
)
from rt_cohort.cohort import Cohort, CohortResolutionError, resolve_cohort
from rt_cohort.config import AnalysisConfig, fill_section_defaults
from rt_cohort.owid_data import (
    DataFetchError,
    load_owid_data,
    make_incidence_series,
    parse_owid_table,
)
from rt_cohort.reporting import (
    SUCCESS,
    config_rt_cohort_logger,
    get_main_exectime_tracker,
    get_rt_cohort_logger,
)
from rt_cohort.utils import prepare_dict_for_yaml_export
from rt_cohort.visualization import (
    calc_per_capita_rolling,
    plot_case_trends,
    plot_rt_comparison,
)

_CALL_TIME = datetime.datetime.now()

# DEFAULT PARAMETERS
# -------------
DEFAULT_PARAMS = dict(  # Parameters that go in the main Params class
    ncpus=1,
    # OBS: default paths are defined in `parse_args()`
)

SUMMARY_FLOAT_FORMAT = "%.6f"
SUMMARY_DATE_FORMAT = "%Y-%m-%d"

GLOBAL_XTT = get_main_exectime_tracker()
_LOGGER = get_rt_cohort_logger().getChild(__name__)


# -------------------------------------------------------------------
# MAIN FUNCTION
# -------------------------------------------------------------------


def main(argv=None):

    args: CLArgs = parse_args(argv)
    config_rt_cohort_logger(args.loglevel)
    params: Params = import_params(args)
    data = Data()

    try:
        import_data(params, data)
        select_cohort(params, data)
        run_estimations(params, data)
        aggregate_results(params, data)
    except (DataFetchError, CohortResolutionError, FocalEstimationError, AlignmentError) as err:
        _LOGGER.critical(f"The run was aborted: {err}")
        sys.exit(1)

    make_plots(params, data)
    export_all(params, data)

    report_execution_times()
    return data


# -------------------------------------------------------------------
# PROGRAM STRUCTURES
# -------------------------------------------------------------------


class CLArgs:
    """Command line arguments."""
    input_file: Path
    output_dir: Path
    summary_file: Path
    ncpus: int
    use_cache: bool
    export: bool
    loglevel: str


class Params:
    """All parameters. Include hardcoded script params, those read
    from inputs, and overriden by command line flags.
    """
    call_time: datetime.datetime  # Program call time
    config: AnalysisConfig  # Core configuration, built from the sections below

    general:        dict
    data:           dict
    rt_estimation:  dict
    aggregation:    dict
    plotting:       dict

    # Program parameters
    ncpus: int
    export: bool
    use_cache: bool

    # Paths
    input_file: Path
    output_dir: Path
    summary_file: Path


class Data:
    """Input, intermediate and output data."""
    raw_df: pd.DataFrame  # Dataset as fetched
    table: pd.DataFrame  # a.loc[(code, date), "cases"]
    population: pd.Series  # Keyed by country code
    day_last_available: pd.Timestamp

    cohort: Cohort
    incid_dict: dict  # Code -> daily incidence series

    focal_rt_df: pd.DataFrame  # Focal R(t) posterior statistics
    member_rts: dict  # Code -> R(t) median series (successful only)
    failures: dict  # Code -> reason

    rt_wide_df: pd.DataFrame  # a.loc[date, code] = R(t) median
    summary_df: pd.DataFrame  # Exportable summary table
    rolling_df: pd.DataFrame  # Per capita case trends

    figures: dict  # File name -> matplotlib figure


# -------------------------------------------------------------------
# PROGRAM PROCEDURES
# -------------------------------------------------------------------

def parse_args(argv=None):
    """Interprets and stores the command line arguments."""

    parser = argparse.ArgumentParser(
        description="Estimates R(t) for a focal country and a cohort of "
                    "peer countries and compares them.",
    )

    # Optional flags - SET TO NONE to have no effect
    # ----------------------------------------------------
    default = "inputs/rt_cohort_params.yaml"
    parser.add_argument(
        "--input-file", "--params-file", "-i", type=Path,
        help=f"Path to the parameters file. Defaults to {default}",
        default=default,
    )

    default = "outputs/latest/"
    parser.add_argument(
        "--output-dir", "-o", type=Path,
        help="Path to the output directory, where charts and other "
             f"reports are exported. Defaults to \"{default}\"",
        default=default,
    )

    default = "outputs/rt_cohort_summary.csv"
    parser.add_argument(
        "--summary-file", "-s", type=Path,
        help="Path to the summary table file (focal R(t) and cohort "
             f"statistics per date). Defaults to \"{default}\".",
        default=default,
    )

    parser.add_argument(
        "--ncpus", type=int,
        help="Number of independent concurrent processes to run the "
             "R(t) estimations. Use 1 for sequential execution.",
        default=None,
    )

    parser.add_argument(
        "--use-cache", action=argparse.BooleanOptionalAction,
        help="Whether to load the last fetched dataset instead of "
             "downloading it. Overrides `data.use_cache`.",
        default=None,
    )

    parser.add_argument(
        "--export", action=argparse.BooleanOptionalAction,
        help="Whether the outputs (summary table, charts and reports) "
             "should be exported to files.",
        default=True,
    )

    parser.add_argument(
        "--loglevel", type=str, default="INFO",
        help="Project logger level. Set according to python's "
             "`logging` library documentation."
    )

    return parser.parse_args(argv)


def import_params(args: CLArgs):
    """Imports the main YAML parameter file."""

    # --- Read file
    with open(args.input_file, "r") as fp:
        input_dict = yaml.load(fp, yaml.SafeLoader) or dict()

    # --- Populate the Params in priority order
    # Script Default < Input File < Command Line Arguments
    params = Params()
    params.call_time = _CALL_TIME  # Datetime of program call

    params.__dict__.update(DEFAULT_PARAMS)
    params.__dict__.update(input_dict)
    params.__dict__.update(
        {key: val for key, val in args.__dict__.items()
         if val is not None})

    # --- Inner parameters overriding
    fill_section_defaults(params)

    if getattr(params, "use_cache", None) is not None:
        params.data["use_cache"] = params.use_cache

    params.config = AnalysisConfig.from_params(params)

    if not params.export:
        _LOGGER.warning(
            " --- EXPORT SWITCH IS OFF --- No outputs will be produced.")

    return params


@GLOBAL_XTT.track()
def import_data(params: Params, data: Data):
    dp = params.data

    data.raw_df = load_owid_data(
        source_url=dp["source_url"],
        cache_path=dp["cache_path"],
        use_cache=dp["use_cache"],
        fallback_to_cache=dp["fallback_to_cache"],
        request_timeout=dp["request_timeout"],
    )

    data.table, data.population = parse_owid_table(
        data.raw_df,
        code_col=dp["code_col"],
        date_col=dp["date_col"],
        cases_col=dp["cases_col"],
        deaths_col=dp["deaths_col"],
        population_col=dp["population_col"],
    )

    data.day_last_available = data.table.index.get_level_values("date").max()
    _LOGGER.info(
        f"Dataset imported: {data.table.index.get_level_values('code').nunique()}"
        f" countries, last date {data.day_last_available.date()}.")


@GLOBAL_XTT.track()
def select_cohort(params: Params, data: Data):
    config = params.config
    available = data.table.index.get_level_values("code").unique()

    data.cohort = resolve_cohort(config, available_codes=available)

    data.incid_dict = {
        code: make_incidence_series(data.table, code, config.analysis_start_date)
        for code in data.cohort.all_codes
    }

    # Warn about countries that lack the latest days
    for code, sr in data.incid_dict.items():
        if sr.shape[0] and sr.index.max() < data.day_last_available:
            _LOGGER.warning(
                f"Country {code} seems to lack the latest days in the data. "
                f"Overall last day = {data.day_last_available.date().isoformat()}. "
                f"Last day for {code} = {sr.index.max().date().isoformat()}")


@GLOBAL_XTT.track()
def run_estimations(params: Params, data: Data):
    """Estimates R(t) for the focal country (fatal on failure) and the
    cohort members (failures drop the member).
    """
    config = params.config
    focal_code = data.cohort.focal_code

    data.focal_rt_df = estimate_focal(
        data.incid_dict[focal_code], config, focal_code=focal_code)

    member_incid = {
        code: data.incid_dict[code] for code in data.cohort.member_codes}
    data.member_rts, data.failures = estimate_all(
        member_incid, config, ncpus=params.ncpus)

    _LOGGER.log(
        SUCCESS,
        f"R(t) estimated for {focal_code} and {len(data.member_rts)} out of "
        f"{len(member_incid)} cohort members.")


@GLOBAL_XTT.track()
def aggregate_results(params: Params, data: Data):
    focal_code = data.cohort.focal_code
    focal_rt = data.focal_rt_df["median"].rename(focal_code)

    data.summary_df = aggregate_cohort(
        focal_rt, data.member_rts,
        focal_code=focal_code,
        drop_incomplete=params.aggregation["drop_incomplete"],
        strict_alignment=params.aggregation["strict_alignment"],
    )
    data.rt_wide_df = join_by_date({focal_code: focal_rt, **data.member_rts})

    last = data.summary_df.iloc[-1] if data.summary_df.shape[0] else None
    if last is not None:
        _LOGGER.info(
            f"Last date {data.summary_df.index[-1].date()}: "
            f"{focal_code} R(t) = {last['focal_rt']:.3f} | cohort median = "
            f"{last['cohort_median']:.3f} "
            f"[{last['cohort_p10']:.3f}, {last['cohort_p90']:.3f}]")


@GLOBAL_XTT.track()
def make_plots(params: Params, data: Data):
    pp = params.plotting
    config = params.config
    cohort = data.cohort

    if not pp["show"]:
        matplotlib.use("Agg")

    data.figures = dict()

    fig, ax = plot_rt_comparison(
        data.summary_df, cohort.focal_name, focal_band_df=data.focal_rt_df)
    fig.tight_layout()
    data.figures["rt_comparison.png"] = fig

    data.rolling_df = calc_per_capita_rolling(
        data.table, data.population, cohort.all_codes,
        focal_code=cohort.focal_code,
        start_date=config.analysis_start_date,
        window=pp["rolling_window"],
        per_capita=pp["per_capita"],
        min_population=config.min_population_for_chart,
    )
    fig, ax = plot_case_trends(
        data.rolling_df, cohort.focal_code,
        focal_label=cohort.focal_name,
        names=cohort.member_names,
        per_capita=pp["per_capita"],
        window=pp["rolling_window"],
    )
    fig.tight_layout()
    data.figures["case_trends.png"] = fig

    if pp["show"]:
        plt.show()


def report_execution_times():
    print("-------------------\nEXECUTION TIMES")
    for key, val in GLOBAL_XTT.get_dict().items():
        print(key.ljust(25, ".") + f" {val:0.4f}s")


# -------------------------------------------------------------------
# EXPORT
# -------------------------------------------------------------------

def write_summary_table(summary_df: pd.DataFrame, path):
    """Writes the summary table with a fixed format, so identical
    inputs produce identical files.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    summary_df.to_csv(
        path,
        float_format=SUMMARY_FLOAT_FORMAT,
        date_format=SUMMARY_DATE_FORMAT,
        index_label="date",
        lineterminator="\n",
    )


def export_metadata(path, params: Params, data: Data):
    """Creates and exports a yaml file with the run metadata."""
    out_dict = {
        key: val for key, val in params.__dict__.items()
        if key not in ("config",)
    }
    out_dict = prepare_dict_for_yaml_export(out_dict, inplace=False)

    cohort = data.cohort
    out_dict["focal_code"] = cohort.focal_code
    out_dict["member_codes"] = list(cohort.member_codes)
    out_dict["unresolved_names"] = list(cohort.unresolved)
    out_dict["unavailable_codes"] = list(cohort.unavailable)
    out_dict["estimation_failures"] = dict(data.failures)
    out_dict["num_successful_members"] = len(data.member_rts)
    out_dict["last_date_in_data"] = data.day_last_available.date()

    with open(path, "w") as fp:
        fp.write(yaml.dump(out_dict))


@GLOBAL_XTT.track()
def export_all(params: Params, data: Data):
    """"""

    if not params.export:
        _LOGGER.warning(
            "`params.export` is False. No outputs will be exported to "
            "files."
        )
        return

    # Summary table
    write_summary_table(data.summary_df, params.summary_file)
    _LOGGER.info(f"Summary table exported to {params.summary_file}")

    # ------------------------------------------------------------------
    # Other report files
    # ------------------------------------------------------------------
    params.output_dir.mkdir(parents=True, exist_ok=True)

    # Parameters file – Just copy as it is
    shutil.copyfile(
        params.input_file,
        params.output_dir.joinpath("parameters_bkp.yaml")
    )

    export_metadata(params.output_dir.joinpath("metadata.yaml"), params, data)

    data.rt_wide_df.to_csv(
        params.output_dir.joinpath("rt_per_country.csv"),
        float_format=SUMMARY_FLOAT_FORMAT,
        date_format=SUMMARY_DATE_FORMAT,
    )

    for fname, fig in data.figures.items():
        fig.savefig(params.output_dir.joinpath(fname), dpi=150)
        plt.close(fig)

    _LOGGER.log(SUCCESS, f"Outputs exported to {params.output_dir}")


if __name__ == "__main__":
    main()
