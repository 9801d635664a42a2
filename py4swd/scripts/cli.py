"""
scripts/cli.py

Command-line driver for Love-wave dispersion inversion.

Loads the observations and the reference model, runs the alternating
gradient / quasi-Newton inversion and writes

    <output>.initial-model       starting model (after order promotion)
    <output>.test-initial-model  reference model
    <output>.initial-pred        predictions of the starting model
    <output>.model               final model
    <output>.pred                final predictions
    <output>.history             per-trial convergence history
    <output>.pdf                 summary plot (with --plot)

Relative input paths are looked up in $PY4SWD_DATA when they do not exist
as given.
"""

import argparse
import sys

import numpy as np

from py4swd.modules import util
from py4swd.modules.dispersion import DispersionData
from py4swd.modules.invloop import InversionConfig, invert
from py4swd.modules.lovefwd import ForwardConfig, ForwardError, LoveEvaluator
from py4swd.modules.model1d import ReferenceModel
from py4swd.modules.paramvec import ParamType
from py4swd.modules.version import versionstrg


def _positive_float(value):
    v = float(value)
    if v <= 0.0:
        raise argparse.ArgumentTypeError("must be positive")
    return v


def _nonnegative_float(value):
    v = float(value)
    if v < 0.0:
        raise argparse.ArgumentTypeError("must be 0 or greater")
    return v


def _positive_int(value):
    v = int(value)
    if v < 1:
        raise argparse.ArgumentTypeError("must be 1 or greater")
    return v


def build_parser():
    parser = argparse.ArgumentParser(
        prog="py4swd-love",
        description="Regularized least-squares inversion of Love-wave phase dispersion.",
    )

    # -------------------------------
    # files
    # -------------------------------
    parser.add_argument("-i", "--input", required=True, help="Raw dispersion observations (freq [c] sigma)")
    parser.add_argument("-C", "--phase", default=None, help="Phase-velocity curve (freq c)")
    parser.add_argument("-r", "--reference", required=True, help="Reference layered model")
    parser.add_argument("-o", "--output", required=True, help="Output file prefix")

    # -------------------------------
    # data
    # -------------------------------
    parser.add_argument("-f", "--fmin", type=_positive_float, default=1.0 / 40.0, help="Minimum frequency (Hz)")
    parser.add_argument("-F", "--fmax", type=_positive_float, default=1.0 / 2.0, help="Maximum frequency (Hz)")
    parser.add_argument("-t", "--threshold", type=_nonnegative_float, default=0.0, help="Residual dead zone (m/s)")
    parser.add_argument(
        "--frequency-thin", type=_nonnegative_float, default=0.001, help="Minimum spacing of fitted frequencies (Hz)"
    )

    # -------------------------------
    # prior
    # -------------------------------
    parser.add_argument("-R", "--sigma-rho", type=_nonnegative_float, default=0.5e3, help="Density std-dev")
    parser.add_argument("-V", "--sigma-vs", type=_nonnegative_float, default=0.5e3, help="Vs std-dev")
    parser.add_argument("-X", "--sigma-xi", type=_nonnegative_float, default=0.05, help="Xi std-dev")
    parser.add_argument("-S", "--sigma-vpvs", type=_nonnegative_float, default=0.05, help="Vp/Vs std-dev")
    parser.add_argument("-Q", "--posterior", action="store_true", help="Include the prior term in the objective")
    parser.add_argument("--exclude-vpvs", action="store_true", help="Exclude Vp/Vs from the parameter vector")

    # -------------------------------
    # discretization
    # -------------------------------
    parser.add_argument("-p", "--order", type=_positive_int, default=5, help="Promote layers to this order")
    parser.add_argument("-P", "--nsub", type=_positive_int, default=5, help="Sub-layers per layer in the forward model")

    # -------------------------------
    # optimizer
    # -------------------------------
    parser.add_argument("-N", "--nsteps", type=_positive_int, default=5, help="Maximum number of iterations")
    parser.add_argument("-e", "--epsilon", type=_positive_float, default=1.0, help="Initial step size")
    parser.add_argument("--epsilon-min", type=_positive_float, default=1.0e-6, help="Step-size floor")
    parser.add_argument("--tol", type=_nonnegative_float, default=None, help="Relative objective decrease to stop")
    parser.add_argument(
        "-M",
        "--mode",
        choices=("alternate", "gradient", "quasi-newton"),
        default="alternate",
        help="Step strategy schedule",
    )

    # -------------------------------
    # output
    # -------------------------------
    parser.add_argument("--plot", action="store_true", help="Write a PDF summary")
    parser.add_argument("-q", "--quiet", action="store_true", help="Suppress progress output")
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.fmin >= args.fmax:
        parser.error("fmin must be smaller than fmax")

    out = not args.quiet
    version, _ = versionstrg()
    util.print_title(version=version, fname=__file__, out=out)

    prefix = util.ensure_dir(args.output)
    try:
        return _run(args, prefix, out)
    except (OSError, ValueError, ForwardError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1


def _run(args, prefix, out):
    data = DispersionData(args.fmin, args.fmax)
    data.load(util.resolve_path(args.input))
    if args.phase is not None:
        data.load_phase(util.resolve_path(args.phase))

    if out:
        print(f"Desired range: {data.freq[data.ffirst]:10.6f} {data.freq[data.flast]:10.6f}")
    data.initialise_target()
    if out:
        print(f"Actual  range: {data.freq[data.ffirst]:10.6f} {data.freq[data.flast]:10.6f}")

    ref = ReferenceModel().load(util.resolve_path(args.reference), promote=True, order=args.order)
    ref.model.save(prefix + ".initial-model")
    ref.reference.save(prefix + ".test-initial-model")
    initial = ref.model.copy()

    damping = (args.sigma_rho, args.sigma_vs, args.sigma_xi, args.sigma_vpvs)
    exclude = (ParamType.VPVS,) if args.exclude_vpvs else ()

    evaluator = LoveEvaluator(
        data,
        ref.reference,
        damping,
        ForwardConfig(
            nsub=args.nsub,
            posterior=args.posterior,
            threshold=args.threshold,
            frequency_thin=args.frequency_thin,
        ),
        exclude=exclude,
    )
    data.save_predictions(prefix + ".initial-pred", evaluator.frequencies, evaluator.predict(ref.model))

    config = InversionConfig(
        epsilon=args.epsilon,
        epsilon_min=args.epsilon_min,
        max_iter=args.nsteps,
        damping=damping,
        schedule=args.mode,
        tol=args.tol,
        exclude=exclude,
    )
    result = invert(evaluator, ref.model, ref.reference, config, out=out)

    ref.model.save(prefix + ".model")
    ev = result.evaluation
    data.save_predictions(prefix + ".pred", ev.frequencies, ev.predictions)
    np.savetxt(
        prefix + ".history",
        result.history,
        fmt=["%6d", "%16.9e", "%16.9e", "%2d", "%2d"],
        header="iteration objective epsilon strategy accepted",
    )

    if out:
        print(f"state: {result.state.value}  iterations: {result.iterations}  evaluations: {result.nevals}")
        print(f"objective: {result.objective:16.9e}  nrms: {util.calc_nrms(ev.residuals, ev.Cd):10.4f}")

    if args.plot:
        from py4swd.modules import viz

        viz.plot_summary(prefix + ".pdf", initial, ref.model, ev, data, result.history)

    return 0


if __name__ == "__main__":
    sys.exit(main())
