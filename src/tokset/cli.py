"""Command line interface: ``optimize``, ``process``, ``evaluate`` and ``count-chars``."""

import argparse
import logging
import sys

from . import __version__
from .config import MAX_TOKENS, TrainingConfig
from .errors import ConfigurationError, TokSetError
from .fallback import list_schemes
from .pipeline import count_chars, evaluate, optimize, process
from .policy import list_policies
from .processing import list_processings
from .tokenset import TokenSet

log = logging.getLogger("tokset")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tokset", description="Build compact token sets with byte fallback."
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="log every merge and debug detail"
    )
    sub = parser.add_subparsers(dest="command", required=True)

    opt = sub.add_parser("optimize", help="train and optimize a token set")
    opt.add_argument("-d", "--data", required=True, help="training data file")
    opt.add_argument("-t", "--tokens-dir", required=True, help="output directory")
    opt.add_argument(
        "--type", dest="scheme", default=None, choices=list_schemes(),
        help="byte fallback scheme (taken from --input-tokens when resuming)",
    )
    opt.add_argument(
        "-p", "--processing", default=None, choices=list_processings(),
        help="processing applied before tokenization (default: raw)",
    )
    opt.add_argument(
        "-n", "--ntokens", type=int, required=True,
        help=f"target number of tokens (2..{MAX_TOKENS})",
    )
    opt.add_argument(
        "-i", "--input-tokens", default=None,
        help="token set .model file to continue training from",
    )
    opt.add_argument(
        "--split-paragraphs", action="store_true", default=None,
        help="never let a token continue past a blank line",
    )
    opt.add_argument(
        "--max-iterations", type=int, default=None,
        help="bound on attempted token replacements",
    )
    opt.add_argument(
        "--policy", default="strict", choices=list_policies(),
        help="acceptance rule for token replacements",
    )
    opt.add_argument(
        "--min-gain", type=int, default=1,
        help="tokens a replacement must save under the min-gain policy",
    )
    opt.add_argument(
        "--no-optimize", action="store_true", help="stop after greedy training"
    )
    opt.add_argument(
        "--workers", type=int, default=None, help="threads for the initial pair count"
    )

    proc = sub.add_parser("process", help="write the capswords transform of a file")
    proc.add_argument("-d", "--data", required=True, help="raw input file")
    proc.add_argument("-o", "--output", required=True, help="processed output file")

    ev = sub.add_parser("evaluate", help="measure a saved token set on a file")
    ev.add_argument("-d", "--data", required=True, help="data file")
    ev.add_argument("-i", "--input-tokens", required=True, help="token set .model file")
    ev.add_argument(
        "-t", "--tokens-dir", default=None,
        help="also write <name>.json statistics into this directory",
    )

    cc = sub.add_parser("count-chars", help="count the UTF-8 characters of a file")
    cc.add_argument("-d", "--data", required=True, help="data file")

    return parser


def _training_config(args: argparse.Namespace) -> TrainingConfig:
    """Resolve optimize options, filling gaps from the model being resumed."""
    scheme, processing = args.scheme, args.processing
    split_paragraphs = args.split_paragraphs
    if args.input_tokens is not None:
        base = TokenSet.load(args.input_tokens)
        scheme = scheme or base.scheme_name
        processing = processing or base.processing.value
        if split_paragraphs is None:
            split_paragraphs = base.split_paragraphs
    if scheme is None:
        raise ConfigurationError("--type is required unless --input-tokens is given")
    return TrainingConfig(
        n_tokens=args.ntokens,
        scheme=scheme,
        processing=processing or "raw",
        optimize=not args.no_optimize,
        max_iterations=args.max_iterations,
        policy=args.policy,
        min_gain=args.min_gain,
        num_workers=args.workers,
        split_paragraphs=bool(split_paragraphs),
    )


def main(argv: list[str] | None = None) -> int:
    """Run the command line and return the process exit status."""
    args = _build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )

    try:
        match args.command:
            case "optimize":
                config = _training_config(args)
                run = optimize(
                    args.data,
                    args.tokens_dir,
                    config,
                    verbose=args.verbose,
                    input_tokens=args.input_tokens,
                )
                log.info(f"wrote {run.model_path}")
            case "process":
                process(args.data, args.output)
            case "evaluate":
                evaluate(args.data, args.input_tokens, args.tokens_dir)
            case "count-chars":
                count_chars(args.data)
    except TokSetError as e:
        log.error(str(e))
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
