from __future__ import annotations

import argparse
import logging
from dataclasses import replace
from pathlib import Path

from panocal.analysis.groups import NoNeighborhoodsError
from panocal.api.calibration_io import load_correction, save_correction
from panocal.api.pipeline import clean_document, diagnose_document, optimize_document, write_report
from panocal.api.pto_io import DocumentError, load_document, save_document
from panocal.config import CalibrationConfig, ConfigValidationError, load_config
from panocal.core.geometry import GeometryError
from panocal.core.logging import setup_logging
from panocal.document.border_lines import generate_border_line_control_points
from panocal.document.transforms import (
    check_position_changes,
    convert_equaled_image_parameters,
    convert_horizontal_lines,
    convert_translation_parameters,
    fix_conversion_errors,
    merge_image_parameters,
    remove_anchor_variables,
    standardize_roll,
)

logger = logging.getLogger("panocal.cli")

TRANSFORMS = {
    "convert-translation-parameters": (convert_translation_parameters, "Move TrX/TrY into d/e and rewrite the optimisation variables."),
    "convert-equaled-image-parameters": (convert_equaled_image_parameters, "Write linked (key=N) image attributes as values."),
    "remove-anchor-variables": (remove_anchor_variables, "Drop optimisation variables of the anchor image."),
    "convert-horizontal-lines": (convert_horizontal_lines, "Retype t1 line control points as t2."),
    "fix-conversion-errors": (fix_conversion_errors, "Re-render t2 line control points."),
}

CHECKED_TRANSFORMS = {
    "check-position-changes": (check_position_changes, "Stop optimising TrX/TrY of images that moved more than 10%% against --check."),
    "merge-image-parameters": (merge_image_parameters, "Insert the control points of --check after the v lines."),
}


def _config(args: argparse.Namespace) -> CalibrationConfig:
    if args.config is not None:
        cfg = load_config(args.config, calibration_mode=True if args.calibration else None)
    elif args.calibration:
        cfg = CalibrationConfig.for_calibration()
    else:
        cfg = CalibrationConfig()
    if getattr(args, "roll_estimator", False):
        cfg = replace(cfg, optimizer=replace(cfg.optimizer, use_roll_estimator=True))
    return cfg


def _add_common(p: argparse.ArgumentParser, *, output: bool = True) -> None:
    p.add_argument("input", type=Path, help="Input .pto project.")
    if output:
        p.add_argument("-o", "--output", type=Path, required=True, help="Output .pto project.")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="panocal")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")
    parser.add_argument("--log-file", type=Path, default=None, help="Also log to this (rotating) file.")
    parser.add_argument("--config", type=Path, default=None, help="JSON configuration file.")
    parser.add_argument(
        "--calibration",
        action="store_true",
        help="Use calibration-mode defaults (smaller windows, minimum counts of 2).",
    )
    sub = parser.add_subparsers(dest="cmd", required=True)

    clean = sub.add_parser("clean", help="Remove outlier control points.")
    _add_common(clean)
    clean.add_argument("--report", type=Path, default=None, help="Write a JSON cleaner report.")

    opt = sub.add_parser("optimize", help="Correct positions (v d/e) or roll (v r).")
    _add_common(opt)
    opt.add_argument("--strategy", choices=["position", "roll"], default=None, help="Override the strategy chosen from the v lines.")
    opt.add_argument("--correction", type=Path, default=None, help="Apply a saved correction instead of computing one.")
    opt.add_argument("--save-correction", type=Path, default=None, help="Save the applied correction as JSON.")
    opt.add_argument("--roll-estimator", action="store_true", help="Try the closed-form roll estimate before searching.")

    diag = sub.add_parser("diagnose", help="Report control point health checks.")
    _add_common(diag, output=False)
    diag.add_argument("--report", type=Path, default=None, help="Write a JSON diagnostic report.")

    roll = sub.add_parser("standardize-roll", help="Give every image the (outlier-free) average roll.")
    _add_common(roll)

    for name, (_, help_text) in TRANSFORMS.items():
        _add_common(sub.add_parser(name, help=help_text))
    for name, (_, help_text) in CHECKED_TRANSFORMS.items():
        checked = sub.add_parser(name, help=help_text)
        _add_common(checked)
        checked.add_argument("--check", type=Path, required=True, help="The .pto project to compare against.")

    border = sub.add_parser("generate-border-line-control-points", help="Join edge line control points across images.")
    _add_common(border)

    args = parser.parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO, args.log_file)

    try:
        return _run(args)
    except (ConfigValidationError, DocumentError, GeometryError, NoNeighborhoodsError) as e:
        logger.error("%s: %s", args.cmd, e)
        raise


def _run(args: argparse.Namespace) -> int:
    if args.cmd == "clean":
        cfg = _config(args)
        document, result = clean_document(load_document(args.input), cfg)
        save_document(document, args.output)
        if args.report:
            write_report(
                args.report,
                {"cleaner": result.to_dict(), "warnings": list(result.warnings), "discarded": [cp.to_line() for cp in result.discarded]},
            )
            print(f"Wrote {args.report}")
        print(f"Wrote {args.output}")
        return 0

    if args.cmd == "optimize":
        cfg = _config(args)
        correction = load_correction(args.correction) if args.correction else None
        document, applied = optimize_document(load_document(args.input), cfg, correction, args.strategy)
        save_document(document, args.output)
        if args.save_correction:
            save_correction(args.save_correction, applied)
            print(f"Wrote {args.save_correction}")
        print(f"Wrote {args.output}")
        return 0

    if args.cmd == "diagnose":
        report, summary = diagnose_document(load_document(args.input), _config(args))
        for message in report.warnings:
            print(f"WARNING {message}")
        for tag in report.recommendations:
            print(f"RECOMMEND {tag}")
        if args.report:
            write_report(args.report, summary)
            print(f"Wrote {args.report}")
        return 0

    if args.cmd == "standardize-roll":
        document, value = standardize_roll(load_document(args.input))
        save_document(document, args.output)
        print(f"Wrote {args.output} (roll {value})")
        return 0

    if args.cmd in TRANSFORMS:
        transform, _ = TRANSFORMS[args.cmd]
        save_document(transform(load_document(args.input)), args.output)
        print(f"Wrote {args.output}")
        return 0

    if args.cmd in CHECKED_TRANSFORMS:
        transform, _ = CHECKED_TRANSFORMS[args.cmd]
        save_document(transform(load_document(args.input), load_document(args.check)), args.output)
        print(f"Wrote {args.output}")
        return 0

    if args.cmd == "generate-border-line-control-points":
        document, generated = generate_border_line_control_points(load_document(args.input))
        save_document(document, args.output)
        print(f"Wrote {args.output} ({len(generated)} generated control points)")
        return 0

    raise AssertionError(f"Unhandled cmd: {args.cmd}")


if __name__ == "__main__":
    raise SystemExit(main())
