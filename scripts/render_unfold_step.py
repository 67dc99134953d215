#!/usr/bin/env python3
"""
Render unfold debug steps to PNG and print ray/offset diagnostics.

Usage:
    python scripts/render_unfold_step.py --dump unfold_debug.json
    python scripts/render_unfold_step.py --dump unfold_debug.json --step 3 --output renders/
    python scripts/render_unfold_step.py --dump unfold_debug.json --diagnostics-only
"""
import sys
import argparse
import logging
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from unfold_diagnostics import build_diagnostics_report, report_to_text
from unfold_payload import load_unfold_debug
from unfold_visualization import build_visualization, render_visualization


def main():
    parser = argparse.ArgumentParser(
        description="Render flat-pattern unfold debug steps and diagnostics.",
    )
    parser.add_argument("--dump", required=True, help="Unfold debug dump (JSON)")
    parser.add_argument(
        "--step", type=int, default=None,
        help="Render only this step index (default: all steps)",
    )
    parser.add_argument(
        "--output", default=None,
        help="Output directory (default: <dump_dir>/<dump_stem>_steps/)",
    )
    parser.add_argument("--dpi", type=int, default=150, help="PNG resolution (default: 150)")
    parser.add_argument(
        "--diagnostics-only", action="store_true",
        help="Print the diagnostics report without rendering",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Enable verbose logging",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        dump = load_unfold_debug(args.dump)
    except (FileNotFoundError, ValueError) as exc:
        parser.error(str(exc))

    report = build_diagnostics_report(dump.flat_meshes, dump.offset_info)
    print(report_to_text(report))
    if args.diagnostics_only:
        return 0 if report.overall_status != "fail" else 1

    dump_path = Path(args.dump)
    output_dir = Path(args.output) if args.output else dump_path.parent / f"{dump_path.stem}_steps"

    if args.step is not None:
        if not 0 <= args.step < len(dump.steps):
            parser.error(f"Step {args.step} out of range ({len(dump.steps)} steps)")
        indices = [args.step]
    else:
        indices = list(range(len(dump.steps)))

    if not indices:
        output = build_visualization(None, dump.flat_meshes)
        path = render_visualization(output, str(output_dir / "flat_meshes.png"), dpi=args.dpi)
        print(f"\nNo debug steps; rendered flat meshes to {path}")
        return 0

    print(f"\nRendering {len(indices)} step(s) to {output_dir}")
    for idx in indices:
        step = dump.steps[idx]
        previous = dump.steps[idx - 1] if idx > 0 else None
        output = build_visualization(step, dump.flat_meshes, previous)
        path = render_visualization(
            output, str(output_dir / f"step_{idx:03d}.png"), dpi=args.dpi,
        )
        added = ", ".join(sorted(output.added_labels)) or "-"
        note = f" [{output.message}]" if output.message else ""
        print(f"  {idx:3d} {step.label}: {len(output.centerlines)} centerlines, "
              f"added {added}{note} -> {path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
