"""Command line interface for spmerge."""
import argparse
import logging
import sys
from pathlib import Path

from spmerge.pipeline import OUTPUT_FORMATS, ClusteringPipeline
from spmerge.types import BackprojectRange, MergeConfig, MergeStrategy, SegmentationError


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser."""
    parser = argparse.ArgumentParser(
        prog='spmerge',
        description='Segment an image into superpixels and merge them into regions'
    )

    parser.add_argument(
        'input',
        type=str,
        help='Input image path'
    )

    parser.add_argument(
        '-o', '--output',
        type=str,
        help='Output image path (default: input_tags.png)'
    )

    parser.add_argument(
        '--output-format',
        type=str,
        choices=list(OUTPUT_FORMATS),
        default='tags',
        help='tags (BGR tag image), gray (8 bit size ranked), color (random colors) (default: tags)'
    )

    parser.add_argument(
        '--strategies',
        type=str,
        default=','.join(s.value for s in MergeConfig().strategies),
        help='Comma-separated merge strategies in run order (default: %(default)s). '
             f'Available: {", ".join(s.value for s in MergeStrategy)}'
    )

    parser.add_argument(
        '--initial',
        type=str,
        choices=['srm', 'blocks'],
        default='srm',
        help='Initial region proposal (default: srm)'
    )

    parser.add_argument(
        '--q',
        type=float,
        default=128.0,
        help='Scale of the initial region proposal, larger gives bigger regions (default: 128)'
    )

    parser.add_argument(
        '--block-size',
        type=int,
        default=4,
        help='Block edge length for block tagging and votes (default: 4)'
    )

    parser.add_argument(
        '--bins',
        type=int,
        default=16,
        help='Histogram bins per channel for breadth first merge (default: 16)'
    )

    parser.add_argument(
        '--backproject-range',
        type=str,
        choices=[r.name for r in BackprojectRange],
        default=BackprojectRange.HIGH_50.name,
        help='Threshold preset for backproject strategies (default: HIGH_50)'
    )

    parser.add_argument(
        '--clusters',
        type=int,
        default=32,
        help='Cluster count used when estimation fails (default: 32)'
    )

    parser.add_argument(
        '--seed',
        type=int,
        default=42,
        help='Random seed for color reduction and colortables (default: 42)'
    )

    parser.add_argument(
        '--save-stages',
        type=str,
        default=None,
        help='Directory to save pipeline stage debug images'
    )

    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Enable debug logging'
    )

    return parser


def parse_strategies(value: str):
    """Parse a comma-separated strategy list into MergeStrategy values."""
    strategies = []
    for name in value.split(','):
        name = name.strip()
        if not name:
            continue
        strategies.append(MergeStrategy(name))
    return strategies


def main(args=None):
    """Main entry point."""
    parser = create_parser()
    parsed_args = parser.parse_args(args)

    logging.basicConfig(
        level=logging.DEBUG if parsed_args.verbose else logging.INFO,
        format='%(levelname)s %(name)s: %(message)s'
    )

    # Resolve input path
    input_path = Path(parsed_args.input)
    if not input_path.exists():
        print(f"Error: Input file not found: {input_path}", file=sys.stderr)
        return 1

    # Determine output path
    if parsed_args.output:
        output_path = Path(parsed_args.output)
    else:
        output_path = input_path.with_name(f"{input_path.stem}_{parsed_args.output_format}.png")

    try:
        strategies = parse_strategies(parsed_args.strategies)
    except ValueError:
        print(f"Error: Invalid strategies: {parsed_args.strategies}", file=sys.stderr)
        return 1

    config = MergeConfig(
        superpixel_dim=parsed_args.block_size,
        initial_segmentation=parsed_args.initial,
        srm_q=parsed_args.q,
        num_bins=parsed_args.bins,
        backproject_range=BackprojectRange[parsed_args.backproject_range],
        strategies=strategies,
        default_cluster_count=parsed_args.clusters,
        random_seed=parsed_args.seed,
    )

    if parsed_args.save_stages:
        config.emit_intermediate_artifacts = True
        config.debug_dir = Path(parsed_args.save_stages)
        print(f"Debug stages will be saved to: {config.debug_dir}")

    try:
        pipeline = ClusteringPipeline(config)
        sp_image = pipeline.process(input_path, output_path, parsed_args.output_format)
        print(f"Done: {len(sp_image.superpixels)} regions")
        return 0

    except (SegmentationError, ValueError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
