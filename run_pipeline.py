import argparse
import os
import sys
import traceback

from logging_setup import setup_logging, close_handlers
from main_pipeline import ToolClusteringPipeline
from cluster_reporting import generate_cluster_report

logger = None


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description='Similarity clustering for a biodiversity tool catalog')

    parser.add_argument('--config', type=str, default='config.yml',
                        help='Path to configuration file')

    parser.add_argument('--input', type=str, default=None,
                        help='Tool catalog CSV, overrides input_file in the config')

    parser.add_argument('--threshold', type=float, default=None,
                        help='Similarity threshold for connections')

    parser.add_argument('--stage', type=str, default='all',
                        choices=['all', 'process', 'dendrogram', 'report'],
                        help='Pipeline stage to run')

    parser.add_argument('--output_dir', type=str, default=None,
                        help='Directory for output files')

    parser.add_argument('--log_dir', type=str, default=None,
                        help='Directory for log files')

    parser.add_argument('--no_cache', action='store_true',
                        help='Recompute results even if a cached result exists')

    return parser.parse_args(argv)


def build_config_overrides(args):
    """Configuration values set from the command line."""
    overrides = {}
    if args.input:
        overrides['input_file'] = args.input
    if args.threshold is not None:
        overrides['similarity_threshold'] = args.threshold
    if args.output_dir:
        overrides['output_dir'] = args.output_dir
    if args.no_cache:
        overrides['enable_cache'] = False
    return overrides


def run(args):
    """
    Run the selected stages.

    Args:
        args: Parsed command line arguments

    Returns:
        The pipeline instance
    """
    if not os.path.exists(args.config):
        logger.error(f"Config file not found: {args.config}")
        raise FileNotFoundError(f"Config file not found: {args.config}")

    overrides = build_config_overrides(args)
    pipeline = ToolClusteringPipeline(args.config, overrides=overrides)
    if overrides:
        logger.info(f"Applied command line overrides: {', '.join(sorted(overrides))}")

    pipeline.load_records()
    pipeline.run()

    if args.stage in ('all', 'dendrogram', 'report'):
        pipeline.build_dendrogram()

    pipeline.save_results()

    if args.stage in ('all', 'report'):
        groups = pipeline.clusterer.extract_groups(pipeline.connection_graph())
        generate_cluster_report(
            pipeline.config,
            entities=pipeline.entities,
            records=pipeline.records,
            distance_matrix=pipeline.distance_matrix,
            dendrogram=pipeline.dendrogram,
            groups=groups,
        )

    return pipeline


def main(argv=None):
    """Main entry point."""
    global logger

    args = parse_args(argv)
    logger = setup_logging(args.log_dir)

    try:
        run(args)
        logger.info("Pipeline execution completed")
        return 0
    except KeyboardInterrupt:
        logger.info("Pipeline execution interrupted by user")
        return 1
    except Exception as e:
        logger.error(f"Error in pipeline execution: {str(e)}")
        logger.error(traceback.format_exc())
        return 1
    finally:
        close_handlers()


if __name__ == "__main__":
    sys.exit(main())
