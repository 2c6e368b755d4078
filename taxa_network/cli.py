import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from . import __version__
from .config import NORMALIZATION_METHODS, TAXONOMY_RANKS
from .taxa_network import run_classification_analysis, run_taxa_network_analysis
from .utils import create_config_from_args, load_config

logger = logging.getLogger(__name__)


def validate_file_path(file_path: str, file_type: str) -> Path:
    """Validate if file exists and has correct extension."""
    path = Path(file_path)
    if not path.is_file():
        logger.error(f"{file_type} file does not exist: {file_path}")
        sys.exit(1)

    valid_extensions = {
        'table': ('.csv', '.tsv', '.txt'),
        'taxonomy': ('.csv', '.tsv', '.txt'),
        'meta': ('.csv', '.tsv', '.txt'),
        'config': ('.yml', '.yaml', '.json'),
    }

    if file_type in valid_extensions and path.suffix.lower() not in valid_extensions[file_type]:
        logger.error(f"Invalid {file_type} file format: {file_path}. Expected extensions: {valid_extensions[file_type]}")
        sys.exit(1)

    return path


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    optional_group = parser.add_argument_group('Optional Parameters')
    optional_group.add_argument(
        "--taxonomy", type=str, default=None,
        help="Feature taxonomy file (feature ID plus a 'Taxon' lineage or rank columns)."
    )
    optional_group.add_argument(
        "--output-dir", type=str, default=None,
        help="Directory to save results and intermediate files."
    )
    optional_group.add_argument(
        "--output-format", type=str, default=None,
        help="Comma-separated report formats (text, json)."
    )
    optional_group.add_argument(
        "--no-plots", action="store_true",
        help="Do not draw figures."
    )

    filter_group = parser.add_argument_group('Filtering')
    filter_group.add_argument(
        "--prevalence", type=float, default=None,
        help="Minimum percentage of samples in which a feature must be present."
    )
    filter_group.add_argument(
        "--normalization", type=str, choices=NORMALIZATION_METHODS, default=None,
        help="Per-sample normalization applied after filtering."
    )

    config_group = parser.add_argument_group('Configuration')
    config_group.add_argument(
        "--config", type=str, default=None,
        help="Optional YAML or JSON config file; command line options override it."
    )
    config_group.add_argument(
        "--seed", type=int, default=None,
        help="Random seed for permutations and models."
    )
    config_group.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable debug logging."
    )


def setup_argument_parser() -> argparse.ArgumentParser:
    """Set up the argument parser with one subcommand per workflow."""
    parser = argparse.ArgumentParser(
        prog="taxa_network",
        description=(
            "TaxaNetwork: microbial co-occurrence networks and Random Forest models.\n"
            "Builds permutation-validated association networks (Spearman, Pearson, "
            "Bray-Curtis, symmetric KL divergence) and tests taxonomic representation."
        ),
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        epilog="Example: taxa_network network --table otus.tsv --taxonomy taxonomy.tsv --output-dir results/"
    )
    parser.add_argument(
        "--version", action="version", version=f"TaxaNetwork {__version__}",
        help="Show program's version number and exit."
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    network = subparsers.add_parser(
        "network", help="Build a co-occurrence network.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    input_group = network.add_argument_group('Required Input Files')
    input_group.add_argument(
        "--table", required=True, type=str,
        help="Abundance table, features as rows and samples as columns (CSV/TSV)."
    )
    network_group = network.add_argument_group('Network')
    network_group.add_argument(
        "--methods", type=str, default=None,
        help="Comma-separated association methods (spearman, pearson, bray, kld)."
    )
    network_group.add_argument(
        "--permutations", type=int, default=None,
        help="Number of permutations per taxon pair."
    )
    network_group.add_argument(
        "--bootstrap", action="store_true",
        help="Compare a permutation null against bootstrap resamples instead of the observed value."
    )
    network_group.add_argument(
        "--fdr-threshold", type=float, default=None,
        help="Maximum corrected p-value of an edge."
    )
    network_group.add_argument(
        "--rank", type=str, choices=TAXONOMY_RANKS, default=None,
        help="Taxonomic rank for representation tests and plot colours."
    )
    _add_common_arguments(network)

    classify = subparsers.add_parser(
        "classify", help="Random Forest model of a metadata column.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    input_group = classify.add_argument_group('Required Input Files')
    input_group.add_argument(
        "--table", required=True, type=str,
        help="Abundance table, features as rows and samples as columns (CSV/TSV)."
    )
    input_group.add_argument(
        "--meta", required=True, type=str,
        help="Sample metadata file (CSV/TSV, sample IDs in the first column)."
    )
    input_group.add_argument(
        "--label", required=True, type=str,
        help="Metadata column to predict."
    )
    model_group = classify.add_argument_group('Model')
    model_group.add_argument(
        "--n-estimators", type=int, default=None,
        help="Number of trees."
    )
    model_group.add_argument(
        "--permutations", type=int, default=None,
        help="Label permutations for the model significance test (0 disables it)."
    )
    _add_common_arguments(classify)

    return parser


def main(argv: Optional[List[str]] = None):
    """Main function to orchestrate the TaxaNetwork pipelines."""
    parser = setup_argument_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler(sys.stdout)]
    )

    try:
        table_path = validate_file_path(args.table, 'table')
        taxonomy_path = validate_file_path(args.taxonomy, 'taxonomy') if args.taxonomy else None
        config_path = validate_file_path(args.config, 'config') if args.config else None

        config = load_config(str(config_path) if config_path else None)
        if args.command == 'classify' and args.permutations is not None:
            # label permutations of the model, not pair permutations
            config.n_model_permutations = args.permutations
            args.permutations = None
        config = create_config_from_args(args, config)

        logger.info(f"Starting TaxaNetwork {args.command} pipeline")
        logger.info(f"Abundance table: {table_path}")
        if taxonomy_path:
            logger.info(f"Taxonomy: {taxonomy_path}")
        if args.output_dir:
            logger.info(f"Output directory: {args.output_dir}")

        if args.command == 'network':
            run_taxa_network_analysis(
                table_path=str(table_path),
                taxonomy_path=str(taxonomy_path) if taxonomy_path else None,
                output_dir=args.output_dir,
                config=config
            )
        else:
            meta_path = validate_file_path(args.meta, 'meta')
            logger.info(f"Metadata: {meta_path}")
            logger.info(f"Label column: {args.label}")
            run_classification_analysis(
                table_path=str(table_path),
                metadata_path=str(meta_path),
                label_column=args.label,
                taxonomy_path=str(taxonomy_path) if taxonomy_path else None,
                output_dir=args.output_dir,
                config=config
            )

        logger.info("TaxaNetwork pipeline completed successfully")

    except KeyboardInterrupt:
        logger.error("Pipeline interrupted by user")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Pipeline failed: {str(e)}")
        sys.exit(1)


if __name__ == "__main__":
    main()
