#!/usr/bin/env python3
"""Command-line entry point for the fund document review pipeline.

Runs the upload workflow on local files:
- Parses the target (and optional reference) document
- Classifies the target unless a role is given
- Analyzes it and writes the result as JSON
"""

import argparse
import mimetypes
import os
import sys
from pathlib import Path
from typing import Optional

import msgspec
from dotenv import load_dotenv
from loguru import logger

from fundreview.config import PipelineConfig
from fundreview.error_handling import FundReviewError
from fundreview.logging_config import setup_logging
from fundreview.orchestrator import create_pipeline
from tools.text_normalizer import get_document_preview


def _read(path: Path) -> bytes:
    if not path.is_file():
        raise FundReviewError(f"File not found: {path}")
    return path.read_bytes()


def _mime_type(path: Path) -> Optional[str]:
    return mimetypes.guess_type(path.name)[0]


def parse_arguments(argv: Optional[list] = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        description="Private fund document review",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Classify and analyze a side letter
  python -m fundreview.main --file side_letter.pdf

  # Analyze as the LP against the fund's LPA, saving the result
  python -m fundreview.main --file side_letter.docx --reference lpa.pdf --role lp --output result.json

  # Preflight classification only
  python -m fundreview.main --file side_letter.pdf --classify-only
        """
    )

    parser.add_argument("--file", type=str, required=True, help="Target document (PDF, DOCX or TXT)")
    parser.add_argument("--reference", type=str, help="Optional reference document (e.g. the LPA)")
    parser.add_argument(
        "--role",
        choices=["gp", "lp"],
        help="Side to protect; inferred from the document when omitted"
    )
    parser.add_argument(
        "--classify-only",
        action="store_true",
        help="Only run the preflight classification"
    )
    parser.add_argument("--output", type=str, help="Write the JSON result to this file")

    parser.add_argument(
        "--api-key",
        type=str,
        default=os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY"),
        help="Gemini API key (default: GEMINI_API_KEY from environment)"
    )
    parser.add_argument(
        "--model",
        type=str,
        default=None,
        help="Model name (default: GEMINI_MODEL from environment)"
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=os.getenv("LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: INFO)"
    )
    parser.add_argument(
        "--log-dir",
        type=str,
        default=os.getenv("LOG_DIR", "logs"),
        help="Directory for log files (default: logs)"
    )

    return parser.parse_args(argv)


def main(argv: Optional[list] = None) -> int:
    """Main entry point for the application.

    Returns:
        Exit code (0 for success, 1 for error)
    """
    load_dotenv()
    args = parse_arguments(argv)

    setup_logging(log_dir=args.log_dir, level=args.log_level, console=True)

    config = PipelineConfig.from_env()
    if args.api_key:
        config.api_key = args.api_key
    if args.model:
        config.model_name = args.model

    try:
        pipeline = create_pipeline(config=config)
        target_path = Path(args.file)
        target_bytes = _read(target_path)

        if args.classify_only:
            text = pipeline.parser.parse(target_bytes, _mime_type(target_path), target_path.name)
            result = pipeline.classify(
                get_document_preview(text, config.preview_max_chars),
                manual_role=args.role
            )
        else:
            reference_path = Path(args.reference) if args.reference else None
            result = pipeline.review_documents(
                target_bytes,
                target_path.name,
                target_mime_type=_mime_type(target_path),
                reference_bytes=_read(reference_path) if reference_path else None,
                reference_filename=reference_path.name if reference_path else None,
                reference_mime_type=_mime_type(reference_path) if reference_path else None,
                manual_role=args.role
            )
            analysis = result.analysis
            logger.info(
                f"Verdict: {analysis.verdict} "
                f"({len(analysis.critical_issues)} critical, {len(analysis.issues)} other issues)"
            )

        output = msgspec.json.format(msgspec.json.encode(result), indent=2)
        if args.output:
            Path(args.output).write_bytes(output)
            logger.info(f"Result written to {args.output}")
        else:
            sys.stdout.write(output.decode("utf-8") + "\n")
        return 0

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 0

    except FundReviewError as e:
        logger.error(f"Review failed: {e.user_message}: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
