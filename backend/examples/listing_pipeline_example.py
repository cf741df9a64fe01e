#!/usr/bin/env python3
"""
Maisoku Listing Pipeline - Example Usage
========================================

This script runs a batch of real-estate flyers through the listing
pipeline and prints the detected, deduplicated listings.

Usage:
    python examples/listing_pipeline_example.py flyer_a.pdf flyer_b.pdf

Requirements:
    - Optional: LLM_API_KEY (or ANTHROPIC_API_KEY) for rich extraction;
      without it every listing uses pattern extraction
    - Optional: poppler, for --images page rendering
"""

import sys
import json
import argparse
import logging
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from maisoku_app.services.listing_pipeline import (
    SCHEMA,
    DocumentInput,
    ListingPipeline,
    LLMExtractionService,
    LLMVisionClassifier,
)
from maisoku_app.services.listing_pipeline.llm_client import get_llm_client
from maisoku_app.services.object_store import InMemoryObjectStore
from maisoku_app.utils.rate_limiter import get_rate_limiter

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def load_documents(paths):
    """PDFs are read as bytes, anything else as UTF-8 text."""
    documents = []
    for path in map(Path, paths):
        if not path.exists():
            logger.error(f"File not found: {path}")
            continue
        if path.suffix.lower() == '.pdf':
            documents.append(DocumentInput(name=path.name, content=path.read_bytes()))
        else:
            documents.append(DocumentInput(
                name=path.name,
                text=path.read_text(encoding='utf-8'),
                content_type='text/plain'
            ))
    return documents


def build_pipeline(use_llm: bool) -> ListingPipeline:
    extraction_service = None
    classification_service = None
    rate_limiter = get_rate_limiter()

    if use_llm:
        try:
            client = get_llm_client(rate_limiter=rate_limiter)
            extraction_service = LLMExtractionService(client)
            classification_service = LLMVisionClassifier(client)
        except ValueError as e:
            logger.warning(f"{e} Falling back to pattern extraction.")

    return ListingPipeline(
        extraction_service=extraction_service,
        classification_service=classification_service,
        object_store=InMemoryObjectStore(),
        rate_limiter=rate_limiter
    )


def process_files(paths, output_path: str = None, use_llm: bool = True, images: bool = False):
    """
    Process flyers through the listing pipeline.

    Args:
        paths: Paths of PDF or text files
        output_path: Optional path to save JSON output
        use_llm: Whether to call the extraction service
        images: Whether to render and classify pages
    """
    documents = load_documents(paths)
    if not documents:
        logger.error("No readable files given")
        return None

    pipeline = build_pipeline(use_llm)
    result = pipeline.process_batch(documents, classify_images=images)
    stats = result.get_statistics()

    print("\n" + "=" * 60)
    print("MAISOKU LISTING PIPELINE RESULTS")
    print("=" * 60)
    print(f"\nSession ID: {result.session_id}")
    print(f"Files: {stats['file_count']} ({stats['failed_file_count']} failed)")
    print(f"Candidates: {stats['candidate_count']}")
    print(f"Listings: {stats['listing_count']} ({stats['duplicates_merged']} duplicate sighting(s) merged)")

    print("\n" + "-" * 40)
    print("LISTINGS")
    print("-" * 40)

    for listing in result.listings:
        name = listing.listing['property_name'].value or "(unnamed)"
        rent = listing.listing['rent'].value
        method = " [fallback]" if listing.method == 'pattern_fallback' else ""
        print(f"\n{listing.group_id}: {name}{method}")
        print(f"  rent: {rent if rent is not None else '-'}  "
              f"group confidence: {listing.group_confidence:.1f}  "
              f"pages: {listing.page_indexes}")
        for key in SCHEMA.required_keys:
            scored = listing.listing[key]
            if scored.is_found:
                print(f"  {'✓' if scored.confidence >= 0.7 else '?'} {SCHEMA.notion_name(key)}: "
                      f"{scored.value} (conf: {scored.confidence:.2f})")
        for image in listing.images:
            print(f"  [image] page {image.page_index + 1}: {image.type.value} ({image.confidence:.2f})")

    print("\n" + "-" * 40)
    print("STATISTICS")
    print("-" * 40)
    print(f"Average Field Confidence: {stats['average_confidence']:.2%}")
    print(f"Fallback Extractions: {stats['fallback_count']}")
    if stats['image_type_distribution']:
        print("\nImage Type Distribution:")
        for image_type, count in sorted(stats['image_type_distribution'].items(), key=lambda x: -x[1]):
            print(f"  {image_type}: {count}")

    if output_path:
        output_data = result.to_dict()
        output_data['statistics'] = stats
        with open(output_path, 'w', encoding='utf-8') as f:
            json.dump(output_data, f, indent=2, ensure_ascii=False)
        logger.info(f"Output saved to: {output_path}")

    return result


def show_schema():
    """Print the listing field registry."""
    print("\n" + "=" * 60)
    print(f"LISTING SCHEMA (version {SCHEMA.version})")
    print("=" * 60)
    for spec in SCHEMA.fields:
        marker = "*" if spec.required else " "
        options = f" [{' / '.join(spec.options)}]" if spec.options else ""
        print(f"{marker} {spec.key:24} {spec.notion_name:14} {spec.kind.value}{options}")
    print("\n* = required")


def main():
    parser = argparse.ArgumentParser(
        description='Maisoku Listing Pipeline',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Process flyers and print results
    python listing_pipeline_example.py a.pdf b.pdf

    # Pattern extraction only, save JSON
    python listing_pipeline_example.py a.pdf --no-llm -o results.json

    # Also render and classify page images
    python listing_pipeline_example.py a.pdf --images

    # Show the field registry
    python listing_pipeline_example.py --schema
        """
    )

    parser.add_argument('paths', nargs='*', help='PDF or text files to process')
    parser.add_argument('-o', '--output', help='Path to save JSON output')
    parser.add_argument('--no-llm', action='store_true', help='Skip the extraction service')
    parser.add_argument('--images', action='store_true', help='Render and classify page images')
    parser.add_argument('--schema', action='store_true', help='Show the field registry and exit')

    args = parser.parse_args()

    if args.schema:
        show_schema()
        return

    if not args.paths:
        parser.print_help()
        print("\nError: Please provide at least one file or use --schema")
        sys.exit(1)

    process_files(args.paths, args.output, use_llm=not args.no_llm, images=args.images)


if __name__ == '__main__':
    main()
