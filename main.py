#!/usr/bin/env python3
"""
EDI Structure Viewer Command Line Tool

Parses an X12 EDI file, arranges its segments into the loop hierarchy of a
transaction schema and writes the resulting tree to JSON.

Usage:
    python main.py input.edi                               # Parse input.edi to input.json
    python main.py input.edi output.json                   # Parse to specific output file
    python main.py input.edi output.json 837.5010.X222.A1  # Use specific schema
    python main.py input.edi --tree                        # Also print the loop outline
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

# Try importing from installed package first, fallback to src path
try:
    from cdm import CdmNode, count_segments
    from schema_lookup import get_segment_display_name
    from viewer_service import EdiViewerService, ViewerSettings
except ImportError:
    # Add src to path for imports when not installed
    sys.path.insert(0, str(Path(__file__).parent / "src"))
    from cdm import CdmNode, count_segments
    from schema_lookup import get_segment_display_name
    from viewer_service import EdiViewerService, ViewerSettings

from pydantic import TypeAdapter

logger = logging.getLogger("edi_viewer")

DEFAULT_SCHEMA = "837.5010.X222.A1"


def count_loops(nodes: List[CdmNode]) -> int:
    return sum(1 + count_loops(node.children) for node in nodes if node.type == 'loop')


def print_tree(nodes: List[CdmNode], schema, parent_loop=None, depth: int = 0):
    """Prints an indented outline of loop instances and segments."""
    indent = "  " * depth
    for node in nodes:
        if node.type == 'loop':
            print(f"{indent}[{node.loop_id}] {node.name}")
            print_tree(node.children, schema, node.definition, depth + 1)
        else:
            name = get_segment_display_name(schema, node.segment_id, parent_loop)
            print(f"{indent}{node.segment_id:<4} L{node.line_number:<5} {name}")


def view_edi_file(input_file: str, output_file: str, schema_key: str,
                  settings: ViewerSettings, show_tree: bool = False) -> int:
    """Parse an EDI file, build its structure and save the tree to JSON."""

    print(f"EDI Structure Viewer - Processing {input_file}")
    print("=" * 50)

    try:
        print(f"Loading EDI file: {input_file}")
        with open(input_file, 'r') as f:
            edi_content = f.read()
        print(f"Loaded {len(edi_content)} characters")

        service = EdiViewerService(settings)
        print(f"Loading schema: {schema_key}")
        schema = service.schema_manager.get_schema(schema_key)
        if schema is None:
            available = ", ".join(info.key for info in service.schema_manager.list_schemas()) or "none"
            print(f"Error: Schema not found: {schema_key} (available: {available})")
            return 1
        print(f"Schema loaded: {schema.transactionName}")

        print("\nParsing EDI content...")
        result = service.process(edi_content, schema)
        if result is None or result.error:
            print(f"Error: {result.error if result else 'processing did not run'}")
            return 1

        document = result.parse_result.data
        delimiters = document.delimiters
        top_level_loops = [node for node in result.nodes if node.type == 'loop']
        orphans = [node for node in result.nodes if node.type == 'segment']

        print("\nParsing Results:")
        print(f"  Delimiters: element '{delimiters.element}', segment {delimiters.segment!r}, component '{delimiters.component}'")
        print(f"  Segments: {len(document.segments)}")
        print(f"  Segments placed in tree: {count_segments(result.nodes)}")
        print(f"  Top-level loop instances: {len(top_level_loops)}")
        print(f"  Total loop instances: {count_loops(result.nodes)}")
        print(f"  Top-level segments (envelope and unplaced): {len(orphans)}")
        print(f"  Timing: parse {result.parse_ms:.2f}ms, build {result.build_ms:.2f}ms")

        if show_tree:
            print("\nStructure:")
            print_tree(result.nodes, schema)

        print("\nGenerating JSON output...")
        json_output = TypeAdapter(List[CdmNode]).dump_json(result.nodes, indent=2).decode()

        with open(output_file, 'w') as f:
            f.write(json_output)

        print(f"JSON output saved to: {output_file}")
        print(f"Output size: {len(json_output):,} characters")

        return 0

    except FileNotFoundError as e:
        print(f"Error: File not found: {e}")
        return 1
    except Exception as e:
        logger.exception(f"Error during EDI processing: {e}")
        return 1


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point with command line argument parsing."""

    settings = ViewerSettings.from_env()

    parser = argparse.ArgumentParser(
        description="Arrange X12 EDI files into their schema loop hierarchy",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py claims.edi                                # claims.edi -> claims.json
  python main.py claims.edi output.json                    # Write to specific output
  python main.py claims.edi output.json 835.5010.X221.A1   # Use another schema
  python main.py claims.edi --tree --log-level DEBUG       # Show outline and builder log
        """
    )

    parser.add_argument('input_file', help='Input EDI file')
    parser.add_argument('output_file', nargs='?',
                        help='Output JSON file (default: input_file.json)')
    parser.add_argument('schema_file', nargs='?', default=DEFAULT_SCHEMA,
                        help=f'Schema key or file name (default: {DEFAULT_SCHEMA})')
    parser.add_argument('--schema-dir', default=None,
                        help=f'Directory holding the JSON schemas (default: {settings.schema_dir})')
    parser.add_argument('--log-level', default='WARNING',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='Log level for the parse and build narrative (default: WARNING)')
    parser.add_argument('--tree', action='store_true',
                        help='Print an indented outline of the built structure')

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=args.log_level,
        format="[%(asctime)s] [%(levelname)s] [%(name)s] - %(message)s",
        stream=sys.stderr,
    )

    if args.schema_dir:
        settings = settings.model_copy(update={'schema_dir': args.schema_dir})
    elif not Path(settings.schema_dir).exists():
        # Fall back to the schemas shipped next to this script
        settings = settings.model_copy(update={'schema_dir': str(Path(__file__).parent / "schemas")})

    # Set default output file if not provided
    if not args.output_file:
        input_path = Path(args.input_file)
        args.output_file = str(input_path.with_suffix('.json'))

    if not Path(args.input_file).exists():
        print(f"Error: Input file not found: {args.input_file}")
        return 1

    return view_edi_file(args.input_file, args.output_file, args.schema_file, settings, args.tree)


if __name__ == "__main__":
    sys.exit(main())
