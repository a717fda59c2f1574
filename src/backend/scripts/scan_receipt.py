#!/usr/bin/env python3
"""
Scan Receipt - run the offline pipeline on local image files

Several paths are treated as overlapping photos of one receipt, ordered
top to bottom.

Usage:
    python3 scripts/scan_receipt.py receipt.jpg
    python3 scripts/scan_receipt.py top.jpg middle.jpg bottom.jpg
    python3 scripts/scan_receipt.py receipt.jpg --engine paddleocr --scripts latin traditional_chinese
"""

import sys
import os
import json
import argparse
from dataclasses import asdict
from decimal import Decimal
from pathlib import Path

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from offline_receipt.errors import ReceiptOCRError
from offline_receipt.services.offline import LocalReceiptService
from offline_receipt.services.router import EngineMode


def _json_default(value):
    if isinstance(value, Decimal):
        return str(value)
    raise TypeError(f"Not JSON serializable: {type(value).__name__}")


def main():
    parser_args = argparse.ArgumentParser(
        description='Extract transactions from receipt photos without network access'
    )
    parser_args.add_argument(
        'images', nargs='+', type=Path,
        help='Receipt image(s); several images are merged as one receipt'
    )
    parser_args.add_argument(
        '--engine', '-e', choices=[mode.value for mode in EngineMode],
        help='OCR engine mode (defaults to the saved preference)'
    )
    parser_args.add_argument(
        '--scripts', '-s', nargs='+',
        help='Scripts to initialise OCR for (latin, japanese, traditional_chinese)'
    )
    parser_args.add_argument(
        '--raw-text', action='store_true',
        help='Include raw OCR text in the output'
    )
    args = parser_args.parse_args()

    missing = [str(path) for path in args.images if not path.exists()]
    if missing:
        print(f"Error: File not found: {', '.join(missing)}", file=sys.stderr)
        sys.exit(1)

    service = LocalReceiptService()
    if args.engine:
        service.set_engine_mode(args.engine, persist=False)

    try:
        service.initialize(args.scripts)
        images = [path.read_bytes() for path in args.images]
        if len(images) == 1:
            result = service.process_receipt(images[0])
        else:
            result = service.process_multiple_images(images)
    except (ReceiptOCRError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        service.terminate()

    output = asdict(result)
    if not args.raw_text:
        output.pop('raw_text')

    print(json.dumps(output, indent=2, ensure_ascii=False, default=_json_default))


if __name__ == '__main__':
    main()
