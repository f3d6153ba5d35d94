"""
Command line entry for the listing finder.

Run a single search and print the workflow output:

    python main.py "2 bedroom condo near a metro" --location "Montreal, QC" --price-max 750000

or start the HTTP server:

    python main.py --serve
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
from typing import Any, Dict, List, Optional

VARIABLE_FLAGS = {
    "location": "location",
    "price_min": "priceMin",
    "price_max": "priceMax",
    "beds": "beds",
    "baths": "baths",
    "type": "type",
    "keywords": "keywords",
}


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Greater Montreal listing finder")
    parser.add_argument("request", nargs="?", help="Free-text description of the listings you want.")
    parser.add_argument("--location", "-l")
    parser.add_argument("--price-min", dest="price_min")
    parser.add_argument("--price-max", dest="price_max")
    parser.add_argument("--beds")
    parser.add_argument("--baths")
    parser.add_argument("--type", help="house, condo, multiplex, land, commercial")
    parser.add_argument("--keywords")
    parser.add_argument("--serve", action="store_true", help="Start the HTTP server instead of running one search.")
    parser.add_argument("--port", type=int, default=int(os.getenv("PORT", "3000")))
    return parser.parse_args(argv)


def build_variables(args: argparse.Namespace) -> Dict[str, Any]:
    return {key: getattr(args, attr) for attr, key in VARIABLE_FLAGS.items() if getattr(args, attr)}


def main(argv: Optional[List[str]] = None) -> None:
    args = _parse_args(argv)
    if args.serve:
        import uvicorn

        uvicorn.run("server.app:app", host="0.0.0.0", port=args.port, reload=False)
        return

    request = (args.request or "").strip()
    if not request:
        request = input("What are you looking for? ").strip()
    if not request:
        print("A request is required.")
        return

    from listing_finder.workflow import run_workflow

    result = asyncio.run(run_workflow(request, build_variables(args)))
    print(json.dumps(result.get("output_parsed", result), ensure_ascii=False, indent=2))


if __name__ == "__main__":
    main()
