"""
Read ICC - Print the embedded colour profile of local images as JSON

    python -m webp_pipeline.scripts.read_icc photo.jpg graphic.png
"""

from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Any, Dict, List

from api.services.errors import MetadataReadError
from api.services.metadata import read_color_profile


def read_profiles(paths: List[Path], include_base64: bool = False) -> Dict[str, Any]:
    records: Dict[str, Any] = {}
    for p in paths:
        try:
            profile = read_color_profile(p)
        except MetadataReadError as e:
            records[p.name] = {"error": e.message}
            continue
        payload = profile.to_payload()
        if payload:
            payload["iccProfileSize"] = len(profile.raw_bytes)
            if not include_base64:
                payload.pop("iccProfileBase64")
        records[p.name] = payload
    return records


def main():
    parser = argparse.ArgumentParser(description="Print embedded ICC profile information")
    parser.add_argument("images", nargs="+", help="Image files to inspect")
    parser.add_argument("--base64", action="store_true", help="Include the base64-encoded profile bytes")
    args = parser.parse_args()

    records = read_profiles([Path(p) for p in args.images], include_base64=bool(args.base64))
    print(json.dumps(records, indent=2))


if __name__ == "__main__":
    main()
