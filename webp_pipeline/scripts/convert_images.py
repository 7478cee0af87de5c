"""
Convert Images - Lossless WebP with the ICC profile kept

Converts every JPEG/PNG/GIF in a folder using the same engine as the API:
    python -m webp_pipeline.scripts.convert_images --input photos --output webp
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import List

from api.services.conversion import convert_to_webp
from api.services.errors import ConversionError


SUPPORTED_IMAGE_EXTS = {".jpg", ".jpeg", ".png", ".gif"}


def list_image_files(folder: Path) -> List[Path]:
    return sorted([p for p in folder.iterdir() if p.is_file() and p.suffix.lower() in SUPPORTED_IMAGE_EXTS])


def convert_folder(input_dir: Path, output_dir: Path, overwrite: bool = False) -> List[Path]:
    input_dir = input_dir.resolve()
    output_dir = output_dir.resolve()
    output_dir.mkdir(parents=True, exist_ok=True)

    image_paths = list_image_files(input_dir)
    if not image_paths:
        raise SystemExit(f"No images found in: {input_dir}")

    saved: List[Path] = []
    for p in image_paths:
        out_path = output_dir / (p.stem + ".webp")
        if out_path.exists() and not overwrite:
            print(f"Skipped (exists): {out_path}")
            continue
        try:
            convert_to_webp(p, out_path)
        except ConversionError:
            out_path.unlink(missing_ok=True)
            print(f"Failed: {p}")
            continue
        saved.append(out_path)
        print(f"Saved: {out_path}")
    return saved


def main():
    parser = argparse.ArgumentParser(description="Convert images to lossless WebP, keeping their ICC profiles")
    parser.add_argument("--input", required=True, help="Folder containing JPEG/PNG/GIF images")
    parser.add_argument("--output", required=True, help="Folder for the .webp files")
    parser.add_argument("--overwrite", action="store_true", help="Replace existing .webp files")
    args = parser.parse_args()

    convert_folder(Path(args.input), Path(args.output), overwrite=bool(args.overwrite))


if __name__ == "__main__":
    main()
