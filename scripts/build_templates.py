#!/usr/bin/env python3
"""
Build the CAPTCHA template DB from labelled samples.

Each sample file is named after its answer, e.g. ``A3K9ZQ.png``. Every cell
of every sample becomes one template, in sorted filename order.
"""

import argparse
import os
import sys

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, os.path.join(PROJECT_ROOT, 'src'))

from vtop_auth.binarizer import load_grid  # noqa: E402
from vtop_auth.config import Settings  # noqa: E402
from vtop_auth.ocr import CellLayout, TemplateLibrary  # noqa: E402

SAMPLE_EXTENSIONS = ('.png', '.jpg', '.jpeg', '.bmp', '.gif')


def build(samples_dir, layout, library=None):
    library = library or TemplateLibrary()
    for name in sorted(os.listdir(samples_dir)):
        stem, ext = os.path.splitext(name)
        if ext.lower() not in SAMPLE_EXTENSIONS:
            continue
        label = stem.split("_")[0].upper()
        if len(label) != layout.count:
            print(f"  ⚠️ Skipping {name}: label {label!r} is not {layout.count} characters")
            continue
        with open(os.path.join(samples_dir, name), 'rb') as f:
            grid = load_grid(f.read())
        added = library.learn(grid, label, layout)
        print(f"  ✅ {name}: {added} templates")
    return library


def main():
    settings = Settings.from_env()
    parser = argparse.ArgumentParser(description="Build CAPTCHA templates from labelled samples")
    parser.add_argument("samples_dir", help="Directory of images named <ANSWER>.png")
    parser.add_argument("-o", "--out", default=str(settings.template_db), help="Template DB path")
    parser.add_argument("--append", action="store_true", help="Add to the existing DB instead of replacing it")
    args = parser.parse_args()

    layout = CellLayout.from_settings(settings)
    library = None
    if args.append and os.path.exists(args.out):
        library = TemplateLibrary.load(args.out)
        print(f"📂 Loaded {len(library)} existing templates")

    print(f"🔨 Building templates from {args.samples_dir}...")
    library = build(args.samples_dir, layout, library)
    if not len(library):
        print("❌ No templates built.")
        sys.exit(1)
    library.save(args.out)
    print(f"💾 Saved {len(library)} templates to {args.out}")


if __name__ == "__main__":
    main()
