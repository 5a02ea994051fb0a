#!/usr/bin/env python3
"""
Scoring morphométrique d'une ou plusieurs images.

Usage:
    python scripts/analyze_image.py slide_01.png slide_02.png --preset lung
    python scripts/analyze_image.py tile.png --config my_config.json --output results.json
    python scripts/analyze_image.py --list_presets
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from tqdm import tqdm

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from morphoscore.config import get_preset, list_presets, load_config
from morphoscore.errors import MorphoscoreError
from morphoscore.pipeline import Pipeline
from morphoscore.utils.image_utils import load_image

logger = logging.getLogger("analyze_image")


def main():
    parser = argparse.ArgumentParser(description="Scoring morphométrique d'images colorées H&E")
    parser.add_argument('images', type=Path, nargs='*',
                        help="Fichiers image à analyser")
    parser.add_argument('--preset', type=str, default='generic',
                        help=f"Preset d'organe ({', '.join(list_presets())})")
    parser.add_argument('--config', type=Path, default=None,
                        help="Fichier JSON de configuration (prioritaire sur --preset)")
    parser.add_argument('--output', type=Path, default=None,
                        help="Fichier JSON de sortie (défaut: stdout)")
    parser.add_argument('--max_side', type=int, default=None,
                        help="Redimensionne les images (plus grand côté)")
    parser.add_argument('--workers', type=int, default=1,
                        help="Nombre de threads")
    parser.add_argument('--list_presets', action='store_true',
                        help="Affiche les presets disponibles et quitte")
    parser.add_argument('--verbose', action='store_true')
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )

    if args.list_presets:
        for name in list_presets():
            print(f"{name:10s} {get_preset(name).description}")
        return 0

    if not args.images:
        parser.error("at least one image is required")

    try:
        config = load_config(args.config) if args.config else get_preset(args.preset)
        pipeline = Pipeline(config, logger=logger)
        images = [load_image(path, max_side=args.max_side) for path in tqdm(args.images, desc="Loading")]
        results = pipeline.analyze_batch(images, max_workers=args.workers)
    except MorphoscoreError as exc:
        logger.error(str(exc))
        return 1

    report = {
        str(path): result.to_dict()
        for path, result in zip(args.images, results)
    }
    text = json.dumps(report, indent=2)
    if args.output:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_text(text, encoding="utf-8")
        logger.info(f"Results saved to {args.output}")
    else:
        print(text)

    for path, result in zip(args.images, results):
        logger.info(f"{path.name}: {result.label} (score={result.final_score:.3f}, "
                    f"confidence={result.confidence:.3f})")
    return 0


if __name__ == '__main__':
    sys.exit(main())
