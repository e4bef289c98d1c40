#!/usr/bin/env python3
"""
Command-line interface for panel detection and cropping.
"""

import argparse
import logging
import os
import sys
from typing import List, Optional

from tqdm import tqdm

from . import geometry
from .config import Config, load_config
from .cropper import crop_panel
from .models import ChapterSource
from .panel_detector import PanelDetector
from .utils import get_abs_path, group_pages_by_folder, load_page

logger = logging.getLogger(__name__)


class ComicPanelCLI:
	"""Command-line interface for panel detection."""

	def __init__(self):
		self.parser = self._create_parser()

	def _create_parser(self) -> argparse.ArgumentParser:
		"""Create argument parser."""
		parser = argparse.ArgumentParser(
			prog="comic-panel-narrator",
			description="Detect story panels in comic pages and write each panel as an image",
			formatter_class=argparse.RawDescriptionHelpFormatter,
			epilog="""
Examples:
  comic-panel-narrator page.png
  comic-panel-narrator chapters/ --output panels/
  comic-panel-narrator chapters/ --config config.toml
			"""
		)

		parser.add_argument(
			"input_path",
			help="Page image, or a folder of pages / chapter folders"
		)

		parser.add_argument(
			"--output",
			help="Output folder (defaults to output_folder from the config)"
		)

		parser.add_argument(
			"--config",
			help="Path to TOML configuration file"
		)

		parser.add_argument(
			"--verbose", "-v",
			action="store_true",
			help="Debug logging"
		)

		return parser

	def run(self, args: Optional[List[str]] = None) -> int:
		"""Main CLI entry point."""
		try:
			parsed_args = self.parser.parse_args(args)
			logging.basicConfig(
				level=logging.DEBUG if parsed_args.verbose else logging.INFO,
				format="%(asctime)s %(levelname)s %(name)s: %(message)s",
			)
			config = self._load_config(parsed_args)
			chapters = self._load_chapters(parsed_args.input_path, config)
			written = self.extract(chapters, config)
			logger.info(f"✅ Wrote {written} panels to {config.output_folder}")
			return 0
		except Exception as e:
			print(f"❌ Error: {e}", file=sys.stderr)
			return 1

	def _load_config(self, args: argparse.Namespace) -> Config:
		"""Load configuration from file, then apply command line overrides."""
		config = load_config(args.config) if args.config else load_config()
		if args.output:
			config.output_folder = args.output
		return config

	def _load_chapters(self, input_path: str, config: Config) -> List[ChapterSource]:
		input_path = get_abs_path(input_path)
		if os.path.isfile(input_path):
			page = load_page(input_path)
			return [ChapterSource(name=os.path.splitext(page.file_name)[0], pages=(page,))]
		chapters = group_pages_by_folder(input_path, config)
		if not chapters:
			raise FileNotFoundError(f"No images found under {input_path}")
		return chapters

	def extract(self, chapters: List[ChapterSource], config: Config) -> int:
		"""Detect and crop every page; returns the number of panel images written."""
		detector = PanelDetector(config)
		total = sum(len(c.pages) for c in chapters)
		written = 0

		with tqdm(total=total, desc="Pages", unit="page") as progress:
			for chapter in chapters:
				for page in chapter.pages:
					folder = os.path.join(config.output_folder, chapter.name, os.path.splitext(page.file_name)[0])
					os.makedirs(folder, exist_ok=True)

					for n, detected in enumerate(detector.detect_image_bytes(page.image_bytes), 1):
						image = crop_panel(page.image_bytes, page.width, page.height, detected.rect)
						if image is None:
							logger.warning(f"⚠️ Skipping empty panel #{n} of {page.file_name}")
							continue
						box = geometry.to_pixels(detected.rect, page.width, page.height)
						with open(os.path.join(folder, f"panel_{n}_{box}.png"), "wb") as f:
							f.write(image)
						written += 1
					progress.update(1)

		return written


def main():
	"""Main entry point for CLI."""
	cli = ComicPanelCLI()
	sys.exit(cli.run())


if __name__ == "__main__":
	main()
