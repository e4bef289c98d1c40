import io
import logging
import mimetypes
import os
import re
import secrets
import string
from glob import glob
from typing import List, Tuple, Union

import numpy as np
from PIL import Image

from .config import Config
from .models import ChapterSource, PageSource

logger = logging.getLogger(__name__)


def generate_id(prefix: str = "", length: int = 10) -> str:
	"""Random id made of ascii letters, optionally prefixed (`panel-AbCdEf...`)."""
	characters = string.ascii_letters
	random_string = ''.join(secrets.choice(characters) for _ in range(length))
	return f"{prefix}-{random_string}" if prefix else random_string


def natural_sort_key(value: str):
	"""Sort key that orders `page2` before `page10`."""
	return [int(part) if part.isdigit() else part.lower() for part in re.split(r'(\d+)', value)]


def decode_image(data: bytes) -> np.ndarray:
	"""Decode encoded image bytes into an RGB uint8 array."""
	with Image.open(io.BytesIO(data)) as img:
		return np.array(img.convert("RGB"))


def image_size(data: bytes) -> Tuple[int, int]:
	"""(width, height) of encoded image bytes without decoding the pixels."""
	with Image.open(io.BytesIO(data)) as img:
		return img.size


def guess_mime_type(file_name: str) -> str:
	mime_type, _ = mimetypes.guess_type(file_name)
	return mime_type or "image/png"


def get_abs_path(relative_path: str) -> str:
	"""Convert relative path to absolute path."""
	return os.path.abspath(relative_path)


def get_image_paths(directories: Union[str, List[str]], config: Config = None) -> List[str]:
	"""
	Get all image paths from given directories, naturally sorted.

	Args:
		directories: Single directory path or list of directory paths

	Returns:
		List of image file paths
	"""
	config = config or Config()
	if isinstance(directories, str):
		directories = [directories]

	all_images = set()
	for directory in directories:
		abs_dir = get_abs_path(directory)
		if not os.path.isdir(abs_dir):
			logger.warning(f"⚠️ Skipping non-directory {abs_dir}")
			continue

		for ext in config.SUPPORTED_EXTENSIONS:
			all_images.update(glob(os.path.join(abs_dir, f'*.{ext}')))

	return sorted(all_images, key=lambda p: natural_sort_key(os.path.basename(p)))


def load_page(path: str) -> PageSource:
	"""Read one image file into a PageSource."""
	with open(path, "rb") as f:
		data = f.read()
	width, height = image_size(data)
	return PageSource(
		file_name=os.path.basename(path),
		image_bytes=data,
		width=width,
		height=height,
		mime_type=guess_mime_type(path),
	)


def group_pages_by_folder(root: str, config: Config = None) -> List[ChapterSource]:
	"""
	Build chapter-grouped ingestion input from a directory tree.

	Every sub-folder holding images is a chapter; images directly under `root`
	form a chapter named after `root` itself. Chapters and pages are ordered
	with natural sort.
	"""
	config = config or Config()
	root = get_abs_path(root)
	if not os.path.isdir(root):
		raise NotADirectoryError(f"Not a directory: {root}")

	folders = [root]
	for dirpath, dirnames, _ in os.walk(root):
		dirnames.sort(key=natural_sort_key)
		folders.extend(os.path.join(dirpath, d) for d in dirnames)

	chapters = []
	for folder in sorted(set(folders), key=lambda f: natural_sort_key(os.path.relpath(f, root))):
		paths = get_image_paths(folder, config)
		if not paths:
			continue

		pages = []
		for path in paths:
			try:
				pages.append(load_page(path))
			except (OSError, ValueError) as e:
				logger.warning(f"⚠️ Skipping unreadable image {path}: {e}")

		if pages:
			name = os.path.basename(root) if folder == root else os.path.relpath(folder, root)
			chapters.append(ChapterSource(name=name, pages=tuple(pages)))
			logger.info(f"📄 Chapter '{name}': {len(pages)} pages")

	return chapters
