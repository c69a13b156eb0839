import asyncio
import logging
import re
import shutil
import urllib.request
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from client.models import DownloadedImage, GenerationResult

logger = logging.getLogger(__name__)

FILENAME_PREFIX = "hidream_i1_full"
MAX_PROMPT_CHARS = 50

CONTENT_TYPE_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/webp": "webp",
    "image/gif": "gif",
}


def extension_for(content_type: Optional[str], default: str = "jpg") -> str:
    """Map an image content type to a file extension, falling back to ``default``."""
    if not content_type:
        return default
    return CONTENT_TYPE_EXTENSIONS.get(content_type.split(";", 1)[0].strip().lower(), default)


def build_image_filename(
        prompt: str,
        index: int,
        seed: Optional[int] = None,
        timestamp: Optional[datetime] = None,
        extension: str = "jpg",
) -> str:
    """Derive a filesystem-safe, unique filename for a generated image.

    Args:
        prompt: Prompt the image was generated from.
        index: 1-based position of the image in the result.
        seed: Seed echoed by the service, if any. Seed 0 is kept.
        timestamp: Time used for uniqueness. Defaults to now (UTC).
        extension: File extension without the dot.

    Returns:
        str: e.g. ``hidream_i1_full_a_red_cube_42_1_2025-01-01T12-00-00-000000.jpg``
    """
    safe_prompt = re.sub(r"[^a-z0-9\s]", "", prompt.lower())
    safe_prompt = re.sub(r"\s+", "_", safe_prompt)[:MAX_PROMPT_CHARS]

    if timestamp is None:
        timestamp = datetime.now(timezone.utc)
    stamp = timestamp.strftime("%Y-%m-%dT%H:%M:%S.%f").replace(":", "-").replace(".", "-")

    seed_part = f"_{seed}" if seed is not None else ""
    return f"{FILENAME_PREFIX}_{safe_prompt}{seed_part}_{index}_{stamp}.{extension}"


def _fetch_to_file(url: str, file_path: Path) -> None:
    with urllib.request.urlopen(url) as response:
        if response.status != 200:
            raise IOError(f"Failed to download image: HTTP {response.status}")
        with open(file_path, "wb") as f:
            shutil.copyfileobj(response, f)


async def download_image(url: str, filename: str, directory: str = "images") -> str:
    """Download an image into ``directory`` and return its absolute path.

    The directory is created if missing. Any failure removes the partially
    written file and re-raises.
    """
    if not url:
        raise ValueError("Image URL is required")

    images_dir = Path(directory).absolute()
    images_dir.mkdir(parents=True, exist_ok=True)
    file_path = images_dir / filename

    logger.info(f"Downloading image from {url}")
    try:
        await asyncio.to_thread(_fetch_to_file, url, file_path)
    except Exception:
        try:
            file_path.unlink(missing_ok=True)
        except OSError:
            pass
        raise

    logger.info(f"Saved image to {file_path}")
    return str(file_path)


async def download_images(
        result: GenerationResult,
        prompt: str,
        directory: str = "images",
        extension: str = "jpg",
) -> list[DownloadedImage]:
    """Download every image of a result, one at a time and in order.

    The extension comes from each image's content type when the service
    reports one, otherwise ``extension`` is used. A failed download still
    yields a record, with ``local_path`` left empty.
    """
    downloaded = []
    for idx, image in enumerate(result.images, start=1):
        filename = build_image_filename(prompt, idx, result.seed, extension=extension_for(image.content_type, extension))
        local_path = None
        try:
            local_path = await download_image(image.url, filename, directory)
            logger.info(f"Downloaded: {filename}")
        except Exception as e:
            logger.error(f"Failed to download image {idx}: {str(e)}", exc_info=True)

        downloaded.append(DownloadedImage(
            index=idx,
            filename=filename,
            url=image.url,
            local_path=local_path,
            width=image.width,
            height=image.height,
            content_type=image.content_type,
        ))

    logger.info(f"download_images: {sum(1 for img in downloaded if img.local_path)}/{len(downloaded)} image(s) saved")
    return downloaded
