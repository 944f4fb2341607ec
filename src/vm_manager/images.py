"""
Disk image discovery.

Images live as regular files in the base images directory (backups in its
``backups`` subdirectory) and are referred to by their file stem. Any unique
substring of a stem selects that image.
"""

from pathlib import Path
from typing import Dict, List, Union

from .exceptions import ImageNotFoundError
from .logging import logger
from .models import GlobalConfig

# Left behind by "nohup qemu-system-..." when launched from the images directory
IGNORED_STEMS = {"nohup"}


class ImageCatalog:
    """Lists and looks up disk images."""

    def __init__(self, base_directory: Union[str, Path]) -> None:
        self.base_directory = Path(base_directory).expanduser()

    @classmethod
    def from_config(cls, global_config: GlobalConfig) -> "ImageCatalog":
        return cls(global_config.base_images_directory)

    @property
    def backup_directory(self) -> Path:
        return self.base_directory / "backups"

    def list_images(self) -> List[str]:
        return sorted(self._scan(self.base_directory))

    def list_backup_images(self) -> List[str]:
        return sorted(self._scan(self.backup_directory))

    def find_image(self, image_name: str) -> Path:
        """
        Resolve an image name to its file.

        Args:
            image_name: Full stem or unique substring of one

        Returns:
            Path: The image file

        Raises:
            ImageNotFoundError: If no image or more than one image matches
        """
        images = self._scan(self.base_directory)
        if image_name in images:
            return images[image_name]

        matches = sorted(stem for stem in images if image_name in stem)
        if len(matches) != 1:
            raise ImageNotFoundError(image_name, str(self.base_directory), matches)
        return images[matches[0]]

    def _scan(self, directory: Path) -> Dict[str, Path]:
        try:
            entries = list(directory.iterdir())
        except OSError as e:
            logger.warning(
                f"Cannot list images in {directory}: {e}",
                directory=str(directory),
            )
            return {}

        images: Dict[str, Path] = {}
        for entry in entries:
            if entry.is_file() and entry.stem not in IGNORED_STEMS:
                images[entry.stem] = entry
        return images
