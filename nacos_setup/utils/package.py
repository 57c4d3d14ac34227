"""
Server package download, cache and extraction
"""
import logging
import os
import shutil
import stat
import tempfile
import zipfile
from pathlib import Path
from typing import Optional

import requests

from ..errors import PackageError
from ..interfaces import IPackageManager

logger = logging.getLogger(__name__)

DOWNLOAD_BASE_URL = "https://download.nacos.io/nacos-server"
REFERER_URL = "https://nacos.io/download/nacos-server/?spm=nacos_install"
ARCHIVE_ROOT = "nacos"


def default_cache_dir() -> Path:
    return Path(os.environ.get('NACOS_CACHE_DIR', Path.home() / ".nacos" / "cache"))


def is_valid_archive(path: Path) -> bool:
    """True if path is a readable zip whose members all pass their CRC check"""
    try:
        with zipfile.ZipFile(path) as archive:
            return archive.testzip() is None
    except (zipfile.BadZipFile, OSError):
        return False


class PackageManager(IPackageManager):
    """Fetches nacos-server-<version>.zip into a local cache and extracts node directories"""

    def __init__(self, cache_dir: Optional[Path] = None, base_url: str = DOWNLOAD_BASE_URL,
                 timeout: float = 30.0):
        self.cache_dir = Path(cache_dir) if cache_dir else default_cache_dir()
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout

    def archive_name(self, version: str) -> str:
        return f"nacos-server-{version}.zip"

    def download_url(self, version: str) -> str:
        filename = self.archive_name(version)
        return f"{self.base_url}/{filename}?spm=nacos_install&file={filename}"

    def fetch(self, version: str) -> Path:
        """Return a verified cached archive for version, downloading it when needed"""
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        cached = self.cache_dir / self.archive_name(version)

        if cached.is_file() and cached.stat().st_size > 0:
            if is_valid_archive(cached):
                logger.info(f"Found cached package: {cached}")
                return cached
            logger.warning("Cached file is corrupted, re-downloading...")
            cached.unlink()

        url = self.download_url(version)
        logger.info(f"Downloading Nacos version: {version}")
        logger.info(f"Download URL: {url}")

        partial = cached.with_name(cached.name + ".part")
        try:
            with requests.get(url, headers={'Referer': REFERER_URL}, stream=True, timeout=self.timeout) as response:
                response.raise_for_status()
                with open(partial, 'wb') as f:
                    for chunk in response.iter_content(chunk_size=1024 * 256):
                        if chunk:
                            f.write(chunk)
        except requests.RequestException as e:
            partial.unlink(missing_ok=True)
            raise PackageError(
                f"Failed to download Nacos {version}: {e}",
                hint="Check that the version exists: https://github.com/alibaba/nacos/releases",
            )

        if not is_valid_archive(partial):
            partial.unlink(missing_ok=True)
            raise PackageError(f"Downloaded file for Nacos {version} is corrupted or invalid")

        partial.replace(cached)
        logger.info(f"Download completed: {cached.name}")
        return cached

    def extract_to(self, archive: Path, parent_dir: Path, name: str) -> Path:
        """Extract archive's nacos/ tree to parent_dir/name, replacing any existing directory"""
        parent_dir = Path(parent_dir)
        final_path = parent_dir / name
        if final_path.exists():
            logger.info(f"Removing existing directory: {final_path}")
            shutil.rmtree(final_path)
        parent_dir.mkdir(parents=True, exist_ok=True)

        with tempfile.TemporaryDirectory(prefix=".tmp_extract_", dir=parent_dir) as temp_dir:
            try:
                with zipfile.ZipFile(archive) as zf:
                    zf.extractall(temp_dir)
            except (zipfile.BadZipFile, OSError) as e:
                raise PackageError(f"Failed to extract Nacos package {archive}: {e}")

            extracted = Path(temp_dir) / ARCHIVE_ROOT
            if not (extracted / "bin").is_dir() or not (extracted / "conf").is_dir():
                raise PackageError(f"Extracted package structure is unexpected: {archive}")
            shutil.move(str(extracted), str(final_path))

        for script in (final_path / "bin").glob("*.sh"):
            script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)

        logger.info(f"Node extracted: {final_path}")
        return final_path
