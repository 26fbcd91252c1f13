"""Deployment build: install dependencies (with a fallback manifest) and build the app."""
import logging
import os
import shutil
import subprocess
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from rich.logging import RichHandler

logger = logging.getLogger("deploy_build")

PRIMARY_MANIFEST = "requirements.txt"
FALLBACK_MANIFEST = "deploy-requirements.txt"
BACKUP_MANIFEST = "requirements.txt.backup"
DEPENDENCY_DIR = ".python_packages"
SOURCE_PATHS = ["main.py", "config.py", "routes.py", "pages.py", "models", "services", "forms"]


class BuildInstallError(Exception):
    """Neither the primary nor the fallback manifest could be installed."""


def _pip(*args: str) -> List[str]:
    return [sys.executable, "-m", "pip", *args]


def run(command: Sequence[str]) -> None:
    logger.info(f"$ {' '.join(command)}")
    subprocess.run(list(command), check=True)


def pip_cache_disabled() -> bool:
    return os.getenv("PIP_NO_CACHE_DIR", "").strip().lower() in ("1", "true", "yes", "on")


def clean_cache() -> None:
    if pip_cache_disabled():
        logger.warning("pip cache is disabled (PIP_NO_CACHE_DIR), skipping cache clean.")
        return
    logger.info("Cleaning pip cache...")
    run(_pip("cache", "purge"))


def remove_dependency_dir(root: Path) -> None:
    target = root / DEPENDENCY_DIR
    logger.info(f"Removing {DEPENDENCY_DIR} if it exists...")
    if not target.exists():
        return
    try:
        shutil.rmtree(target)
    except OSError as e:
        logger.warning(f"Error removing {DEPENDENCY_DIR}: {e}")


def install_dependencies(root: Path) -> None:
    """
    Installs from the primary manifest, falling back to the deploy manifest.

    The fallback swaps the deploy manifest in place of the primary one
    (keeping a backup of the original) and retries with relaxed checks.
    """
    manifest = root / PRIMARY_MANIFEST
    target = str(root / DEPENDENCY_DIR)
    logger.info(f"Trying to install dependencies with main {PRIMARY_MANIFEST}...")
    try:
        run(_pip("install", "--no-input", "--force-reinstall", "--target", target, "-r", str(manifest)))
        return
    except subprocess.CalledProcessError as e:
        logger.warning(f"Main {PRIMARY_MANIFEST} install failed (exit {e.returncode}), trying with fallback manifest...")

    if manifest.exists():
        shutil.copyfile(manifest, root / BACKUP_MANIFEST)

    fallback = root / FALLBACK_MANIFEST
    if not fallback.exists():
        logger.error(f"Fallback manifest {FALLBACK_MANIFEST} not found!")
        raise BuildInstallError("Both main and fallback requirements installs failed")

    shutil.copyfile(fallback, manifest)
    logger.info(f"Using fallback manifest {FALLBACK_MANIFEST}")
    run(_pip(
        "install", "--no-input", "--no-warn-conflicts", "--no-warn-script-location",
        "--disable-pip-version-check", "--target", target, "-r", str(manifest),
    ))


def build_application(root: Path) -> None:
    logger.info("Building application...")
    paths = [str(root / path) for path in SOURCE_PATHS if (root / path).exists()]
    run([sys.executable, "-m", "compileall", "-q", *paths])


def main(root: Optional[Path] = None) -> int:
    root = Path(root or os.getcwd())
    logger.info("Starting deployment build process...")
    try:
        clean_cache()
        remove_dependency_dir(root)
        install_dependencies(root)
        build_application(root)
    except (subprocess.CalledProcessError, BuildInstallError, OSError) as e:
        logger.error(f"Build failed: {e}")
        return 1
    logger.info("Build completed successfully!")
    return 0


if __name__ == "__main__":
    logging.basicConfig(level="INFO", format="%(message)s", datefmt="%H:%M:%S", handlers=[RichHandler(show_path=False)])
    sys.exit(main())
