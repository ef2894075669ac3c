"""Filesystem helpers for guacsetup."""

import glob
import logging
import os
import shutil
import tempfile
from contextlib import contextmanager
from typing import Iterator, List, Optional

from rich.console import Console

from guacsetup.errors import ProvisionError


class FileSystemService:
    """Encapsulates file and directory side effects."""

    def __init__(self, logger: logging.Logger, console: Console):
        self.logger = logger
        self.console = console

    def ensure_dir(self, path: str, mode: int):
        os.makedirs(path, exist_ok=True)
        self.set_permissions(path, mode)

    def set_permissions(self, path: str, mode: int):
        try:
            os.chmod(path, mode)
        except OSError as exc:
            self.logger.warning("Could not set permissions on %s: %s", path, exc)

    def add_permissions(self, path: str, bits: int):
        """Add permission bits, like ``chmod g+r``."""
        try:
            current = os.stat(path).st_mode & 0o7777
        except OSError as exc:
            self.logger.warning("Could not stat %s: %s", path, exc)
            return
        self.set_permissions(path, current | bits)

    def add_tree_permissions(self, root: str, bits: int):
        if not os.path.exists(root):
            return

        for current_root, dirs, files in os.walk(root):
            for name in dirs + files:
                path = os.path.join(current_root, name)
                if not os.path.islink(path):
                    self.add_permissions(path, bits)

    @contextmanager
    def scratch_dir(self, prefix: str = "guacsetup-") -> Iterator[str]:
        """Temporary directory removed on every exit path."""
        path = tempfile.mkdtemp(prefix=prefix)
        try:
            yield path
        finally:
            self.cleanup_dir(path)

    def write_text_atomic(self, path: str, content: str, mode: int):
        """Write ``content`` so readers never observe a partial file."""
        directory = os.path.dirname(path) or "."
        os.makedirs(directory, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(prefix=".guacsetup-", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as file_obj:
                file_obj.write(content)
            os.chmod(temp_path, mode)
            os.replace(temp_path, path)
        except OSError as exc:
            raise ProvisionError(f"Could not write {path}: {exc}") from exc
        finally:
            if os.path.exists(temp_path):
                try:
                    os.remove(temp_path)
                except OSError:
                    pass

    def stage_file(self, source: str, dest_dir: str, mode: int) -> str:
        """Copy ``source`` into a hidden temporary file inside ``dest_dir``.

        The staged file lives on the destination filesystem so the final
        ``os.replace`` is atomic.
        """
        os.makedirs(dest_dir, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(prefix=".staged-", dir=dest_dir)
        try:
            with os.fdopen(fd, "wb") as dst, open(source, "rb") as src:
                shutil.copyfileobj(src, dst)
            os.chmod(temp_path, mode)
        except OSError as exc:
            self.remove_file(temp_path)
            raise ProvisionError(f"Could not stage {source} into {dest_dir}: {exc}") from exc
        return temp_path

    def install_file(self, source: str, dest_path: str, mode: int):
        """Like ``install -m MODE``, but replaces ``dest_path`` atomically."""
        staged = self.stage_file(source, os.path.dirname(dest_path) or ".", mode)
        try:
            os.replace(staged, dest_path)
        except OSError as exc:
            self.remove_file(staged)
            raise ProvisionError(f"Could not install {dest_path}: {exc}") from exc

    def matching(self, directory: str, pattern: str) -> List[str]:
        return sorted(glob.glob(os.path.join(directory, pattern)))

    def remove_file(self, path: str):
        try:
            os.remove(path)
            self.logger.debug("Removed file: %s", path)
        except FileNotFoundError:
            pass

    def ensure_symlink(self, target: str, link_path: str) -> bool:
        """Point ``link_path`` at ``target``; returns False when it already does."""
        if os.path.islink(link_path) and os.readlink(link_path) == target:
            return False
        if os.path.lexists(link_path):
            if os.path.isdir(link_path) and not os.path.islink(link_path):
                shutil.rmtree(link_path)
            else:
                os.remove(link_path)
        os.makedirs(os.path.dirname(link_path) or ".", exist_ok=True)
        os.symlink(target, link_path)
        return True

    def read_marker(self, path: str) -> Optional[str]:
        try:
            with open(path, "r", encoding="utf-8") as file_obj:
                return file_obj.read().strip() or None
        except OSError:
            return None

    def cleanup_dir(self, path: str):
        if os.path.exists(path):
            try:
                shutil.rmtree(path)
                self.logger.debug("Removed directory: %s", path)
            except OSError as exc:
                message = f"Warning: Could not remove {path}: {exc}"
                self.console.print(f"[yellow]{message}[/yellow]")
                self.logger.warning(message)
