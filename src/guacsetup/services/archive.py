"""Archive extraction helpers for guacsetup."""

import os
import shutil
import tarfile
from pathlib import Path, PurePosixPath
from typing import Optional

from guacsetup.errors import ExtractionError
from guacsetup.errors_catalog import actionable_error


class ArchiveService:
    """Encapsulates safe tar+gzip extraction and entry lookup."""

    def is_within_dir(self, base_dir: Path, candidate: Path) -> bool:
        try:
            return os.path.commonpath([str(base_dir), str(candidate)]) == str(base_dir)
        except ValueError:
            return False

    def _stripped_name(self, name: str, strip_components: int) -> Optional[str]:
        parts = [part for part in PurePosixPath(name.replace("\\", "/")).parts if part != "."]
        if len(parts) <= strip_components:
            return None
        return "/".join(parts[strip_components:])

    def safe_extract_tar(self, archive_path: str, destination_dir: str, strip_components: int = 0):
        """Extract ``archive_path`` into ``destination_dir``.

        Like ``tar --strip-components`` the first ``strip_components`` path
        elements of every entry are dropped. Entries escaping the destination,
        links pointing outside it and device files abort the extraction before
        anything is written.
        """
        base = Path(destination_dir).resolve()

        try:
            with tarfile.open(archive_path, "r:*") as tar:
                plan = []
                for member in tar.getmembers():
                    relative = self._stripped_name(member.name, strip_components)
                    if relative is None:
                        continue

                    target_path = (base / relative).resolve()
                    if PurePosixPath(relative).is_absolute() or not self.is_within_dir(base, target_path):
                        raise ExtractionError(
                            f"Unsafe archive entry detected: `{member.name}`. "
                            "Archive extraction aborted to prevent path traversal."
                        )

                    if member.issym() or member.islnk():
                        link_base = target_path.parent if member.issym() else base
                        link_name = member.linkname
                        if member.islnk():
                            link_name = self._stripped_name(link_name, strip_components) or ""
                        link_target = (link_base / link_name).resolve()
                        if os.path.isabs(member.linkname) or not self.is_within_dir(base, link_target):
                            raise ExtractionError(
                                f"Unsafe archive entry detected: `{member.name}` links outside the archive."
                            )
                    elif not (member.isdir() or member.isfile()):
                        raise ExtractionError(
                            f"Unsupported archive entry type: `{member.name}`."
                        )
                    plan.append((member, target_path))

                for member, target_path in plan:
                    if member.isdir():
                        target_path.mkdir(parents=True, exist_ok=True)
                        continue

                    target_path.parent.mkdir(parents=True, exist_ok=True)
                    if target_path.is_symlink() or target_path.exists():
                        if target_path.is_dir() and not target_path.is_symlink():
                            shutil.rmtree(target_path)
                        else:
                            target_path.unlink()

                    if member.issym():
                        os.symlink(member.linkname, target_path)
                    elif member.islnk():
                        source = base / self._stripped_name(member.linkname, strip_components)
                        shutil.copy2(source, target_path)
                    else:
                        src = tar.extractfile(member)
                        if src is None:
                            raise ExtractionError(f"Could not read archive entry `{member.name}`.")
                        with src, open(target_path, "wb") as dst:
                            shutil.copyfileobj(src, dst)
                        os.chmod(target_path, member.mode & 0o777)
        except (tarfile.TarError, EOFError) as exc:
            raise ExtractionError(f"Invalid tar archive: {archive_path}") from exc
        except OSError as exc:
            raise ExtractionError(f"Could not extract {archive_path}: {exc}") from exc

    def find_single_dir(self, root: str, prefix: str) -> str:
        """Return the only top-level directory of ``root`` whose name starts with ``prefix``."""
        matches = sorted(
            entry.path for entry in os.scandir(root) if entry.is_dir() and entry.name.startswith(prefix)
        )
        if len(matches) != 1:
            raise ExtractionError(
                actionable_error("plugin_entry_missing", entry=f"{prefix}*/", archive=root)
            )
        return matches[0]

    def require_entry(self, root: str, relative_path: str, archive_label: str) -> str:
        path = os.path.join(root, relative_path)
        if not os.path.isfile(path):
            raise ExtractionError(
                actionable_error("plugin_entry_missing", entry=relative_path, archive=archive_label)
            )
        return path
