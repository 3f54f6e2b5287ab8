# SPDX-FileCopyrightText: 2023 Ross Patterson <me@rpatterson.net>
# SPDX-License-Identifier: MIT

"""
Count the hard links of download files to detect downloads no longer imported.
"""

import os
import logging

logger = logging.getLogger(__name__)


class HardLinkFileService:
    """
    Stat download files and report how many other paths link to the same data.

    A count of `1` means only the download path itself refers to the data, the
    download is orphaned.  A negative count means the file could not be found or
    stat'ed.  Links inside ignored root directories, such as a cross-seed directory,
    can be discounted after `populate_file_counts()` walked those directories.
    """

    NOT_FOUND = -1

    def __init__(self):
        # Paths in ignored directories by `(st_dev, st_ino)`
        self.ignored_links = {}
        self.populated_dirs = set()

    def __repr__(self):
        return (
            f"<{type(self).__name__} "
            f"{len(self.populated_dirs)!r} ignored dirs populated>"
        )

    def get_hard_link_count(self, path, ignore_root_dir=False):
        """
        Return the number of links to the file data, negative if not found.
        """
        try:
            file_stat = os.stat(path)
        except FileNotFoundError:
            logger.debug("File not found | %s", path)
            return self.NOT_FOUND
        except OSError as exc:
            logger.error("Failed to stat file | %s | %s", exc, path)
            return self.NOT_FOUND

        link_count = file_stat.st_nlink
        if ignore_root_dir:
            ignored = {
                ignored_path
                for ignored_path in self.ignored_links.get(
                    (file_stat.st_dev, file_stat.st_ino),
                    (),
                )
                if ignored_path != os.path.abspath(path)
            }
            if ignored:
                logger.debug(
                    "Ignoring links in ignored directories | %s | %s",
                    ", ".join(sorted(ignored)),
                    path,
                )
            link_count -= len(ignored)
        logger.debug("stat file | hard links: %s | %s", link_count, path)
        return link_count

    def populate_file_counts(self, dirs):
        """
        Walk the given directories once and index their files by inode.
        """
        if isinstance(dirs, (str, os.PathLike)):
            dirs = [dirs]
        for root_dir in dirs:
            root_dir = os.path.abspath(root_dir)
            if root_dir in self.populated_dirs:
                logger.debug("Already populated ignored directory | %s", root_dir)
                continue
            self.populated_dirs.add(root_dir)
            logger.debug("Indexing ignored directory | %s", root_dir)
            for dirpath, _, filenames in os.walk(root_dir, onerror=log_walk_error):
                for filename in filenames:
                    file_path = os.path.join(dirpath, filename)
                    try:
                        file_stat = os.stat(file_path)
                    except OSError as exc:
                        logger.warning(
                            "Couldn't stat file while indexing | %s | %s",
                            exc,
                            file_path,
                        )
                        continue
                    self.ignored_links.setdefault(
                        (file_stat.st_dev, file_stat.st_ino),
                        set(),
                    ).add(file_path)

    def clear(self):
        """
        Forget the indexed ignored directories between runs.
        """
        self.ignored_links.clear()
        self.populated_dirs.clear()


def log_walk_error(exc):
    """
    Log errors walking ignored directories without stopping the walk.
    """
    logger.error(
        "Error walking ignored directory | %s | %s",
        exc,
        exc.filename,
    )
