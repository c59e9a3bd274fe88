"""Writes rendered files to disk and tracks which secrets they use."""
import logging
import os
from typing import Any, Optional

from ..domains.models import FileSpec
from ..domains.state import LifecycleState
from .notifier import NotificationDispatcher
from .renderer import RenderError, check_sources, dir_mode, render

logger = logging.getLogger(__name__)


class MaterializeError(Exception):
    """A rendered file couldn't be written durably."""
    pass


def _makedirs(directory: str, mode: int) -> None:
    # os.makedirs only applies mode to the leaf directory
    missing = []
    while directory and not os.path.isdir(directory):
        missing.append(directory)
        parent = os.path.dirname(directory)
        if parent == directory:
            break
        directory = parent
    for path in reversed(missing):
        try:
            os.mkdir(path, mode)
        except FileExistsError:
            if not os.path.isdir(path):
                raise


class FileMaterializer:
    """Renders files from the lifecycle state and writes them.

    Args:
        state: Source of secret values; receives usage registrations
        dispatcher: Collects notifiers of written files
    """

    def __init__(self, state: LifecycleState, dispatcher: Optional[NotificationDispatcher] = None):
        self.state = state
        self.dispatcher = dispatcher

    def _render(self, fc: FileSpec) -> str:
        used = set()

        def secret(name: str, key: str) -> Any:
            found = self.state.secrets.get(name)
            if found is None:
                raise RenderError(f"unknown secret: {name}")
            if key not in found.data:
                raise RenderError(f"unknown key in secret '{name}': {key}")
            used.add(name)
            return found.data[key]

        content = render(fc, secret)
        # Only a complete render may change usage registrations
        self.state.replace_usages(fc.path, fc.priority, used)
        return content

    def materialize(self, fc: FileSpec) -> None:
        """
        Render ``fc`` and replace its content on disk.

        Missing parent directories are created with a mode derived from the
        file mode. The write is fsynced before returning; only then are the
        file's notifiers marked as pending.

        Raises:
            RenderError: If the file is misconfigured or references unknown secrets
            MaterializeError: If the directory or file can't be written
        """
        check_sources(fc)
        mode = fc.effective_mode

        directory = os.path.dirname(fc.path)
        if directory:
            try:
                _makedirs(directory, dir_mode(mode))
            except OSError as e:
                raise MaterializeError(f"couldn't create directory '{directory}': {e}")

        content = self._render(fc).encode("UTF-8")

        try:
            fd = os.open(fc.path, os.O_WRONLY | os.O_TRUNC | os.O_CREAT, mode)
        except OSError as e:
            raise MaterializeError(f"couldn't open {fc.path} file to be written: {e}")

        with os.fdopen(fd, 'wb') as f:
            try:
                os.fchmod(f.fileno(), mode)
                f.write(content)
                f.flush()
            except OSError as e:
                raise MaterializeError(f"couldn't write secret in '{fc.path}': {e}")
            try:
                os.fsync(f.fileno())
            except OSError as e:
                raise MaterializeError(f"not able to commit the file '{fc.path}' to disk: {e}")

        logger.info(f"Written {len(content)} bytes into {fc.path}")

        if self.dispatcher is not None:
            self.dispatcher.mark_pending(*fc.notify)
