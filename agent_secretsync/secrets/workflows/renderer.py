"""Template rendering for materialized files."""
from typing import Any, Callable

import jinja2

from ..domains.config_loader import ConfigError
from ..domains.models import FileSpec

SecretLookup = Callable[[str, str], Any]


class RenderError(ConfigError):
    """A file template can't be rendered with the current secrets."""
    pass


def check_sources(fc: FileSpec) -> None:
    """Fail unless exactly one of inline template / template file is set."""
    if fc.template and fc.template_file:
        raise RenderError(f"inline template and template file specified for file {fc.path}")
    if not fc.template and not fc.template_file:
        raise RenderError(f"no content defined for file {fc.path}")


def _load_source(fc: FileSpec) -> str:
    check_sources(fc)
    if fc.template:
        return fc.template
    try:
        with open(fc.template_file, 'r') as f:
            return f.read()
    except OSError as e:
        raise RenderError(f"Couldn't read template file {fc.template_file} for {fc.path}: {e}")


def render(fc: FileSpec, secret: SecretLookup) -> str:
    """
    Render the content of a file.

    Templates only get a ``secret(name, key)`` function. Any failure, including
    a lookup of an unknown secret or key, fails the whole render.

    Args:
        fc: File to render
        secret: Lookup function exposed to the template

    Returns:
        Rendered content

    Raises:
        RenderError: If the template sources are misconfigured or rendering fails
    """
    source = _load_source(fc)

    env = jinja2.Environment(
        undefined=jinja2.StrictUndefined,
        keep_trailing_newline=True,
        autoescape=False,
    )
    env.globals["secret"] = secret
    try:
        return env.from_string(source).render()
    except jinja2.TemplateError as e:
        raise RenderError(f"Couldn't render {fc.path}: {e}")


def dir_mode(mode: int) -> int:
    """
    Derive the mode for parent directories of a file with ``mode``.

    Each class (owner, group, other) with any permission bit gets its bits
    plus execute so the directory can be traversed; other classes get none.

    Example:
        0o644 -> 0o755, 0o600 -> 0o700
    """
    result = 0
    for execute_bit in (0o100, 0o010, 0o001):
        mask = execute_bit * 7
        if mode & mask:
            result |= (mode & mask) | execute_bit
    return result

