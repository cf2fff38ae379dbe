"""Scaffold blocks injected after the task block of every collapsed turn.

The upstream endpoint only accepts a user turn that looks like one produced
by its own extension: a task block followed by a progress checklist and an
environment description. The blocks are Jinja2 templates so a captured
scaffold can be replayed with fresh values.

Captured scaffold format (YAML or JSON)::

    progress: |
      # task_progress RECOMMENDED
      ...
    environment: |
      <environment_details>
      # Current Working Directory ({{ cwd }}) Files
      ...
      </environment_details>

Usage::

    from cline_bridge.scaffold import load_scaffold

    scaffold = load_scaffold("captures/scaffold.yaml", cwd="/work/repo")
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml  # type: ignore[import-untyped]
from jinja2 import BaseLoader, Environment, StrictUndefined, TemplateError, TemplateNotFound

from cline_bridge.blocks import ENVIRONMENT_MARKER, PROGRESS_MARKER
from cline_bridge.errors import ScaffoldError

logger = logging.getLogger(__name__)


class _InlineLoader(BaseLoader):
    """Jinja2 loader for inline strings (no filesystem template inheritance)."""

    def get_source(
        self, environment: Environment, template: str
    ) -> tuple[str, str | None, None]:
        raise TemplateNotFound(template)


_env = Environment(loader=_InlineLoader(), undefined=StrictUndefined, keep_trailing_newline=False)

PROGRESS_TEMPLATE = """\
# task_progress RECOMMENDED

When starting a new task, it is recommended to include a todo list using the task_progress parameter.

1. Include a todo list using the task_progress parameter in your next tool call
2. Create a comprehensive checklist of all steps needed
3. Use markdown format: - [ ] for incomplete, - [x] for complete

**Benefits of creating a todo/task_progress list now:**
\t- Clear roadmap for implementation
\t- Progress tracking throughout the task
\t- Nothing gets forgotten or missed
\t- Users can see, monitor, and edit the plan

**Example structure:**```
- [ ] Analyze requirements
- [ ] Set up necessary files
- [ ] Implement main functionality
- [ ] Handle edge cases
- [ ] Test the implementation
- [ ] Verify results```

Keeping the task_progress list updated helps track progress and ensures nothing is missed."""

ENVIRONMENT_TEMPLATE = """\
<environment_details>
{% if cwd %}# Current Working Directory ({{ cwd }}) Files
{{ files if files else "(File list omitted. Use list_files to explore if needed.)" }}

{% endif %}{% if current_time %}# Current Time
{{ current_time }}

{% endif %}# Current Mode
{{ mode }}
</environment_details>"""

_DEFAULT_CONTEXT: dict[str, Any] = {
    "cwd": None,
    "files": None,
    "current_time": None,
    "mode": "ACT MODE",
}


@dataclass(frozen=True)
class Scaffold:
    """Progress checklist and environment description blocks."""

    progress: str
    environment: str

    def parts(self) -> list[dict[str, str]]:
        return [
            {"type": "text", "text": self.progress},
            {"type": "text", "text": self.environment},
        ]


def _render(template: str, context: dict[str, Any], label: str) -> str:
    try:
        return _env.from_string(template).render(**context).strip()
    except TemplateError as e:
        raise ScaffoldError(f"Failed to render scaffold {label} block: {e}", original=e) from e


def render_scaffold(**context: Any) -> Scaffold:
    """Render the built-in scaffold templates.

    Keyword arguments override ``cwd``, ``files``, ``current_time`` and
    ``mode``; extra keys are available to custom templates.
    """
    ctx = {**_DEFAULT_CONTEXT, **context}
    return Scaffold(
        progress=_render(PROGRESS_TEMPLATE, ctx, "progress"),
        environment=_render(ENVIRONMENT_TEMPLATE, ctx, "environment"),
    )


DEFAULT_SCAFFOLD: Scaffold = render_scaffold()


def _read_mapping(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise ScaffoldError(f"Scaffold file not found: {path}")
    text = path.read_text()
    suffix = path.suffix.lower()
    try:
        if suffix == ".json":
            data = json.loads(text)
        elif suffix in {".yaml", ".yml"}:
            data = yaml.safe_load(text)
        else:
            raise ScaffoldError(
                f"Unsupported scaffold extension {suffix!r} for {path}. Use .json, .yaml, or .yml."
            )
    except (ValueError, yaml.YAMLError) as e:
        raise ScaffoldError(f"Malformed scaffold file {path}: {e}", original=e) from e
    if not isinstance(data, dict):
        raise ScaffoldError(f"Scaffold root must be a mapping in {path}. Got: {type(data).__name__}")
    return data


def _captured_block(
    data: dict[str, Any],
    key: str,
    marker: str,
    default: str,
    context: dict[str, Any],
    path: Path,
) -> str:
    raw = data.get(key)
    if raw is None:
        logger.info("Scaffold %s has no '%s' block; using default", path, key)
        return default
    if not isinstance(raw, str):
        raise ScaffoldError(f"Scaffold '{key}' in {path} must be a string, got {type(raw).__name__}")
    rendered = _render(raw, context, key)
    if marker not in rendered:
        logger.warning(
            "Scaffold %s '%s' block lacks marker %r; using default block",
            path,
            key,
            marker,
        )
        return default
    return rendered


def load_scaffold(path: str | Path, **context: Any) -> Scaffold:
    """Load a captured scaffold file and render its Jinja2 placeholders.

    Args:
        path: YAML or JSON file (absolute, or relative to cwd).
        **context: Variables for the templates (``cwd``, ``files``, ...).

    Raises:
        ScaffoldError: If the file is missing, malformed, not a mapping, or a
            template fails to render.
    """
    file_path = Path(path)
    if not file_path.is_absolute():
        file_path = Path.cwd() / file_path

    data = _read_mapping(file_path)
    ctx = {**_DEFAULT_CONTEXT, **context}
    defaults = render_scaffold(**context)
    scaffold = Scaffold(
        progress=_captured_block(data, "progress", PROGRESS_MARKER, defaults.progress, ctx, file_path),
        environment=_captured_block(
            data, "environment", ENVIRONMENT_MARKER, defaults.environment, ctx, file_path
        ),
    )
    logger.debug("Loaded scaffold from %s", file_path)
    return scaffold
