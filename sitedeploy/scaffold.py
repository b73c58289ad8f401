"""Tenant repository scaffolding from a template's ci-cd documents."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from sitedeploy.registry import atomic_write_text
from sitedeploy.renderer import TEMPLATE_SUFFIX, RenderContext, make_environment, render_document

logger = logging.getLogger(__name__)

WORKFLOW_SOURCE = "workflow.yaml"
WORKFLOW_TARGET = Path(".gitea") / "workflows" / "build.yml"
CONTENT_DIRS = ("themes", "plugins", "uploads")

_STYLE_CSS = """/*
Theme Name: {title} Theme
Description: Custom WordPress theme for {domain}
Version: 1.0.0
Tier: {tier}
*/
"""

_INDEX_PHP = """<?php get_header(); ?>
<div class="main-content">
    <h1>Welcome to {title}</h1>
    <p>Your {tier} tier WordPress site is running!</p>
    <p>Domain: {domain}</p>
    <p>Build: <?php echo getenv('BUILD_REF') ?: 'development'; ?></p>
</div>
<?php get_footer(); ?>
"""


@dataclass(frozen=True)
class RepositoryFiles:
    """Rendered repository content, keyed by path relative to the repository root."""

    documents: tuple[tuple[Path, str], ...]
    theme: str
    starter_theme: tuple[tuple[Path, str], ...]


class RepositoryScaffolder:
    """Render CI/CD files and a starter theme into tenants/<domain>/repository.

    :meth:`render` works in memory so template errors surface in the render
    stage (dry runs included); :meth:`write` puts the result on disk.
    """

    def render(self, context: RenderContext, template_dir: Path | str) -> RepositoryFiles | None:
        cicd_dir = Path(template_dir) / "ci-cd"
        if not cicd_dir.is_dir():
            logger.debug("Template %s has no ci-cd directory; skipping repository", template_dir)
            return None
        env = make_environment(cicd_dir)
        variables = context.variables()
        documents: list[tuple[Path, str]] = []
        for source in sorted(p.name for p in cicd_dir.glob(f"*{TEMPLATE_SUFFIX}") if p.is_file()):
            name = source[: -len(TEMPLATE_SUFFIX)]
            target = WORKFLOW_TARGET if name == WORKFLOW_SOURCE else Path(name)
            documents.append((target, render_document(env, source, variables)))

        fmt = {"title": context.namespace.capitalize(), "domain": context.domain, "tier": context.tier}
        starter = ((Path("style.css"), _STYLE_CSS.format(**fmt)), (Path("index.php"), _INDEX_PHP.format(**fmt)))
        return RepositoryFiles(documents=tuple(documents), theme=context.theme, starter_theme=starter)

    def write(self, files: RepositoryFiles, repository_dir: Path | str) -> Path:
        repo = Path(repository_dir)
        for sub in CONTENT_DIRS:
            (repo / "wp-content" / sub).mkdir(parents=True, exist_ok=True)
        for relative, content in files.documents:
            atomic_write_text(repo / relative, content)
            logger.debug("Generated %s", repo / relative)

        theme_dir = repo / "wp-content" / "themes" / files.theme
        if not theme_dir.exists():
            theme_dir.mkdir(parents=True)
            for relative, content in files.starter_theme:
                (theme_dir / relative).write_text(content, encoding="utf-8")
        logger.info("Repository structure created at %s", repo)
        return repo
