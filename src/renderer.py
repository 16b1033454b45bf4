"""Manifest template rendering.

Templates are plain YAML files carrying the __NAMESPACE__ placeholder.
Rendering substitutes the target namespace and writes the result to the
staging directory, one file per template with the same file name.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import yaml

from common import RenderError
from config import NAMESPACE_PLACEHOLDER

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Manifest:
    """A rendered manifest file.

    Attributes:
        name: Template file stem (e.g. 'postgres')
        source: Template the manifest was rendered from
        path: Rendered file in the staging directory
        content: Rendered text
        kinds: Resource kinds in the document stream, in order
        namespace: Namespace the objects were rendered into (None if none are namespaced)
    """
    name: str
    source: Optional[Path]
    path: Path
    content: str
    kinds: tuple[str, ...] = ()
    namespace: Optional[str] = None

    def documents(self) -> list[dict]:
        """Parse the rendered YAML stream, dropping empty documents."""
        return [doc for doc in yaml.safe_load_all(self.content) if isinstance(doc, dict)]


def render_text(text: str, namespace: str) -> str:
    """Substitute every namespace placeholder in text."""
    return text.replace(NAMESPACE_PLACEHOLDER, namespace)


def _parse(content: str, origin: Path) -> list[dict]:
    try:
        docs = list(yaml.safe_load_all(content))
    except yaml.YAMLError as e:
        raise RenderError(f"Template {origin} is not valid YAML: {e}") from e
    return [doc for doc in docs if isinstance(doc, dict)]


def _kinds(docs: list[dict]) -> tuple[str, ...]:
    return tuple(str(doc['kind']) for doc in docs if 'kind' in doc)


def _namespace(docs: list[dict]) -> Optional[str]:
    """First metadata.namespace in the stream."""
    for doc in docs:
        namespace = (doc.get('metadata') or {}).get('namespace')
        if namespace:
            return str(namespace)
    return None


def _list_templates(template_dir: Path) -> list[Path]:
    return sorted(p for p in template_dir.glob('*.yaml') if p.is_file())


def render_templates(template_dir: Path, output_dir: Path, namespace: str) -> list[Manifest]:
    """Render every template in template_dir into output_dir.

    Output is deterministic for a given template set and namespace.
    Staged manifests with no matching template are removed so a re-render
    supersedes the previous one instead of merging with it.

    Raises:
        RenderError: If no templates exist or the staging directory cannot be written
    """
    if not template_dir.is_dir():
        raise RenderError(f"Template directory not found: {template_dir}")

    templates = _list_templates(template_dir)
    if not templates:
        raise RenderError(f"No *.yaml templates found in {template_dir}")

    logger.info(f"Rendering templates for namespace '{namespace}'...")
    try:
        output_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise RenderError(f"Cannot create staging directory {output_dir}: {e}") from e

    wanted = {t.name for t in templates}
    for stale in _list_templates(output_dir):
        if stale.name not in wanted:
            logger.debug(f"Removing stale manifest {stale}")
            stale.unlink()

    manifests = []
    for template in templates:
        content = render_text(template.read_text(encoding='utf-8'), namespace)
        target = output_dir / template.name
        try:
            target.write_text(content, encoding='utf-8')
        except OSError as e:
            raise RenderError(f"Cannot write {target}: {e}") from e
        docs = _parse(content, template)
        manifests.append(Manifest(
            name=template.stem,
            source=template,
            path=target,
            content=content,
            kinds=_kinds(docs),
            namespace=_namespace(docs),
        ))
        logger.debug(f"Rendered {template.name} -> {target}")

    logger.info(f"Generated manifests written to {output_dir}/")
    return manifests


def load_rendered(output_dir: Path) -> dict[str, Manifest]:
    """Load previously rendered manifests from the staging directory, keyed by name.

    Returns an empty dict when nothing is staged.
    """
    if not output_dir.is_dir():
        return {}
    manifests = {}
    for path in _list_templates(output_dir):
        content = path.read_text(encoding='utf-8')
        docs = _parse(content, path)
        manifests[path.stem] = Manifest(
            name=path.stem,
            source=None,
            path=path,
            content=content,
            kinds=_kinds(docs),
            namespace=_namespace(docs),
        )
    return manifests


def feature_store_name(manifest: Manifest) -> Optional[str]:
    """Return metadata.name of the first FeatureStore document, if any."""
    for doc in manifest.documents():
        if doc.get('kind') == 'FeatureStore':
            name = (doc.get('metadata') or {}).get('name')
            if name:
                return str(name)
    return None
