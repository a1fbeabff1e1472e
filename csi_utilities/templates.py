import logging
import os

import yaml

from csi_utilities.exceptions import TemplateLoadError

LOGGER = logging.getLogger(__name__)


def read_template_text(path: str) -> str:
    try:
        with open(path, encoding="utf-8") as template_file:
            return template_file.read()
    except OSError as exp:
        raise TemplateLoadError(err_str=f"Failed to read template {path}: {exp}") from exp


def load_templates(path: str) -> list[dict]:
    """
    Load every YAML document of `path`, skipping empty documents.

    Raises:
        TemplateLoadError: if the file cannot be read, is not valid YAML or holds a non-mapping document.
    """
    text = read_template_text(path=path)
    try:
        documents = [document for document in yaml.safe_load_all(text) if document]
    except yaml.YAMLError as exp:
        raise TemplateLoadError(err_str=f"Failed to parse template {path}: {exp}") from exp

    for document in documents:
        if not isinstance(document, dict):
            raise TemplateLoadError(err_str=f"Template {path} holds a non-mapping document: {document!r}")
    return documents


def load_template(path: str, kind: str | None = None) -> dict:
    documents = load_templates(path=path)
    if len(documents) != 1:
        raise TemplateLoadError(err_str=f"Template {path} holds {len(documents)} documents, expected exactly one")

    template = documents[0]
    if kind and template.get("kind") != kind:
        raise TemplateLoadError(err_str=f"Template {path} is a {template.get('kind')}, expected {kind}")
    LOGGER.info(f"Loaded {template.get('kind')} template from {os.path.basename(path)}")
    return template


def replace_namespace(manifest: str, namespace: str) -> str:
    """Point manifests written for the `default` namespace at `namespace`."""
    return manifest.replace("namespace: default", f"namespace: {namespace}")
