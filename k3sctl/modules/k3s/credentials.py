"""Kubeconfig retrieval helpers."""
import logging

import yaml
from pydantic import SecretStr

from . import constants
from .models import AccessCredential, NodeDescriptor

logger = logging.getLogger("k3s.credentials")


def rewrite_server(kubeconfig: str, address: str) -> str:
    """Point every cluster entry of ``kubeconfig`` at ``address``.

    K3s writes its kubeconfig with the loopback address as the API server.
    Falls back to a plain text replacement when the document is not YAML.
    """
    try:
        document = yaml.safe_load(kubeconfig)
    except yaml.YAMLError as e:
        logger.debug("Kubeconfig is not valid YAML (%s), using text replacement", e)
        document = None

    if not isinstance(document, dict) or not isinstance(document.get('clusters'), list):
        return kubeconfig.replace(constants.LOCALHOST_IP, address)

    for entry in document['clusters']:
        cluster = entry.get('cluster') if isinstance(entry, dict) else None
        if isinstance(cluster, dict) and 'server' in cluster:
            cluster['server'] = str(cluster['server']).replace(constants.LOCALHOST_IP, address)

    return yaml.safe_dump(document, default_flow_style=False, sort_keys=False)


def build_credential(raw: SecretStr, primary: NodeDescriptor) -> AccessCredential:
    """Turn the raw kubeconfig read from ``primary`` into an AccessCredential."""
    kubeconfig = raw.get_secret_value()
    if not kubeconfig.strip():
        raise ValueError(f"Empty kubeconfig read from {primary.name}")

    return AccessCredential(
        server=constants.server_url(primary.ipv4),
        kubeconfig=SecretStr(rewrite_server(kubeconfig, primary.ipv4)),
        node_name=primary.name,
    )
