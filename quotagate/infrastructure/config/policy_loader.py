"""Reads policy tables from YAML files.

Two layouts are accepted under a top-level `policies` key (or as the whole
document):

    policies:
      - action: getOrder
        burst: 6
        restore_rate: 0.015
      - action: listOrdersByNextToken
        alias_of: listOrders

or the legacy pair form, `- [getOrder, [6, 0.015]]`.
"""

import logging
from pathlib import Path
from typing import Any, List, Tuple

import yaml

from quotagate.domain.errors import ConfigurationError

logger = logging.getLogger(__name__)


def parse_policy_entries(document: Any) -> List[Tuple[str, Any]]:
    """Converts a parsed YAML document into ordered (action, raw_policy) pairs.

    Policy shapes are checked later by the registry; this only checks layout.
    """
    if isinstance(document, dict):
        if 'policies' not in document:
            raise ConfigurationError("policy document has no 'policies' key")
        document = document['policies']

    if not isinstance(document, list):
        raise ConfigurationError(f"'policies' must be a list, got {type(document).__name__}")

    entries: List[Tuple[str, Any]] = []
    for index, item in enumerate(document):
        if isinstance(item, dict):
            if 'action' not in item:
                raise ConfigurationError(f"policy entry #{index} has no 'action'")
            policy = {k: v for k, v in item.items() if k != 'action'}
            entries.append((item['action'], policy))
        elif isinstance(item, list) and len(item) == 2:
            entries.append((item[0], item[1]))
        else:
            raise ConfigurationError(f"policy entry #{index} has an unrecognised layout: {item!r}")
    return entries


def load_policy_file(path: Path) -> List[Tuple[str, Any]]:
    """Loads ordered policy entries from a YAML file.

    Raises:
        ConfigurationError: If the file is missing, unparsable or malformed.
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigurationError(f"policy file not found: {path}")
    with open(path, 'r', encoding='utf-8') as f:
        try:
            document = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"failed to parse policy file {path}: {e}") from e
    entries = parse_policy_entries(document)
    logger.info(f"Loaded {len(entries)} policy entries from {path}")
    return entries
