"""
Reading CloudFormation templates from disk and writing rendered copies.
"""

import json
import logging
import random
import string
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .errors import TemplateNotFoundError

logger = logging.getLogger(__name__)

# Short-form intrinsic functions and the long form they expand to
INTRINSICS = {
    "!And": "Fn::And",
    "!Base64": "Fn::Base64",
    "!Cidr": "Fn::Cidr",
    "!Condition": "Condition",
    "!Equals": "Fn::Equals",
    "!FindInMap": "Fn::FindInMap",
    "!GetAZs": "Fn::GetAZs",
    "!GetAtt": "Fn::GetAtt",
    "!If": "Fn::If",
    "!ImportValue": "Fn::ImportValue",
    "!Join": "Fn::Join",
    "!Not": "Fn::Not",
    "!Or": "Fn::Or",
    "!Ref": "Ref",
    "!Select": "Fn::Select",
    "!Split": "Fn::Split",
    "!Sub": "Fn::Sub",
    "!Transform": "Fn::Transform",
}


class TemplateLoader(yaml.SafeLoader):
    """SafeLoader that understands the CloudFormation short-form tags."""


def _construct_intrinsic(loader: yaml.SafeLoader, node: yaml.Node) -> Dict[str, Any]:
    name = INTRINSICS[node.tag]

    if isinstance(node, yaml.ScalarNode):
        value = loader.construct_scalar(node)
        # !GetAtt Resource.Attribute
        if node.tag == "!GetAtt":
            value = value.split(".", 1)
    elif isinstance(node, yaml.SequenceNode):
        value = loader.construct_sequence(node, deep=True)
    else:
        value = loader.construct_mapping(node, deep=True)

    return {name: value}


for _tag in INTRINSICS:
    TemplateLoader.add_constructor(_tag, _construct_intrinsic)


def read(path: Path) -> Dict[str, Any]:
    """
    Load a template from a .json, .yaml or .yml file.

    Raises:
        TemplateNotFoundError: If the file does not exist
    """
    path = Path(path)
    if not path.is_file():
        raise TemplateNotFoundError(path)

    with open(path, "r") as f:
        if path.suffix in (".yaml", ".yml"):
            template = yaml.load(f, Loader=TemplateLoader)
        else:
            template = json.load(f)

    logger.debug(f"Read template {path} with {len(template.get('Resources') or {})} resources")
    return template


def temp_name(length: int = 13) -> str:
    return "".join(random.choices(string.ascii_lowercase + string.digits, k=length))


def write_temp(template: Dict[str, Any], directory: Optional[str] = None) -> Path:
    """
    Write a rendered template to a uniquely named JSON file.

    Returns:
        Path of the written file
    """
    path = Path(directory or tempfile.gettempdir()) / f"{temp_name()}.json"

    with open(path, "w") as f:
        json.dump(template, f, indent=4)

    logger.debug(f"Wrote rendered template to {path}")
    return path
