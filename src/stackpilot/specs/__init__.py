"""Declared resources and manifest loading."""

from stackpilot.specs.loader import load_manifest, parse_manifest
from stackpilot.specs.models import Manifest, ResourceKind, ResourceSpec
from stackpilot.specs.variable_substitution import VariableSubstitutor, find_references

__all__ = [
    "Manifest",
    "ResourceKind",
    "ResourceSpec",
    "VariableSubstitutor",
    "find_references",
    "load_manifest",
    "parse_manifest",
]
