"""Flow graph kernel utilities."""

from .blocks import Bound, ChoiceOption, Literal, field_names, resolve_text
from .canonical_json import CanonicalJsonTypeError, canonical_dumps
from .spec_hash import spec_fingerprint

__all__ = [
    "Bound",
    "CanonicalJsonTypeError",
    "ChoiceOption",
    "Literal",
    "canonical_dumps",
    "field_names",
    "resolve_text",
    "spec_fingerprint",
]
