"""Flow spec fingerprints.

The editor fingerprints the normalized spec (``FlowSpec`` or its
``to_dict()`` form), not the generated flow JSON, and the flow store opens a
new version whenever that fingerprint changes. Key order never affects it.
"""

from __future__ import annotations

import hashlib
from typing import Any

from .canonical_json import canonical_dumps


def spec_fingerprint(obj: Any) -> str:
    """``sha256:<hex>`` over the canonical JSON of a spec (dataclass or dict)."""
    data = canonical_dumps(obj).encode("utf-8")
    digest = hashlib.sha256(data).hexdigest()
    return f"sha256:{digest}"
