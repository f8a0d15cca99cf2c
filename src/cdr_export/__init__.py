"""cdr-export core library.

Converts records stored by a crawler's target repository into CDR (v2, v3,
v3.1) documents. Media objects referenced by HTML pages are uploaded to a
content-addressed object store first, so that v3.1 documents can embed them.
"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
