"""site-mirror core library.

Mirrors web pages (as Markdown) and linked PDFs into a local working
directory and keeps that mirror in step with the remote site across runs,
using ``<working_dir>/.metadata.json`` as the record of what was mirrored.
"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
