"""Test support utilities for the rolodex package.

In-memory implementations of the persistence protocols live in
``rolodex.testing.stores``.  They have no dependency on pytest so they can
be used from any test context or a local dry run.
"""

from __future__ import annotations
