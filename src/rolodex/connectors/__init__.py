"""Provider connectors.

Each connector fetches records from one external account type and normalizes
them into people and interactions:

- ``gmail``: mail history with a 90-day windowed fallback
- ``google-calendar`` / ``google-contacts``: opaque sync tokens
- ``microsoft-mail`` / ``microsoft-calendar`` / ``microsoft-contacts``: Graph delta links
- ``csv``: file import, no network
"""

__all__ = ["base", "registry"]
