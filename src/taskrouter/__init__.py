"""taskrouter: multi-tenant task routing with capability predicates."""

__version__ = "0.1.0"
