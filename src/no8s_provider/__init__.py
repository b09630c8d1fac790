"""
no8s provider - Declarative reconciliation of cloud resources.

Desired configuration is diffed against the observed remote state and turned
into create, update, replace or delete calls by one generic lifecycle
controller per resource. Resource types live in ``no8s_provider.resources``.
"""

__version__ = "0.1.0"
