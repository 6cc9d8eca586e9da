"""Deployment graph compiler for the wagon registry API.

Resolves stack ordering, reads cross-region parameters at provisioning time
and assembles the API Gateway route tree with per-route authorization.
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
