"""
HTTP provider package.

Provisions resources through a generic REST provisioning API.
"""

from providers.http.client import HTTPProvider

__all__ = ["HTTPProvider"]
