"""
gcloud provider package.

Provisions Google Cloud resources by driving the gcloud command-line tool.
"""

from providers.gcloud.provider import GcloudProvider

__all__ = ["GcloudProvider"]
