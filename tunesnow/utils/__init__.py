"""Utility helpers for the TunesNow backend.

Submodules:
- aws: boto3-backed S3 object store
- memory_store: in-process object store with HMAC-signed upload grants
"""

__all__: list[str] = []
