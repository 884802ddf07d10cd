"""Utility functions for the approval kernel."""

from approval_kernel.utils.hashing import canonicalize_json, hash_action, hash_payload

__all__ = ["canonicalize_json", "hash_payload", "hash_action"]
