"""kmskeys - KMS-backed JWT signing key lifecycle.

Provisions time-bounded asymmetric signing keys in AWS KMS, scopes each
key with an expiring key policy, signs compact JWS tokens without the
private key ever leaving KMS, and schedules keys for deletion.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
