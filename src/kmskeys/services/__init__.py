"""kmskeys service layer.

- RoleAssumptionClient: STS role assumption for scoped KMS credentials
- PolicyGenerator: Time-bound key policy documents
- KeyLifecycleManager: Key creation, status, and deletion scheduling
- JWTSigner: Compact JWS signing through KMS
- open_kms_session: Wires the above around one set of credentials
"""

from kmskeys.services.credentials import (
    RoleAssumptionClient,
    ScopedCredentials,
    build_kms_client,
)
from kmskeys.services.errors import (
    AuthError,
    DeletionError,
    KeyCreationError,
    KeyDescribeError,
    KmsError,
    SigningError,
)
from kmskeys.services.jwks import InMemoryJWKStore, JWKNotFoundError, JWKRecord, JWKStore
from kmskeys.services.jwt_signer import JWSCompact, JWTSigner
from kmskeys.services.key_lifecycle import (
    DeletionReceipt,
    KeyLifecycleManager,
    KeyState,
    KeyStatus,
    SigningKey,
)
from kmskeys.services.kms_session import KmsSession, open_kms_session
from kmskeys.services.policy import AccessPolicyDocument, PolicyGenerator, build_policy
from kmskeys.services.results import OperationResult

__all__ = [
    "AccessPolicyDocument",
    "AuthError",
    "DeletionError",
    "DeletionReceipt",
    "InMemoryJWKStore",
    "JWKNotFoundError",
    "JWKRecord",
    "JWKStore",
    "JWSCompact",
    "JWTSigner",
    "KeyCreationError",
    "KeyDescribeError",
    "KeyLifecycleManager",
    "KeyState",
    "KeyStatus",
    "KmsError",
    "KmsSession",
    "OperationResult",
    "PolicyGenerator",
    "RoleAssumptionClient",
    "ScopedCredentials",
    "SigningError",
    "SigningKey",
    "build_kms_client",
    "build_policy",
    "open_kms_session",
]
