"""
Inbound request authentication and outbound target credentials.
"""

from .identity import ANONYMOUS, AuthIdentity
from .inbound import InboundAuthEvaluator
from .oauth import ClaimsOnlyVerifier, JWKSSignatureVerifier, SignatureVerifier, TokenClaimsValidator
from .outbound import TargetCredentialResolver

__all__ = [
    "ANONYMOUS",
    "AuthIdentity",
    "ClaimsOnlyVerifier",
    "InboundAuthEvaluator",
    "JWKSSignatureVerifier",
    "SignatureVerifier",
    "TargetCredentialResolver",
    "TokenClaimsValidator",
]
