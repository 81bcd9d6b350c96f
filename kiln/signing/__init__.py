from kiln.signing.cosign import CosignSigner, SignatureArtifact, simple_signing_payload
from kiln.signing.decision import KeyBasedSigning, KeylessSigning, NoSigning, SigningDecision, decide_signing
from kiln.signing.orchestrator import SigningOrchestrator

__all__ = [
    "CosignSigner",
    "KeyBasedSigning",
    "KeylessSigning",
    "NoSigning",
    "SignatureArtifact",
    "SigningDecision",
    "SigningOrchestrator",
    "decide_signing",
    "simple_signing_payload",
]
