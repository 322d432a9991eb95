from .verifier import CategorizationVerifier, VerificationResult

__all__ = ["CategorizationVerifier", "VerificationResult"]
