from typing import Any, Dict, Protocol


class EventVerifier(Protocol):
    def verify(self, payload: bytes, signature: str, secret: str) -> Dict[str, Any]:
        """Check the signature and return the decoded event envelope.

        Raises AuthenticityError or MalformedEventError.
        """
        ...
