"""Content addresses: the storage key derived from a title's canonical URL."""

import base64


def resolve(canonical_url: str) -> str:
    """Encode a canonical source URL into its content address."""
    return base64.b64encode(canonical_url.encode("utf-8")).decode("ascii")


def reverse(address: str) -> str:
    """Decode a content address back into the URL it was derived from."""
    return base64.b64decode(address.encode("ascii"), validate=True).decode("utf-8")
