"""GitHub App gatekeeper.

This package guards the boundary between a GitHub App and the platform:
- Validation of inbound webhook deliveries (size, event type, HMAC
  signature, replay protection, JSON parsing)
- Minting of App identity assertions (RS256 JWTs)
- Caching and refresh of installation access tokens
- Invalidation of rejected tokens on downstream authentication failures
"""
