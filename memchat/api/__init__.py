"""memchat API adapter package.

Architectural role:
- Defines the external interaction boundary for HTTP and console interfaces.
- Performs transport-level validation and response shaping.
- Delegates chat turns to `memchat.core.engine`.
"""
