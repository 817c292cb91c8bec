"""Token auth, connection tracking and issuance limits."""
