"""audit/ -- Append-only audit trail of security-relevant actions.

Layer rule: audit/ may import from auth/ and core/, never from api/.
"""
