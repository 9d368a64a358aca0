"""
pinguard: local device security for the ride-hailing client.

PIN credential storage, fingerprint gate, device trust, brute-force lockout
and the authentication flow that sequences them.
"""

__version__ = "0.3.0"
