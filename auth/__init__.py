"""auth/ -- Authentication and session lifecycle for TenantAuth.

Layer rule: auth/ imports only core/, stdlib and third-party libraries.
It does NOT import from api/. api/ and main.py import from auth/, not the
other way around.
"""
