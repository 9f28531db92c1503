"""auth/ -- Credential verification and session token package for ClinicAuth.

Layer rule: auth/ imports only stdlib + third-party libraries (fastapi only in
dependencies.py). It does NOT import from api/ or core/. api/ wires auth/
together from core.config.Settings, not the other way around.
"""
