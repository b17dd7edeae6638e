"""auth/ -- Request authorization package for the job board platform.

Gateway, permission resolution and enforcement, token revocation, account
lockout and the credential store that backs them.

Layer rule: auth/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/. api/ imports from auth/, not the other way
around. auth/dependencies.py is the one module that touches fastapi.
"""
