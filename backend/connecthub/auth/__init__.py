"""Authentication module (JWT access/refresh tokens).

Services:
    - TokenVerifier: issues and verifies access and refresh tokens.
    - current_identity: FastAPI dependency for bearer-authenticated routes.
"""
