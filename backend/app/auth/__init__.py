"""Authentication module (Google OAuth + bearer tokens).

Services:
    - GoogleOAuthService: Google OAuth 2.0 authorization-code flow.
    - IdentityVerifier: resolves a bearer token to a persisted user.
    - create_access_token / decode_access_token: JWT issuance and checks.
"""
