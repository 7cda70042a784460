"""Authentication and authorization.

Learn: Two ways to sign in, one token format:
1. Email/password → bcrypt check → JWT access/refresh tokens
2. Google OAuth → profile upsert → the same JWT tokens

Both resolve to a CurrentAccount used for owner scoping and admin checks.
"""
