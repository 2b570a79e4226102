"""
Authentication and authorization package for LanWake.

Provides:
- JWT access token creation and validation
- Rotating refresh tokens with reuse detection
- bcrypt password hashing
- Role-based access control dependencies
"""
