"""Authentication and authorization.

Learn: Users log in with email/password and get JWT access/refresh
tokens. Every protected route resolves the bearer token to a
CurrentIdentity (user id + role). The WebSocket endpoint accepts the
same token as a ?token= query param, since browsers can't set headers
on a WebSocket handshake.
"""
