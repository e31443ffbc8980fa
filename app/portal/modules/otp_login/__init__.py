"""
OTP login module.

Two-phase login:
- Phase 1: username + email are checked, a 6-digit code is mailed.
- Phase 2: the code and the password are checked, then the session is bound.

The pending code lives in site-wide key/value state (see app.portal.state).
"""
