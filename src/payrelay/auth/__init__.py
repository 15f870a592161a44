"""Authentication for merchants.

Learn: Accounts log in with email/password and get JWT access/refresh
tokens. Every authenticated route (device provisioning, history, the
live /events stream) resolves the token to a CurrentAccount, and the
account id in it is what dashboard sessions are tagged with.
"""
