"""mailer/ -- Outbound mail for the auth flows.

Layer rule: mailer/ imports from core/ only.
"""
