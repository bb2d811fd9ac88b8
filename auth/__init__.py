"""auth/ -- Authentication, session, and token issuance for appy.

Layer rule: auth/ imports only stdlib, third-party libraries, core/, and
mailer/. It does NOT import from api/ or client/.
api/ imports from auth/, not the other way around.
"""
