"""client/ -- Python client for the appy API: auth state and token lifecycle.

Layer rule: client/ imports from core/ only. It talks to the server over a
Transport and never imports api/ or auth/.
"""
