"""ERP connectors.

Only Acumatica is implemented. The sync engines depend on
``connectors.acumatica`` for authentication, HTTP access and the error
hierarchy; nothing Acumatica-specific leaks past the mirror records.
"""
