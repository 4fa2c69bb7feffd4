"""Core module - configuration, mirror models, field mapping, audit and observability.

Everything here is independent of the HTTP details of the Acumatica API,
which live in /connectors/acumatica/.
"""

__version__ = "1.0.0"
