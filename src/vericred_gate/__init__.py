"""VeriCred Gate: delegated credential issuance backend."""

__version__ = "0.1.0"
