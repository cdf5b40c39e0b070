"""HTTP API for VeriCred Gate."""
