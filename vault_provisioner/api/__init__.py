"""HTTP API for the Vault Provisioner."""
