"""Command line interface for the Vault Provisioner."""
