"""stok - run Terraform commands inside managed Kubernetes workspaces."""

__version__ = "0.1.0"
