"""History By People - explore history through personal stories and visuals."""

__version__ = "0.1.0"
