"""A small Linux container runtime: images, overlays, namespaces and a client/daemon pair."""

__version__ = "0.1.0"