"""Sparse operator assembly."""

from .laplacian import assemble_laplacian

__all__ = ["assemble_laplacian"]
