"""
tensorlines

Diffusion tensor fiber tracking (Weinstein's tensorline algorithm) and
fiber bundle statistics.
"""

__version__ = "0.1.0"
