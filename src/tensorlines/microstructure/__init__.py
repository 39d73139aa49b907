"""
Microstructure Module

Diffusion tensor algebra shared by tracking and bundle statistics.
"""

from .tensor import (
    Tensor,
    compute_fa_map,
    compute_adc_map,
    components_to_matrices,
    matrices_to_components,
)

__all__ = [
    'Tensor',
    'compute_fa_map',
    'compute_adc_map',
    'components_to_matrices',
    'matrices_to_components'
]
