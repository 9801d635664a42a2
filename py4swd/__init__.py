# -*- coding: utf-8 -*-
"""
py4swd: regularized least-squares inversion of Love-wave dispersion curves
for layered, radially anisotropic earth models.
"""

from . import modules
from .modules.version import VERSION

__version__ = VERSION
