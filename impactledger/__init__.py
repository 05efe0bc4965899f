# -*- coding: utf-8 -*-
"""
ImpactLedger
============

Environmental impact resolution and aggregation for product and corporate
footprints: a three-stage factor waterfall, facility impact allocation,
Scope 3 aggregation and data-quality classification.
"""

__version__ = "0.1.0"
