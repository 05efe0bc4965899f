# -*- coding: utf-8 -*-
"""REST API for the impact engine."""

from impactledger.engine.api.router import router

__all__ = ["router"]
