"""
Income Signal Engine

Technical-signal and rebalancing analysis for dividend-income portfolios.
"""

from .core.engine import IncomeSignalEngine, LambdaApplication, lambda_handler

__version__ = "1.0.0"

__all__ = ['IncomeSignalEngine', 'LambdaApplication', 'lambda_handler', '__version__']
