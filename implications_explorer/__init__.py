"""Implications Explorer - visual editor for state-machine modelled UI tests."""

__version__ = '0.3.0'
