"""
GMV Decomposition
Configuration Module
"""
from .settings import DecompositionSettings, SegmentDimension, Settings, get_settings

__all__ = ["DecompositionSettings", "SegmentDimension", "Settings", "get_settings"]
