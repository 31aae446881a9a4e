"""
Production Effectiveness Engine
Configuration Module
"""
from .settings import CauseNormalization, EngineSettings, Settings, get_settings

__all__ = ["CauseNormalization", "EngineSettings", "Settings", "get_settings"]
