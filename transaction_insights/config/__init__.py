"""
Transaction Insights
Configuration Module
"""
from .settings import LabelPolicy, PipelineSettings, Settings, get_settings

__all__ = ["LabelPolicy", "PipelineSettings", "Settings", "get_settings"]
