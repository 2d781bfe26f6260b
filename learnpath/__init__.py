"""
Personalized Learning Path core
Gap analysis, prerequisite-aware sequencing, time estimation and progressive
unlocking for skill roadmaps.
"""

__version__ = "0.1.0"
