"""
Entorno

Scenario-based Spanish practice: generated dialogues split into tappable
chunks, synthesized speech, a personal vocabulary store and spoken review.
"""

__version__ = "0.1.0"
