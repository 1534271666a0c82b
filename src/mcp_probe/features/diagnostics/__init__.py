"""
Diagnostic: classification des échecs de démarrage et statistiques d'erreurs.
"""

from .classifier import StartupErrorClassifier, is_ready_message, looks_like_error
from .tracker import ErrorTracker

__all__ = ["StartupErrorClassifier", "is_ready_message", "looks_like_error", "ErrorTracker"]
