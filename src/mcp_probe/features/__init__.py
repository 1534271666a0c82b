"""
Fonctionnalités du client: sécurité, processus, diagnostic, instrumentation.
"""
