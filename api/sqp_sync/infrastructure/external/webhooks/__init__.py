"""
Entrega de webhooks firmados (HMAC-SHA256) a suscriptores externos.
"""
