"""
Casos de uso de la aplicacion.
"""
