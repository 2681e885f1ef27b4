# ============================================================================
# apps/__init__.py - Feature apps, one package per concern
# ============================================================================
